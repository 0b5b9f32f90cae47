from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from cmdbot.auth import AuthRequirement, default_policy, share_mode_group_policy
from cmdbot.config import AppConfig
from cmdbot.handlers import commands
from cmdbot.i18n import command_help
from cmdbot.telegram_io import SendOutcome

HandlerFn = Callable[[Any, str, str, Any], Awaitable[SendOutcome]]

PRIVATE = "all_private_chats"
GROUPS = "all_group_chats"
ADMINS = "all_chat_administrators"
MENU_SCOPES = (PRIVATE, GROUPS, ADMINS)


class CommandKind(str, enum.Enum):
    HELP = "/help"
    NEW = "/new"
    START = "/start"
    IMG = "/img"
    VERSION = "/version"
    SETENV = "/setenv"
    SETENVS = "/setenvs"
    DELENV = "/delenv"
    CLEARENV = "/clearenv"
    SYSTEM = "/system"
    REDO = "/redo"
    ECHO = "/echo"


COMMAND_HANDLERS: dict[CommandKind, HandlerFn] = {
    CommandKind.HELP: commands.command_get_help,
    CommandKind.NEW: commands.command_new_chat_context,
    CommandKind.START: commands.command_new_chat_context,
    CommandKind.IMG: commands.command_generate_img,
    CommandKind.VERSION: commands.command_fetch_update,
    CommandKind.SETENV: commands.command_update_user_config,
    CommandKind.SETENVS: commands.command_update_user_configs,
    CommandKind.DELENV: commands.command_delete_user_config,
    CommandKind.CLEARENV: commands.command_clear_user_config,
    CommandKind.SYSTEM: commands.command_system,
    CommandKind.REDO: commands.command_regenerate,
    CommandKind.ECHO: commands.command_echo,
}

# Menu order for platform command registration.
COMMAND_SORT_LIST: tuple[CommandKind, ...] = (
    CommandKind.NEW,
    CommandKind.REDO,
    CommandKind.IMG,
    CommandKind.SETENV,
    CommandKind.DELENV,
    CommandKind.VERSION,
    CommandKind.SYSTEM,
    CommandKind.HELP,
)

DEV_ONLY_COMMANDS = frozenset({CommandKind.ECHO})


def matches_trigger(text: str, trigger: str) -> bool:
    return text == trigger or text.startswith(f"{trigger} ")


def subcommand_of(text: str, trigger: str) -> str:
    return text[len(trigger):].strip()


@dataclass(frozen=True)
class CommandDefinition:
    kind: CommandKind
    scopes: tuple[str, ...]
    handler: HandlerFn
    needs_auth: AuthRequirement | None = None

    @property
    def name(self) -> str:
        return self.kind.value


class CommandRegistry:
    def __init__(self, definitions: Iterable[CommandDefinition]) -> None:
        self._definitions: dict[CommandKind, CommandDefinition] = {}
        for definition in definitions:
            if definition.kind in self._definitions:
                raise ValueError(f"Command '{definition.name}' already registered")
            self._definitions[definition.kind] = definition

    @property
    def definitions(self) -> list[CommandDefinition]:
        return list(self._definitions.values())

    def get(self, kind: CommandKind) -> CommandDefinition | None:
        return self._definitions.get(kind)

    def match(self, text: str) -> CommandDefinition | None:
        for definition in self._definitions.values():
            if matches_trigger(text, definition.name):
                return definition
        return None

    def menu(self, hidden: Iterable[str] = ()) -> dict[str, list[tuple[str, str]]]:
        hidden_set = set(hidden)
        scope_map: dict[str, list[tuple[str, str]]] = {scope: [] for scope in MENU_SCOPES}
        for kind in COMMAND_SORT_LIST:
            if kind.value in hidden_set:
                continue
            definition = self._definitions.get(kind)
            if definition is None:
                continue
            for scope in definition.scopes:
                scope_map.setdefault(scope, []).append((kind.value, command_help(kind.value)))
        return scope_map

    def document(self) -> list[dict[str, str]]:
        return [
            {"command": definition.name, "description": command_help(definition.name)}
            for definition in self._definitions.values()
        ]


def build_registry(config: AppConfig) -> CommandRegistry:
    share_mode_group = share_mode_group_policy(config.group_chat_bot_share_mode)
    table: list[tuple[CommandKind, tuple[str, ...], AuthRequirement | None]] = [
        (CommandKind.HELP, (PRIVATE, ADMINS), None),
        (CommandKind.NEW, (PRIVATE, GROUPS, ADMINS), None),
        (CommandKind.START, (), None),
        (CommandKind.IMG, (PRIVATE, ADMINS), None),
        (CommandKind.VERSION, (PRIVATE, ADMINS), None),
        (CommandKind.SETENV, (), share_mode_group),
        (CommandKind.SETENVS, (), share_mode_group),
        (CommandKind.DELENV, (), share_mode_group),
        (CommandKind.CLEARENV, (), share_mode_group),
        (CommandKind.SYSTEM, (PRIVATE, ADMINS), default_policy),
        (CommandKind.REDO, (PRIVATE, GROUPS, ADMINS), None),
        (CommandKind.ECHO, (PRIVATE, ADMINS), default_policy),
    ]
    missing = set(CommandKind) - set(COMMAND_HANDLERS)
    if missing:
        raise RuntimeError(f"Commands without handler: {sorted(kind.value for kind in missing)}")
    definitions = [
        CommandDefinition(kind=kind, scopes=scopes, handler=COMMAND_HANDLERS[kind], needs_auth=needs_auth)
        for kind, scopes, needs_auth in table
        if config.dev_mode or kind not in DEV_ONLY_COMMANDS
    ]
    return CommandRegistry(definitions)
