from __future__ import annotations

import logging
from typing import Any

from telegram.constants import ParseMode

from cmdbot.auth import authorize
from cmdbot.context import WorkerContext
from cmdbot.plugins import execute_request, load_template, prepare_input
from cmdbot.registry import CommandDefinition, matches_trigger, subcommand_of
from cmdbot.telegram_io import SendOutcome

logger = logging.getLogger("router")

PLUGIN_PARSE_MODES = {
    "html": ParseMode.HTML,
    "markdown": ParseMode.MARKDOWN,
}


def extract_text(message: Any) -> str:
    return (getattr(message, "text", None) or getattr(message, "caption", None) or "").strip()


def strip_command_mention(text: str, bot_username: str | None) -> str:
    """Drop the `@botname` suffix Telegram adds to menu commands in groups."""
    if not bot_username or not text.startswith("/"):
        return text
    head, sep, rest = text.partition(" ")
    suffix = f"@{bot_username}"
    if head.lower().endswith(suffix.lower()):
        head = head[: -len(suffix)]
    return f"{head}{sep}{rest}"


def _error_text(exc: Exception) -> str:
    return f"ERROR: {str(exc) or type(exc).__name__}"


async def dispatch(message: Any, context: WorkerContext) -> SendOutcome | None:
    """Answer ``message`` if it is a command; ``None`` means it is not one."""
    config = context.runtime.config
    text = strip_command_mention(extract_text(message), context.share_context.bot_username)
    if text in config.custom_commands:
        text = config.custom_commands[text]

    for key, source in config.plugins_command.items():
        if matches_trigger(text, key):
            return await _handle_plugin_command(key, text, source, context)

    definition = context.runtime.registry.match(text)
    if definition is not None:
        return await _handle_system_command(message, definition, text, context)
    return None


async def _handle_system_command(
    message: Any,
    definition: CommandDefinition,
    text: str,
    context: WorkerContext,
) -> SendOutcome:
    try:
        decision = await authorize(
            definition.needs_auth,
            context.share_context.chat_type,
            context.telegram.get_chat_role,
        )
    except Exception as exc:
        logger.exception("Authorization failed command=%s", definition.name)
        return await context.telegram.send_text(_error_text(exc))
    if not decision.allowed:
        return await context.telegram.send_text(f"ERROR: {decision.reason}")

    subcommand = subcommand_of(text, definition.name)
    logger.info("Command chat_id=%s command=%s", context.share_context.chat_id, definition.name)
    try:
        return await definition.handler(message, definition.name, subcommand, context)
    except Exception as exc:
        logger.exception("Command failed command=%s", definition.name)
        return await context.telegram.send_text(_error_text(exc))


async def _handle_plugin_command(key: str, text: str, source: str, context: WorkerContext) -> SendOutcome:
    runtime = context.runtime
    subcommand = subcommand_of(text, key)
    logger.info("Plugin command chat_id=%s command=%s", context.share_context.chat_id, key)
    try:
        template = await load_template(source, runtime.http_client)
        data = prepare_input(template, subcommand)
        result = await execute_request(template, data, runtime.config.plugins_env, runtime.http_client)
        if result.type == "image":
            return await context.telegram.send_photo(result.content)
        context.chat_context.parse_mode = PLUGIN_PARSE_MODES.get(result.type)
        content = result.content
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        return await context.telegram.send_text(str(content))
    except Exception as exc:
        logger.warning("Plugin command failed command=%s error=%r", key, exc)
        message = _error_text(exc)
        help_text = runtime.config.plugins_command_descriptions.get(key)
        if help_text:
            message = f"{message}\n{help_text}"
        return await context.telegram.send_text(message)
