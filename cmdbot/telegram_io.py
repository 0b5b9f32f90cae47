from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from telegram import (
    BotCommand,
    BotCommandScopeAllChatAdministrators,
    BotCommandScopeAllGroupChats,
    BotCommandScopeAllPrivateChats,
    BotCommandScopeDefault,
)
from telegram.error import BadRequest, TelegramError

from cmdbot.utils import split_message

if TYPE_CHECKING:
    from cmdbot.context import CurrentChatContext, ShareContext

logger = logging.getLogger("telegram")

SCOPE_TYPES = {
    "default": BotCommandScopeDefault,
    "all_private_chats": BotCommandScopeAllPrivateChats,
    "all_group_chats": BotCommandScopeAllGroupChats,
    "all_chat_administrators": BotCommandScopeAllChatAdministrators,
}


@dataclass(frozen=True)
class SendOutcome:
    ok: bool
    status: str = "OK"
    body: str = ""
    message_id: int | None = None

    @classmethod
    def failed(cls, exc: Exception) -> "SendOutcome":
        return cls(ok=False, status=type(exc).__name__, body=str(exc))


class TelegramGateway:
    """Outbound calls for one chat, shaped by the current reply state."""

    def __init__(self, bot: Any, chat_context: "CurrentChatContext", share_context: "ShareContext") -> None:
        self._bot = bot
        self._chat = chat_context
        self._share = share_context

    async def send_text(self, text: str) -> SendOutcome:
        outcome = SendOutcome(ok=True)
        for chunk in split_message(text):
            outcome = await self._send_chunk(chunk)
            if not outcome.ok:
                return outcome
        return outcome

    async def _send_chunk(self, text: str) -> SendOutcome:
        kwargs = {
            "chat_id": self._chat.chat_id,
            "text": text,
            "reply_to_message_id": self._chat.reply_to_message_id,
            "reply_markup": self._chat.reply_markup,
        }
        try:
            try:
                sent = await self._bot.send_message(parse_mode=self._chat.parse_mode, **kwargs)
            except BadRequest:
                if not self._chat.parse_mode:
                    raise
                logger.warning("send_message rejected parse_mode=%s, retrying as plain text", self._chat.parse_mode)
                sent = await self._bot.send_message(parse_mode=None, **kwargs)
        except TelegramError as exc:
            logger.warning("send_message failed chat_id=%s error=%s", self._chat.chat_id, exc)
            return SendOutcome.failed(exc)
        return SendOutcome(ok=True, message_id=getattr(sent, "message_id", None))

    async def send_photo(self, photo: bytes | str) -> SendOutcome:
        try:
            sent = await self._bot.send_photo(
                chat_id=self._chat.chat_id,
                photo=photo,
                reply_to_message_id=self._chat.reply_to_message_id,
            )
        except TelegramError as exc:
            logger.warning("send_photo failed chat_id=%s error=%s", self._chat.chat_id, exc)
            return SendOutcome.failed(exc)
        return SendOutcome(ok=True, message_id=getattr(sent, "message_id", None))

    async def send_chat_action(self, action: str) -> SendOutcome:
        await self._bot.send_chat_action(chat_id=self._chat.chat_id, action=action)
        return SendOutcome(ok=True)

    async def get_chat_role(self) -> str | None:
        """Resolve the sender's member status; ``None`` means the lookup failed."""
        if self._share.from_user_id is None:
            return None
        try:
            member = await self._bot.get_chat_member(chat_id=self._share.chat_id, user_id=self._share.from_user_id)
        except TelegramError as exc:
            logger.warning(
                "get_chat_member failed chat_id=%s user_id=%s error=%s",
                self._share.chat_id,
                self._share.from_user_id,
                exc,
            )
            return None
        status = getattr(member, "status", None)
        return str(status) if status else None


async def bind_commands(bot: Any, menu: dict[str, list[tuple[str, str]]]) -> dict[str, bool]:
    result: dict[str, bool] = {}
    for scope, commands in menu.items():
        scope_type = SCOPE_TYPES.get(scope)
        if scope_type is None:
            logger.warning("Unknown command scope=%s skipped", scope)
            continue
        bot_commands = [BotCommand(command.lstrip("/"), description or command) for command, description in commands]
        result[scope] = bool(await bot.set_my_commands(bot_commands, scope=scope_type()))
        logger.info("Bound commands scope=%s count=%s", scope, len(bot_commands))
    return result
