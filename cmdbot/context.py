from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from cmdbot.telegram_io import TelegramGateway
from cmdbot.user_config import MASK, UserConfig

if TYPE_CHECKING:
    from cmdbot.runtime import RuntimeContext

logger = logging.getLogger("context")

GROUP_CHAT_TYPES = frozenset({"group", "supergroup"})


def is_group_chat(chat_type: str | None) -> bool:
    return chat_type in GROUP_CHAT_TYPES


@dataclass
class ShareContext:
    bot_id: int | None
    current_bot_token: str
    chat_id: int
    chat_type: str
    from_user_id: int | None
    chat_history_key: str
    config_store_key: str
    bot_username: str | None = None

    def masked(self) -> "ShareContext":
        return replace(self, current_bot_token=MASK)


@dataclass
class CurrentChatContext:
    chat_id: int
    reply_to_message_id: int | None = None
    parse_mode: str | None = None
    reply_markup: Any | None = None


def build_store_keys(
    chat_id: int,
    chat_type: str,
    from_user_id: int | None,
    bot_id: int | None,
    share_mode: bool,
) -> tuple[str, str]:
    """Return ``(history_key, config_key)`` for a chat.

    Group chats outside share mode get one context per participant.
    """
    base = str(chat_id)
    if is_group_chat(chat_type) and not share_mode and from_user_id is not None:
        base = f"{base}:{from_user_id}"
    if bot_id is not None:
        base = f"{base}:{bot_id}"
    return f"history:{base}", f"user_config:{base}"


@dataclass
class WorkerContext:
    runtime: "RuntimeContext"
    user_config: UserConfig
    share_context: ShareContext
    chat_context: CurrentChatContext
    telegram: TelegramGateway

    @classmethod
    def from_message(cls, message: Any, runtime: "RuntimeContext", bot: Any) -> "WorkerContext":
        config = runtime.config
        chat = message.chat
        from_user = getattr(message, "from_user", None)
        from_user_id = from_user.id if from_user is not None else None
        bot_id = getattr(bot, "id", None)
        history_key, config_key = build_store_keys(
            chat_id=chat.id,
            chat_type=chat.type,
            from_user_id=from_user_id,
            bot_id=bot_id,
            share_mode=config.group_chat_bot_share_mode,
        )
        share_context = ShareContext(
            bot_id=bot_id,
            current_bot_token=config.telegram_bot_token,
            chat_id=chat.id,
            chat_type=str(chat.type),
            from_user_id=from_user_id,
            chat_history_key=history_key,
            config_store_key=config_key,
            bot_username=getattr(bot, "username", None),
        )
        reply_to = message.message_id if is_group_chat(chat.type) else None
        chat_context = CurrentChatContext(chat_id=chat.id, reply_to_message_id=reply_to)
        user_config = load_user_config(runtime, config_key)
        return cls(
            runtime=runtime,
            user_config=user_config,
            share_context=share_context,
            chat_context=chat_context,
            telegram=TelegramGateway(bot, chat_context, share_context),
        )

    def persist_user_config(self) -> None:
        trimmed = self.user_config.trim(self.runtime.config.lock_user_config_keys)
        self.runtime.store.put(self.share_context.config_store_key, json.dumps(trimmed, ensure_ascii=False))


def load_user_config(runtime: "RuntimeContext", config_key: str) -> UserConfig:
    config = runtime.config
    user_config = UserConfig.from_defaults(config.user_config)
    raw = runtime.store.get(config_key)
    if not raw:
        return user_config
    try:
        stored = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored user config is not valid JSON key=%s", config_key)
        return user_config
    if isinstance(stored, dict):
        try:
            user_config.load_persisted(stored, config.lock_user_config_keys)
        except (TypeError, ValueError):
            logger.warning("Stored user config has invalid values key=%s", config_key)
            return UserConfig.from_defaults(config.user_config)
    return user_config
