from __future__ import annotations

import logging
from typing import Any

from telegram import Update
from telegram.ext import ContextTypes

from cmdbot.config import AppConfig
from cmdbot.context import WorkerContext, is_group_chat
from cmdbot.router import dispatch, extract_text
from cmdbot.runtime import RuntimeContext
from cmdbot.utils import is_bot_mentioned, strip_bot_mention

logger = logging.getLogger("bot")


def _replies_to_bot(message: Any, bot: Any) -> bool:
    reply = getattr(message, "reply_to_message", None)
    author = getattr(reply, "from_user", None) if reply is not None else None
    return author is not None and author.id == getattr(bot, "id", None)


def chat_text_for(message: Any, bot: Any, config: AppConfig) -> str | None:
    """Text to hand to the chat flow, or ``None`` when the bot is not addressed."""
    text = extract_text(message)
    username = getattr(bot, "username", None)
    if is_group_chat(message.chat.type):
        addressed = is_bot_mentioned(text, username) or _replies_to_bot(message, bot)
        if config.require_bot_mention and not addressed:
            return None
        text = strip_bot_mention(text, username)
    return text or None


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if not message or not update.effective_chat:
        return
    runtime: RuntimeContext = context.application.bot_data["runtime"]
    worker_context = WorkerContext.from_message(message, runtime, context.bot)

    outcome = await dispatch(message, worker_context)
    if outcome is not None:
        if not outcome.ok:
            logger.warning("Command reply failed status=%s body=%r", outcome.status, outcome.body)
        return

    text = chat_text_for(message, context.bot, runtime.config)
    if text is None:
        logger.debug("Message not addressed to bot chat_id=%s", update.effective_chat.id)
        return
    try:
        await runtime.chat_flow(worker_context, text, None)
    except Exception as exc:
        logger.exception("Chat flow failed chat_id=%s", update.effective_chat.id)
        await worker_context.telegram.send_text(f"ERROR: {str(exc) or type(exc).__name__}")
