from __future__ import annotations

import logging
from typing import Awaitable, Callable

import httpx
from telegram import Update
from telegram.ext import Application, ApplicationBuilder, ContextTypes, MessageHandler, filters

from cmdbot.chat_flow import chat_with_llm
from cmdbot.config import AppConfig
from cmdbot.handlers.messages import handle_message
from cmdbot.registry import build_registry
from cmdbot.runtime import RuntimeContext
from cmdbot.security import build_cipher
from cmdbot.storage import KeyValueStore

HandlerFn = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]

logger = logging.getLogger("bot")


def register_handlers(application: Application, *, message_handler: HandlerFn) -> None:
    application.add_handler(MessageHandler(filters.TEXT | filters.CAPTION, message_handler))


def build_runtime(config: AppConfig) -> RuntimeContext:
    cipher = build_cipher(config.encryption_key)
    store = KeyValueStore(config.database_path, cipher)
    http_client = httpx.AsyncClient(timeout=config.http_timeout_sec, follow_redirects=True)
    registry = build_registry(config)
    logger.info(
        "Runtime ready commands=%s plugins=%s aliases=%s dev_mode=%s",
        len(registry.definitions),
        len(config.plugins_command),
        len(config.custom_commands),
        config.dev_mode,
    )
    return RuntimeContext(
        config=config,
        store=store,
        http_client=http_client,
        registry=registry,
        chat_flow=chat_with_llm,
    )


def build_application(config: AppConfig, runtime: RuntimeContext) -> Application:
    application = ApplicationBuilder().token(config.telegram_bot_token).build()
    application.bot_data.update(runtime.to_bot_data())
    register_handlers(application, message_handler=handle_message)
    return application
