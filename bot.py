from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from telegram import Update

from cmdbot.app_factory import build_application, build_runtime
from cmdbot.config import load_config, load_dotenv
from cmdbot.telegram_io import bind_commands


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("bot")


async def main() -> None:
    env_values = load_dotenv(Path(__file__).with_name(".env"))
    config = load_config(Path(__file__).with_name("config.json"), env_values)
    if not config.telegram_bot_token:
        raise ValueError("telegram_bot_token is not configured")

    runtime = build_runtime(config)
    application = build_application(config, runtime)

    try:
        await application.initialize()
        menu = runtime.registry.menu(config.hide_command_buttons)
        await bind_commands(application.bot, menu)
        await application.start()
        await application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        logger.info("Bot started as @%s", application.bot.username)
        await asyncio.Event().wait()
    finally:
        await runtime.http_client.aclose()
        runtime.store.close()
        await application.stop()
        await application.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
