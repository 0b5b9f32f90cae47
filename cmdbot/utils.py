from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Coroutine, Iterable


TELEGRAM_MESSAGE_LIMIT = 4096

_background_tasks: set[asyncio.Task[Any]] = set()


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> Iterable[str]:
    if len(text) <= limit:
        yield text
        return

    chunk = ""
    for para in text.split("\n\n"):
        candidate = para if not chunk else f"{chunk}\n\n{para}"
        if len(candidate) <= limit:
            chunk = candidate
            continue

        if chunk:
            yield chunk
            chunk = ""

        if len(para) <= limit:
            chunk = para
            continue

        for i in range(0, len(para), limit):
            yield para[i : i + limit]

    if chunk:
        yield chunk


def fire_and_forget(coro: Coroutine[Any, Any, Any], logger: logging.Logger, label: str) -> asyncio.Task[Any]:
    """Schedule a best-effort side call without awaiting it.

    The task is kept referenced until it finishes. Its failure is retrieved
    and logged at debug level only; it never reaches the caller.
    """
    task = asyncio.create_task(coro)
    _background_tasks.add(task)

    def _done(finished: asyncio.Task[Any]) -> None:
        _background_tasks.discard(finished)
        if finished.cancelled():
            return
        exc = finished.exception()
        if exc is not None:
            logger.debug("Background task failed label=%s error=%r", label, exc)

    task.add_done_callback(_done)
    return task


def strip_bot_mention(text: str, bot_username: str | None) -> str:
    if not bot_username:
        return text.strip()
    pattern = re.compile(rf"@{re.escape(bot_username)}\b", re.IGNORECASE)
    return pattern.sub("", text).strip()


def is_bot_mentioned(text: str, bot_username: str | None) -> bool:
    if not bot_username:
        return False
    return f"@{bot_username.lower()}" in text.lower()
