from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx

from cmdbot.config import AppConfig
from cmdbot.storage import KeyValueStore

if TYPE_CHECKING:
    from cmdbot.context import WorkerContext
    from cmdbot.registry import CommandRegistry
    from cmdbot.telegram_io import SendOutcome

ChatFlow = Callable[["WorkerContext", "str | None", Any], Awaitable["SendOutcome"]]


@dataclass
class RuntimeContext:
    config: AppConfig
    store: KeyValueStore
    http_client: httpx.AsyncClient
    registry: "CommandRegistry"
    chat_flow: ChatFlow

    def to_bot_data(self) -> dict[str, Any]:
        return {"runtime": self}
