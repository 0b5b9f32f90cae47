import sys
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cmdbot.config import parse_config  # noqa: E402
from cmdbot.context import CurrentChatContext, ShareContext, WorkerContext, build_store_keys, load_user_config  # noqa: E402
from cmdbot.registry import build_registry  # noqa: E402
from cmdbot.runtime import RuntimeContext  # noqa: E402
from cmdbot.storage import KeyValueStore  # noqa: E402
from cmdbot.telegram_io import SendOutcome  # noqa: E402


class FakeTelegram:
    """Records outbound calls instead of talking to Telegram."""

    def __init__(self, chat_context: CurrentChatContext, role: str | None = "member", photo_ok: bool = True) -> None:
        self.chat_context = chat_context
        self.role = role
        self.photo_ok = photo_ok
        self.texts: list[str] = []
        self.parse_modes: list[str | None] = []
        self.photos: list[object] = []
        self.actions: list[str] = []
        self.role_calls = 0

    async def send_text(self, text: str) -> SendOutcome:
        self.texts.append(text)
        self.parse_modes.append(self.chat_context.parse_mode)
        return SendOutcome(ok=True)

    async def send_photo(self, photo: object) -> SendOutcome:
        self.photos.append(photo)
        if not self.photo_ok:
            return SendOutcome(ok=False, status="Bad Request", body="wrong file identifier")
        return SendOutcome(ok=True)

    async def send_chat_action(self, action: str) -> SendOutcome:
        self.actions.append(action)
        return SendOutcome(ok=True)

    async def get_chat_role(self) -> str | None:
        self.role_calls += 1
        return self.role


def _not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, text="not found")


@pytest.fixture
def make_runtime():
    def factory(http_handler=None, chat_flow=None, **overrides) -> RuntimeContext:
        config = parse_config({"telegram_bot_token": "123:secret-token", "database_path": ":memory:"})
        if overrides:
            config = replace(config, **overrides)
        client = httpx.AsyncClient(transport=httpx.MockTransport(http_handler or _not_found))

        async def no_chat_flow(context, text, modifier):
            raise AssertionError("chat flow should not run")

        return RuntimeContext(
            config=config,
            store=KeyValueStore(":memory:"),
            http_client=client,
            registry=build_registry(config),
            chat_flow=chat_flow or no_chat_flow,
        )

    return factory


@pytest.fixture
def make_context():
    def factory(
        runtime: RuntimeContext,
        chat_type: str = "private",
        chat_id: int = 100,
        user_id: int = 7,
        role: str | None = "member",
    ) -> WorkerContext:
        history_key, config_key = build_store_keys(
            chat_id=chat_id,
            chat_type=chat_type,
            from_user_id=user_id,
            bot_id=1,
            share_mode=runtime.config.group_chat_bot_share_mode,
        )
        share_context = ShareContext(
            bot_id=1,
            current_bot_token=runtime.config.telegram_bot_token,
            chat_id=chat_id,
            chat_type=chat_type,
            from_user_id=user_id,
            chat_history_key=history_key,
            config_store_key=config_key,
            bot_username="cmdbot",
        )
        chat_context = CurrentChatContext(chat_id=chat_id)
        return WorkerContext(
            runtime=runtime,
            user_config=load_user_config(runtime, config_key),
            share_context=share_context,
            chat_context=chat_context,
            telegram=FakeTelegram(chat_context, role=role),
        )

    return factory


def make_message(text: str | None = None, caption: str | None = None, chat_id: int = 100, chat_type: str = "private"):
    return SimpleNamespace(
        text=text,
        caption=caption,
        message_id=1,
        chat=SimpleNamespace(id=chat_id, type=chat_type),
        from_user=SimpleNamespace(id=7),
    )


@pytest.fixture
def message():
    return make_message
