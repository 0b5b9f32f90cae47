from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from cmdbot.agents import load_chat_llm
from cmdbot.errors import HistoryNotFoundError, ProviderNotFoundError
from cmdbot.telegram_io import SendOutcome

if TYPE_CHECKING:
    from cmdbot.context import WorkerContext

logger = logging.getLogger("chat_flow")

HistoryItem = dict[str, str]


@dataclass(frozen=True)
class HistoryModifierResult:
    history: list[HistoryItem]
    message: str | None


HistoryModifier = Callable[[list[HistoryItem], "str | None"], HistoryModifierResult]


def regenerate_history(history: list[HistoryItem], text: str | None, override: str = "") -> HistoryModifierResult:
    """Drop the last user turn and everything after it.

    The removed user entry's content becomes the message to resend unless
    ``override`` is given. ``history`` itself is never modified.
    """
    if not history:
        raise HistoryNotFoundError()
    history_copy = copy.deepcopy(history)
    next_text = text
    while history_copy:
        item = history_copy.pop()
        if item.get("role") == "user":
            if not text:
                next_text = item.get("content") or None
            break
    if override:
        next_text = override
    return HistoryModifierResult(history=history_copy, message=next_text)


def load_history(context: "WorkerContext") -> list[HistoryItem]:
    raw = context.runtime.store.get(context.share_context.chat_history_key)
    if not raw:
        return []
    try:
        history = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored history is not valid JSON key=%s", context.share_context.chat_history_key)
        return []
    if not isinstance(history, list):
        return []
    return [item for item in history if isinstance(item, dict)]


async def chat_with_llm(
    context: "WorkerContext",
    text: str | None,
    modifier: HistoryModifier | None = None,
) -> SendOutcome:
    history = load_history(context)
    if modifier is not None:
        result = modifier(history, text)
        history, text = result.history, result.message
    if not text:
        raise ValueError("Message is empty")

    agent = load_chat_llm(context.user_config, context.runtime.http_client)
    if agent is None:
        raise ProviderNotFoundError("Chat provider not found")

    messages: list[HistoryItem] = []
    system_prompt = context.user_config.get("SYSTEM_INIT_MESSAGE")
    if system_prompt:
        messages.append({"role": context.user_config.get("SYSTEM_INIT_MESSAGE_ROLE") or "system", "content": system_prompt})
    messages.extend({"role": item.get("role", "user"), "content": item.get("content", "")} for item in history)
    messages.append({"role": "user", "content": text})

    answer = await agent.request(messages, context.user_config)

    history = [*history, {"role": "user", "content": text}, {"role": "assistant", "content": answer}]
    max_length = context.runtime.config.max_history_length
    if max_length > 0 and len(history) > max_length:
        history = history[-max_length:]
    context.runtime.store.put(context.share_context.chat_history_key, json.dumps(history, ensure_ascii=False))
    logger.info("Chat turn stored chat_id=%s history=%s", context.share_context.chat_id, len(history))
    return await context.telegram.send_text(answer)
