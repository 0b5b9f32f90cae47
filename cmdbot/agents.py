from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from cmdbot.user_config import UserConfig

logger = logging.getLogger("agents")


class ChatAgent(Protocol):
    name: str
    model_key: str

    def enabled(self, config: UserConfig) -> bool: ...

    def model(self, config: UserConfig) -> str | None: ...

    async def request(self, messages: list[dict[str, str]], config: UserConfig) -> str: ...


class ImageAgent(Protocol):
    name: str
    model_key: str

    def enabled(self, config: UserConfig) -> bool: ...

    def model(self, config: UserConfig) -> str | None: ...

    async def request(self, prompt: str, config: UserConfig) -> bytes | str: ...


def _openai_key(config: UserConfig) -> str | None:
    keys = [key for key in (config.get("OPENAI_API_KEY") or []) if key]
    if not keys:
        return None
    return random.choice(keys)


def _extract_path(data: Any, path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


async def _post_json(client: httpx.AsyncClient, url: str, headers: dict[str, str], payload: dict[str, Any]) -> Any:
    resp = await client.post(url, headers=headers, json=payload)
    resp.raise_for_status()
    return resp.json()


@dataclass
class OpenAIChat:
    client: httpx.AsyncClient
    name: str = "openai"
    model_key: str = "OPENAI_CHAT_MODEL"

    def enabled(self, config: UserConfig) -> bool:
        return _openai_key(config) is not None

    def model(self, config: UserConfig) -> str | None:
        return config.get(self.model_key)

    async def request(self, messages: list[dict[str, str]], config: UserConfig) -> str:
        url = f"{str(config.get('OPENAI_API_BASE')).rstrip('/')}/chat/completions"
        payload = {**(config.get("OPENAI_API_EXTRA_PARAMS") or {}), "model": self.model(config), "messages": messages}
        data = await _post_json(self.client, url, {"Authorization": f"Bearer {_openai_key(config)}"}, payload)
        content = _extract_path(data, "choices.0.message.content")
        if not content:
            raise ValueError("Chat completion response missing content")
        logger.info("Chat completion provider=%s chars=%s", self.name, len(content))
        return str(content)


@dataclass
class AzureChat:
    client: httpx.AsyncClient
    name: str = "azure"
    model_key: str = "AZURE_COMPLETIONS_API"

    def enabled(self, config: UserConfig) -> bool:
        return bool(config.get("AZURE_API_KEY") and config.get("AZURE_COMPLETIONS_API"))

    def model(self, config: UserConfig) -> str | None:
        api = config.get(self.model_key)
        if not api:
            return None
        return httpx.URL(api).path.split("/deployments/", 1)[-1].split("/", 1)[0] or None

    async def request(self, messages: list[dict[str, str]], config: UserConfig) -> str:
        payload = {**(config.get("OPENAI_API_EXTRA_PARAMS") or {}), "messages": messages}
        data = await _post_json(self.client, str(config.get("AZURE_COMPLETIONS_API")), {"api-key": str(config.get("AZURE_API_KEY"))}, payload)
        content = _extract_path(data, "choices.0.message.content")
        if not content:
            raise ValueError("Chat completion response missing content")
        logger.info("Chat completion provider=%s chars=%s", self.name, len(content))
        return str(content)


@dataclass
class OpenAIImage:
    client: httpx.AsyncClient
    name: str = "openai"
    model_key: str = "DALL_E_MODEL"

    def enabled(self, config: UserConfig) -> bool:
        return _openai_key(config) is not None

    def model(self, config: UserConfig) -> str | None:
        return config.get(self.model_key)

    async def request(self, prompt: str, config: UserConfig) -> bytes | str:
        url = f"{str(config.get('OPENAI_API_BASE')).rstrip('/')}/images/generations"
        payload: dict[str, Any] = {
            "prompt": prompt,
            "n": 1,
            "size": config.get("DALL_E_IMAGE_SIZE"),
            "model": self.model(config),
        }
        if payload["model"] == "dall-e-3":
            payload["quality"] = config.get("DALL_E_IMAGE_QUALITY")
            payload["style"] = config.get("DALL_E_IMAGE_STYLE")
        data = await _post_json(self.client, url, {"Authorization": f"Bearer {_openai_key(config)}"}, payload)
        image_url = _extract_path(data, "data.0.url")
        if not image_url:
            raise ValueError(_extract_path(data, "error.message") or "Image generation response missing url")
        return str(image_url)


@dataclass
class AzureImage:
    client: httpx.AsyncClient
    name: str = "azure"
    model_key: str = "AZURE_DALLE_API"

    def enabled(self, config: UserConfig) -> bool:
        return bool(config.get("AZURE_API_KEY") and config.get("AZURE_DALLE_API"))

    def model(self, config: UserConfig) -> str | None:
        api = config.get(self.model_key)
        if not api:
            return None
        return httpx.URL(api).path.split("/deployments/", 1)[-1].split("/", 1)[0] or None

    async def request(self, prompt: str, config: UserConfig) -> bytes | str:
        payload = {"prompt": prompt, "n": 1, "size": config.get("DALL_E_IMAGE_SIZE")}
        data = await _post_json(self.client, str(config.get("AZURE_DALLE_API")), {"api-key": str(config.get("AZURE_API_KEY"))}, payload)
        image_url = _extract_path(data, "data.0.url")
        if not image_url:
            raise ValueError("Image generation response missing url")
        return str(image_url)


def _select(agents: list[Any], provider: str | None, config: UserConfig) -> Any | None:
    for agent in agents:
        if provider not in (None, "", "auto") and agent.name != provider:
            continue
        if agent.enabled(config):
            return agent
    return None


def load_chat_llm(config: UserConfig, client: httpx.AsyncClient) -> ChatAgent | None:
    return _select([OpenAIChat(client), AzureChat(client)], config.get("AI_PROVIDER"), config)


def load_image_gen(config: UserConfig, client: httpx.AsyncClient) -> ImageAgent | None:
    return _select([OpenAIImage(client), AzureImage(client)], config.get("AI_IMAGE_PROVIDER"), config)
