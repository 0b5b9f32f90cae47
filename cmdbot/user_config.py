from __future__ import annotations

import copy
import json
from typing import Any, Iterable, Mapping

from cmdbot.errors import ConfigKeyError

USER_CONFIG_DEFAULTS: dict[str, Any] = {
    "AI_PROVIDER": "auto",
    "AI_IMAGE_PROVIDER": "auto",
    "SYSTEM_INIT_MESSAGE": None,
    "SYSTEM_INIT_MESSAGE_ROLE": "system",
    "OPENAI_API_KEY": [],
    "OPENAI_CHAT_MODEL": "gpt-4o-mini",
    "OPENAI_API_BASE": "https://api.openai.com/v1",
    "OPENAI_API_EXTRA_PARAMS": {},
    "DALL_E_MODEL": "dall-e-3",
    "DALL_E_IMAGE_SIZE": "1024x1024",
    "DALL_E_IMAGE_QUALITY": "standard",
    "DALL_E_IMAGE_STYLE": "vivid",
    "AZURE_API_KEY": None,
    "AZURE_COMPLETIONS_API": None,
    "AZURE_DALLE_API": None,
}

ENV_KEY_MAPPER: dict[str, str] = {
    "CHAT_MODEL": "OPENAI_CHAT_MODEL",
    "API_KEY": "OPENAI_API_KEY",
}

SECRET_KEYS = (
    "OPENAI_API_KEY",
    "AZURE_API_KEY",
    "AZURE_COMPLETIONS_API",
    "AZURE_DALLE_API",
)

MASK = "******"


def normalize_key(key: str) -> str:
    key = key.strip()
    return ENV_KEY_MAPPER.get(key, key)


def coerce_value(current: Any, value: Any) -> Any:
    """Convert ``value`` to the type of the setting it replaces.

    Values arriving from chat are strings; settings whose current value is
    ``None`` accept anything unchanged.
    """
    if current is None or value is None:
        return value
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() == "true"
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        if isinstance(value, list):
            return value
        text = str(value).strip()
        if text.startswith("["):
            parsed = json.loads(text)
            if not isinstance(parsed, list):
                raise ValueError(f"Expected a JSON list, got {type(parsed).__name__}")
            return parsed
        return [item.strip() for item in text.split(",") if item.strip()]
    if isinstance(current, dict):
        if isinstance(value, dict):
            return value
        parsed = json.loads(str(value))
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed
    return str(value)


class UserConfig:
    def __init__(self, values: Mapping[str, Any], define_keys: Iterable[str] = ()) -> None:
        self._values: dict[str, Any] = dict(values)
        self.define_keys: list[str] = list(dict.fromkeys(define_keys))

    @classmethod
    def from_defaults(cls, overrides: Mapping[str, Any] | None = None) -> "UserConfig":
        config = cls(copy.deepcopy(USER_CONFIG_DEFAULTS))
        if overrides:
            config.merge(overrides)
        return config

    def keys(self) -> list[str]:
        return list(self._values.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def merge(self, source: Mapping[str, Any], lock_keys: Iterable[str] = ()) -> None:
        locked = set(lock_keys)
        for key, value in source.items():
            if key in locked or key not in self._values:
                continue
            self._values[key] = coerce_value(self._values[key], value)

    def validate_key(self, key: str, lock_keys: Iterable[str]) -> None:
        if key in set(lock_keys):
            raise ConfigKeyError(f"Key {key} is locked")
        if key not in self._values:
            raise ConfigKeyError(f"Key {key} not found")

    def define(self, key: str, value: Any) -> None:
        self._values[key] = coerce_value(self._values[key], value)
        if key not in self.define_keys:
            self.define_keys.append(key)

    def undefine(self, key: str) -> None:
        self._values[key] = None
        self.define_keys = [item for item in self.define_keys if item != key]

    def load_persisted(self, raw: Mapping[str, Any], lock_keys: Iterable[str]) -> None:
        locked = set(lock_keys)
        stored_keys = raw.get("DEFINE_KEYS") or []
        if not isinstance(stored_keys, list):
            stored_keys = []
        self.merge({k: v for k, v in raw.items() if k != "DEFINE_KEYS"}, locked)
        self.define_keys = [
            key for key in dict.fromkeys(str(k) for k in stored_keys) if key in self._values and key not in locked
        ]

    def trim(self, lock_keys: Iterable[str]) -> dict[str, Any]:
        """Return the persisted form: user-defined keys only, never locked ones."""
        locked = set(lock_keys)
        keys = [key for key in self.define_keys if key not in locked]
        trimmed = {key: copy.deepcopy(self._values.get(key)) for key in keys}
        trimmed["DEFINE_KEYS"] = keys
        return trimmed

    def copy(self) -> "UserConfig":
        return UserConfig(copy.deepcopy(self._values), self.define_keys)

    def redacted(self, secret_keys: Iterable[str] = SECRET_KEYS, mask: str = MASK) -> "UserConfig":
        masked = self.copy()
        for key in secret_keys:
            if key not in masked._values:
                continue
            current = masked._values[key]
            masked._values[key] = [mask] if isinstance(current, list) else mask
        return masked

    def to_dict(self) -> dict[str, Any]:
        data = copy.deepcopy(self._values)
        data["DEFINE_KEYS"] = list(self.define_keys)
        return data
