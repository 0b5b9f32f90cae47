from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

DEFAULT_UPDATE_INFO_URL = "https://raw.githubusercontent.com/TBXark/ChatGPT-Telegram-Workers/master/dist/buildinfo.json"

DEFAULT_LOCK_USER_CONFIG_KEYS = [
    "OPENAI_API_BASE",
    "AZURE_COMPLETIONS_API",
    "AZURE_DALLE_API",
]


@dataclass(frozen=True)
class AppConfig:
    telegram_bot_token: str
    database_path: str
    encryption_key: str
    http_timeout_sec: int
    dev_mode: bool
    show_reply_button: bool
    group_chat_bot_share_mode: bool
    require_bot_mention: bool
    max_history_length: int
    build_timestamp: int
    build_version: str
    update_info_url: str
    lock_user_config_keys: tuple[str, ...]
    hide_command_buttons: tuple[str, ...]
    user_config: Mapping[str, Any] = field(default_factory=dict)
    custom_commands: Mapping[str, str] = field(default_factory=dict)
    custom_command_descriptions: Mapping[str, str] = field(default_factory=dict)
    plugins_command: Mapping[str, str] = field(default_factory=dict)
    plugins_command_descriptions: Mapping[str, str] = field(default_factory=dict)
    plugins_env: Mapping[str, Any] = field(default_factory=dict)


def load_dotenv(path: str | Path) -> dict[str, str]:
    env_path = Path(path)
    if not env_path.exists():
        return {}
    result: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if len(value) >= 2 and ((value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'"))):
            value = value[1:-1]
        result[key] = value
    return result


def _str_map(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items()}


def _str_list(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item).strip() for item in raw if str(item).strip())


def parse_config(raw: Mapping[str, Any], env_values: Mapping[str, str] | None = None) -> AppConfig:
    env = env_values or {}
    telegram_raw = raw.get("telegram", {}) or {}
    build_raw = raw.get("build", {}) or {}
    commands_raw = raw.get("commands", {}) or {}
    plugins_raw = raw.get("plugins", {}) or {}

    lock_keys_raw = raw.get("lock_user_config_keys")
    if lock_keys_raw is None:
        lock_keys_raw = DEFAULT_LOCK_USER_CONFIG_KEYS

    user_config_raw = raw.get("user_config", {}) or {}
    if not isinstance(user_config_raw, dict):
        user_config_raw = {}

    plugins_env = plugins_raw.get("env", {}) or {}
    if not isinstance(plugins_env, dict):
        plugins_env = {}

    return AppConfig(
        telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN") or str(raw.get("telegram_bot_token", "")),
        database_path=str(raw.get("database_path", "./bot.sqlite3")),
        encryption_key=env.get("ENCRYPTION_KEY") or str(raw.get("encryption_key", "")),
        http_timeout_sec=int(raw.get("http_timeout_sec", 60)),
        dev_mode=bool(raw.get("dev_mode", False)),
        show_reply_button=bool(telegram_raw.get("show_reply_button", False)),
        group_chat_bot_share_mode=bool(telegram_raw.get("group_chat_bot_share_mode", True)),
        require_bot_mention=bool(telegram_raw.get("require_bot_mention", True)),
        max_history_length=int(raw.get("max_history_length", 20)),
        build_timestamp=int(build_raw.get("timestamp", 0)),
        build_version=str(build_raw.get("version", "unknown")),
        update_info_url=str(build_raw.get("update_info_url", DEFAULT_UPDATE_INFO_URL)),
        lock_user_config_keys=_str_list(lock_keys_raw),
        hide_command_buttons=_str_list(commands_raw.get("hide_buttons", [])),
        user_config=dict(user_config_raw),
        custom_commands=_str_map(commands_raw.get("custom")),
        custom_command_descriptions=_str_map(commands_raw.get("custom_descriptions")),
        plugins_command=_str_map(plugins_raw.get("commands")),
        plugins_command_descriptions=_str_map(plugins_raw.get("descriptions")),
        plugins_env=dict(plugins_env),
    )


def load_config(path: str | Path, env_values: Mapping[str, str] | None = None) -> AppConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_config(raw, env_values)
