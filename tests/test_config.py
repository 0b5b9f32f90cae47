from __future__ import annotations

import json

from cmdbot.config import DEFAULT_LOCK_USER_CONFIG_KEYS, load_config, load_dotenv, parse_config


def test_parse_config_defaults() -> None:
    config = parse_config({})
    assert config.group_chat_bot_share_mode is True
    assert config.require_bot_mention is True
    assert config.max_history_length == 20
    assert config.lock_user_config_keys == tuple(DEFAULT_LOCK_USER_CONFIG_KEYS)
    assert config.custom_commands == {}
    assert config.plugins_command == {}
    assert config.dev_mode is False


def test_env_overrides_secrets() -> None:
    config = parse_config(
        {"telegram_bot_token": "from-file", "encryption_key": "file-key"},
        {"TELEGRAM_BOT_TOKEN": "from-env"},
    )
    assert config.telegram_bot_token == "from-env"
    assert config.encryption_key == "file-key"


def test_nested_sections_are_read() -> None:
    config = parse_config(
        {
            "telegram": {"show_reply_button": True, "group_chat_bot_share_mode": False, "require_bot_mention": False},
            "build": {"timestamp": 1700000000, "version": "abc123"},
            "commands": {"custom": {"/gpt4": "/setenv CHAT_MODEL=gpt-4o"}, "hide_buttons": ["/img", " "]},
            "plugins": {"commands": {"/ip": "{}"}, "descriptions": {"/ip": "IP"}, "env": {"KEY": "v"}},
            "lock_user_config_keys": [],
        }
    )
    assert config.show_reply_button is True
    assert config.group_chat_bot_share_mode is False
    assert config.require_bot_mention is False
    assert config.build_version == "abc123"
    assert config.custom_commands == {"/gpt4": "/setenv CHAT_MODEL=gpt-4o"}
    assert config.hide_command_buttons == ("/img",)
    assert config.plugins_command_descriptions == {"/ip": "IP"}
    assert config.plugins_env == {"KEY": "v"}
    assert config.lock_user_config_keys == ()


def test_load_config_and_dotenv(tmp_path) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"telegram_bot_token": "x"}), encoding="utf-8")
    (tmp_path / ".env").write_text("# comment\nENCRYPTION_KEY='quoted'\nBROKEN\n", encoding="utf-8")
    env = load_dotenv(tmp_path / ".env")
    assert env == {"ENCRYPTION_KEY": "quoted"}
    config = load_config(tmp_path / "config.json", env)
    assert config.telegram_bot_token == "x"
    assert config.encryption_key == "quoted"
    assert load_dotenv(tmp_path / "missing.env") == {}
