from __future__ import annotations

import html
import json
import logging
from datetime import datetime
from functools import partial
from typing import Any

from telegram import ReplyKeyboardMarkup, ReplyKeyboardRemove
from telegram.constants import ChatAction, ParseMode

from cmdbot.agents import load_chat_llm, load_image_gen
from cmdbot.chat_flow import regenerate_history
from cmdbot.context import WorkerContext, is_group_chat
from cmdbot.errors import ConfigKeyError
from cmdbot.i18n import HELP_SUMMARY, NEW_CHAT_START, command_help
from cmdbot.telegram_io import SendOutcome
from cmdbot.user_config import normalize_key
from cmdbot.utils import fire_and_forget

logger = logging.getLogger("commands")


def _dump(value: Any) -> str:
    def _default(obj: Any) -> Any:
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return str(obj)

    return json.dumps(value, indent=2, ensure_ascii=False, default=_default)


async def command_get_help(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    config = context.runtime.config
    lines = [HELP_SUMMARY]
    lines.extend(f"{item['command']}: {item['description']}" for item in context.runtime.registry.document())
    lines.extend(
        f"{key}: {config.custom_command_descriptions[key]}"
        for key in config.custom_commands
        if config.custom_command_descriptions.get(key)
    )
    lines.extend(
        f"{key}: {config.plugins_command_descriptions[key]}"
        for key in config.plugins_command
        if config.plugins_command_descriptions.get(key)
    )
    return await context.telegram.send_text("\n".join(lines))


async def command_new_chat_context(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    context.runtime.store.delete(context.share_context.chat_history_key)
    text = NEW_CHAT_START
    if not command.startswith("/new"):
        text += f"({context.chat_context.chat_id})"

    if context.runtime.config.show_reply_button and not is_group_chat(context.share_context.chat_type):
        context.chat_context.reply_markup = ReplyKeyboardMarkup(
            [["/new", "/redo"]],
            selective=True,
            resize_keyboard=True,
            one_time_keyboard=False,
        )
    else:
        context.chat_context.reply_markup = ReplyKeyboardRemove(selective=True)
    logger.info("New chat context chat_id=%s", context.share_context.chat_id)
    return await context.telegram.send_text(text)


async def command_generate_img(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    if not subcommand:
        return await context.telegram.send_text(command_help("img"))
    agent = load_image_gen(context.user_config, context.runtime.http_client)
    if agent is None:
        return await context.telegram.send_text("ERROR: Image generator not found")
    # Presence hint only; never awaited and its failure is dropped.
    fire_and_forget(context.telegram.send_chat_action(ChatAction.UPLOAD_PHOTO), logger, "upload_photo")
    image = await agent.request(subcommand, context.user_config)
    outcome = await context.telegram.send_photo(image)
    if not outcome.ok:
        return await context.telegram.send_text(f"ERROR: {outcome.status} {outcome.body}")
    return outcome


async def command_update_user_config(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    if "=" not in subcommand:
        return await context.telegram.send_text(command_help("setenv"))
    raw_key, value = subcommand.split("=", 1)
    key = normalize_key(raw_key)
    lock_keys = context.runtime.config.lock_user_config_keys
    try:
        context.user_config.validate_key(key, lock_keys)
    except ConfigKeyError as exc:
        return await context.telegram.send_text(str(exc))
    context.user_config.define(key, value)
    logger.info("Update user config chat_id=%s key=%s", context.share_context.chat_id, key)
    context.persist_user_config()
    return await context.telegram.send_text("Update user config success")


async def command_update_user_configs(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    values = json.loads(subcommand)
    if not isinstance(values, dict):
        return await context.telegram.send_text(command_help("setenvs"))
    lock_keys = context.runtime.config.lock_user_config_keys
    staged = context.user_config.copy()
    for raw_key, value in values.items():
        key = normalize_key(str(raw_key))
        try:
            staged.validate_key(key, lock_keys)
        except ConfigKeyError as exc:
            return await context.telegram.send_text(str(exc))
        staged.define(key, value)
    context.user_config = staged
    logger.info("Update user configs chat_id=%s keys=%s", context.share_context.chat_id, len(values))
    context.persist_user_config()
    return await context.telegram.send_text("Update user config success")


async def command_delete_user_config(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    key = normalize_key(subcommand)
    try:
        context.user_config.validate_key(key, context.runtime.config.lock_user_config_keys)
    except ConfigKeyError as exc:
        return await context.telegram.send_text(str(exc))
    context.user_config.undefine(key)
    logger.info("Delete user config chat_id=%s key=%s", context.share_context.chat_id, key)
    context.persist_user_config()
    return await context.telegram.send_text("Delete user config success")


async def command_clear_user_config(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    context.runtime.store.put(context.share_context.config_store_key, json.dumps({}))
    logger.info("Clear user config chat_id=%s", context.share_context.chat_id)
    return await context.telegram.send_text("Clear user config success")


def _format_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


async def command_fetch_update(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    config = context.runtime.config
    resp = await context.runtime.http_client.get(config.update_info_url)
    resp.raise_for_status()
    online = resp.json()
    online_ts = int(online.get("ts", 0))
    online_sha = str(online.get("sha", ""))
    current = f"{config.build_version}({_format_ts(config.build_timestamp)})"
    if config.build_timestamp < online_ts:
        text = f"New version detected: {online_sha}({_format_ts(online_ts)})\nCurrent version: {current}"
    else:
        text = f"Current version: {current} is up to date"
    return await context.telegram.send_text(text)


async def command_system(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    client = context.runtime.http_client
    chat_agent = load_chat_llm(context.user_config, client)
    image_agent = load_image_gen(context.user_config, client)
    agent = {
        "AI_PROVIDER": chat_agent.name if chat_agent else None,
        (chat_agent.model_key if chat_agent else "AI_PROVIDER_NOT_FOUND"): (
            chat_agent.model(context.user_config) if chat_agent else None
        ),
        "AI_IMAGE_PROVIDER": image_agent.name if image_agent else None,
        (image_agent.model_key if image_agent else "AI_IMAGE_PROVIDER_NOT_FOUND"): (
            image_agent.model(context.user_config) if image_agent else None
        ),
    }
    parts = [f"AGENT: {_dump(agent)}"]
    if context.runtime.config.dev_mode:
        lock_keys = context.runtime.config.lock_user_config_keys
        user_config = context.user_config.redacted().trim(lock_keys)
        chat_context = dict(vars(context.chat_context))
        share_context = dict(vars(context.share_context.masked()))
        parts.append(f"USER_CONFIG: {_dump(user_config)}")
        parts.append(f"CHAT_CONTEXT: {_dump(chat_context)}")
        parts.append(f"SHARE_CONTEXT: {_dump(share_context)}")
    context.chat_context.parse_mode = ParseMode.HTML
    body = "\n".join(parts)
    return await context.telegram.send_text(f"<pre>{html.escape(body)}</pre>")


async def command_regenerate(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    modifier = partial(regenerate_history, override=subcommand)
    return await context.runtime.chat_flow(context, None, modifier)


async def command_echo(message: Any, command: str, subcommand: str, context: WorkerContext) -> SendOutcome:
    payload = message.to_dict() if hasattr(message, "to_dict") else vars(message)
    context.chat_context.parse_mode = ParseMode.HTML
    return await context.telegram.send_text(f"<pre>{html.escape(_dump({'message': payload}))}</pre>")
