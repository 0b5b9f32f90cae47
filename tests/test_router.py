from __future__ import annotations

import asyncio
import json

import httpx

from cmdbot.i18n import NEW_CHAT_START
from cmdbot.router import dispatch, extract_text, strip_command_mention


def _template(**overrides) -> str:
    template = {
        "url": "https://plugin.example/run",
        "method": "GET",
        "query": {"q": "{{DATA}}"},
        "response": {"content": {"input_type": "text", "output_type": "text"}},
    }
    template.update(overrides)
    return json.dumps(template)


def test_extract_text_prefers_text_then_caption(message) -> None:
    assert extract_text(message(text="  /new  ")) == "/new"
    assert extract_text(message(caption=" /img cat ")) == "/img cat"
    assert extract_text(message()) == ""


def test_new_routes_with_and_without_arguments(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    for text in ("/new", "/new extra words"):
        context = make_context(runtime)
        runtime.store.put(context.share_context.chat_history_key, "[]")
        outcome = asyncio.run(dispatch(message(text=text), context))
        assert outcome is not None and outcome.ok
        assert context.telegram.texts == [NEW_CHAT_START]
        assert runtime.store.get(context.share_context.chat_history_key) is None


def test_non_commands_return_none(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime)
    assert asyncio.run(dispatch(message(text="hello there"), context)) is None
    assert asyncio.run(dispatch(message(text="/newer"), context)) is None
    assert asyncio.run(dispatch(message(), context)) is None
    assert context.telegram.texts == []


def test_caption_is_dispatched(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime)
    asyncio.run(dispatch(message(caption="/start"), context))
    assert context.telegram.texts == [f"{NEW_CHAT_START}(100)"]


def test_alias_is_substituted_once(make_runtime, make_context, message) -> None:
    runtime = make_runtime(custom_commands={"/hi": "/new", "/new": "/help"})
    context = make_context(runtime)
    asyncio.run(dispatch(message(text="/hi"), context))
    assert context.telegram.texts == [NEW_CHAT_START]


def test_alias_must_match_exactly(make_runtime, make_context, message) -> None:
    runtime = make_runtime(custom_commands={"/hi": "/new"})
    context = make_context(runtime)
    assert asyncio.run(dispatch(message(text="/hi there"), context)) is None


def test_plugin_command_wins_over_system_command(make_runtime, make_context, message) -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, text="plugin reply")

    runtime = make_runtime(http_handler=handler, plugins_command={"/new": _template()})
    context = make_context(runtime)
    runtime.store.put(context.share_context.chat_history_key, "[]")

    asyncio.run(dispatch(message(text="/new topic"), context))

    assert context.telegram.texts == ["plugin reply"]
    assert seen[0].params["q"] == "topic"
    assert runtime.store.get(context.share_context.chat_history_key) == "[]"


def test_plugin_error_appends_help(make_runtime, make_context, message) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    runtime = make_runtime(
        http_handler=handler,
        plugins_command={"/weather": _template()},
        plugins_command_descriptions={"/weather": "Usage: /weather <city>"},
    )
    context = make_context(runtime)
    outcome = asyncio.run(dispatch(message(text="/weather Oslo"), context))

    assert outcome is not None
    assert context.telegram.texts == ["ERROR: 500 Internal Server Error\nUsage: /weather <city>"]


def test_plugin_template_is_fetched_from_url(make_runtime, make_context, message) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "templates.example":
            return httpx.Response(200, text=_template(response={"content": {"input_type": "json", "output_type": "html", "output": "<b>{{data.answer}}</b>"}}))
        return httpx.Response(200, json={"answer": 42})

    runtime = make_runtime(http_handler=handler, plugins_command={"/ask": "https://templates.example/ask.json"})
    context = make_context(runtime)
    asyncio.run(dispatch(message(text="/ask life"), context))

    assert context.telegram.texts == ["<b>42</b>"]
    assert context.telegram.parse_modes == ["HTML"]


def test_plugin_malformed_template_reports_error(make_runtime, make_context, message) -> None:
    runtime = make_runtime(plugins_command={"/bad": "{not json"})
    context = make_context(runtime)
    outcome = asyncio.run(dispatch(message(text="/bad"), context))
    assert outcome is not None
    assert context.telegram.texts[0].startswith("ERROR: Invalid template JSON")


def test_plugin_image_is_sent_as_photo(make_runtime, make_context, message) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x89PNG")

    template = _template(response={"content": {"input_type": "blob", "output_type": "image"}})
    runtime = make_runtime(http_handler=handler, plugins_command={"/cat": template})
    context = make_context(runtime)
    asyncio.run(dispatch(message(text="/cat"), context))

    assert context.telegram.photos == [b"\x89PNG"]
    assert context.telegram.texts == []


def test_handler_errors_become_error_text(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime)
    outcome = asyncio.run(dispatch(message(text="/setenvs {broken"), context))
    assert outcome is not None and outcome.ok
    assert context.telegram.texts[0].startswith("ERROR: ")


def test_auth_denial_names_required_roles(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime, chat_type="group", role="member")
    asyncio.run(dispatch(message(text="/system", chat_type="group"), context))
    assert context.telegram.texts == ["ERROR: Permission denied, need administrator or creator"]


def test_auth_role_lookup_failure(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime, chat_type="supergroup", role=None)
    asyncio.run(dispatch(message(text="/system", chat_type="supergroup"), context))
    assert context.telegram.texts == ["ERROR: Get chat role failed"]


def test_private_chat_skips_role_lookup(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime, role=None)
    asyncio.run(dispatch(message(text="/system"), context))
    assert context.telegram.role_calls == 0
    assert context.telegram.texts[0].startswith("<pre>AGENT:")


def test_echo_only_in_dev_mode(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime)
    assert asyncio.run(dispatch(message(text="/echo"), context)) is None

    dev_runtime = make_runtime(dev_mode=True)
    dev_context = make_context(dev_runtime)
    asyncio.run(dispatch(message(text="/echo"), dev_context))
    assert dev_context.telegram.texts[0].startswith("<pre>")
    assert "/echo" in dev_context.telegram.texts[0]


def test_group_menu_command_with_bot_mention(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime, chat_type="group")
    runtime.store.put(context.share_context.chat_history_key, "[]")

    outcome = asyncio.run(dispatch(message(text="/new@CmdBot", chat_type="group"), context))

    assert outcome is not None
    assert context.telegram.texts == [NEW_CHAT_START]
    assert runtime.store.get(context.share_context.chat_history_key) is None


def test_mention_of_another_bot_is_not_stripped(make_runtime, make_context, message) -> None:
    runtime = make_runtime()
    context = make_context(runtime, chat_type="group")
    assert asyncio.run(dispatch(message(text="/new@otherbot", chat_type="group"), context)) is None


def test_strip_command_mention_keeps_arguments() -> None:
    assert strip_command_mention("/setenv@cmdbot CHAT_MODEL=x", "cmdbot") == "/setenv CHAT_MODEL=x"
    assert strip_command_mention("hello @cmdbot", "cmdbot") == "hello @cmdbot"
    assert strip_command_mention("/new@cmdbot", None) == "/new@cmdbot"
