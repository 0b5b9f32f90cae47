from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cmdbot.errors import PluginRequestError, PluginTemplateError
from cmdbot.plugins import (
    execute_request,
    format_input,
    load_template,
    parse_template,
    prepare_input,
    render_string,
    render_value,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_format_input_variants() -> None:
    assert format_input("Oslo", "text") == "Oslo"
    assert format_input('{"a": 1}', "json") == {"a": 1}
    assert format_input("a  b c", "space-separated") == ["a", "b", "c"]
    assert format_input("a, b,,c", "comma-separated") == ["a", "b", "c"]
    with pytest.raises(PluginTemplateError):
        format_input("{oops", "json")


def test_render_string_each_and_if() -> None:
    scope = {"data": {"items": [{"name": "x"}, {"name": "y"}], "ok": True, "missing": None}}
    template = "{{#each item in data.items}}- {{item.name}}\n{{/each}}"
    assert render_string(template, scope) == "- x\n- y\n"
    assert render_string("{{#if data.ok}}yes{{#else}}no{{/if}}", scope) == "yes"
    assert render_string("{{#if data.missing}}yes{{#else}}no{{/if}}", scope) == "no"
    assert render_string("{{data.items.1.name}}!", scope) == "y!"
    assert render_string("[{{data.nope.deeper}}]", scope) == "[]"


def test_render_string_rejects_unclosed_block() -> None:
    with pytest.raises(PluginTemplateError):
        render_string("{{#each x in data}}open", {})


def test_render_value_keeps_type_of_single_variable() -> None:
    scope = {"DATA": ["a", "b"], "ENV": {"TOKEN": "t"}}
    rendered = render_value({"items": "{{DATA}}", "auth": "Bearer {{ENV.TOKEN}}", "n": 3}, scope)
    assert rendered == {"items": ["a", "b"], "auth": "Bearer t", "n": 3}


def test_parse_template_defaults_and_validation() -> None:
    template = parse_template({"url": "https://x.example", "method": "post"})
    assert template.method == "POST"
    assert template.input_type == "text"
    assert template.content.output_type == "text"
    assert template.error is None

    with pytest.raises(PluginTemplateError):
        parse_template({"method": "GET"})
    with pytest.raises(PluginTemplateError):
        parse_template({"url": "https://x.example", "input": {"type": "yaml"}})
    with pytest.raises(PluginTemplateError):
        parse_template({"url": "https://x.example", "response": {"content": {"output_type": "video"}}})


def test_prepare_input_requires_input_when_declared() -> None:
    template = parse_template({"url": "https://x.example", "input": {"type": "comma-separated", "required": True}})
    with pytest.raises(PluginTemplateError, match="Missing input"):
        prepare_input(template, "")
    assert prepare_input(template, "a,b") == ["a", "b"]


def test_load_template_fetches_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"url": "https://x.example/{{DATA}}"})

    template = asyncio.run(load_template("https://templates.example/t.json", _client(handler)))
    assert template.url == "https://x.example/{{DATA}}"


def test_execute_request_sends_json_body_and_renders_output() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": {"sum": 3}})

    template = parse_template(
        {
            "url": "https://calc.example/{{ENV.PATH}}",
            "method": "POST",
            "headers": {"Authorization": "Bearer {{ENV.KEY}}"},
            "input": {"type": "space-separated"},
            "body": {"type": "json", "content": {"numbers": "{{DATA}}"}},
            "response": {"content": {"input_type": "json", "output_type": "markdown", "output": "*{{data.result.sum}}*"}},
        }
    )
    result = asyncio.run(
        execute_request(template, ["1", "2"], {"PATH": "add", "KEY": "k"}, _client(handler))
    )

    assert result.type == "markdown"
    assert result.content == "*3*"
    request = seen[0]
    assert request.url.path == "/add"
    assert request.headers["Authorization"] == "Bearer k"
    assert json.loads(request.content) == {"numbers": ["1", "2"]}


def test_execute_request_json_without_output_is_serialized() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"a": 1})

    template = parse_template({"url": "https://x.example", "response": {"content": {"input_type": "json"}}})
    result = asyncio.run(execute_request(template, "", {}, _client(handler)))
    assert result.content == '{"a": 1}'


def test_execute_request_renders_error_template() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "city not found"})

    template = parse_template(
        {
            "url": "https://weather.example",
            "response": {"error": {"input_type": "json", "output": "Weather error: {{data.message}}"}},
        }
    )
    with pytest.raises(PluginRequestError) as info:
        asyncio.run(execute_request(template, "Nowhere", {}, _client(handler)))
    assert str(info.value) == "Weather error: city not found"
    assert info.value.status_code == 404


def test_execute_request_form_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="ok")

    template = parse_template(
        {"url": "https://x.example", "method": "POST", "body": {"type": "form", "content": {"q": "{{DATA}}"}}}
    )
    asyncio.run(execute_request(template, "hi there", {}, _client(handler)))
    assert seen[0].content == b"q=hi+there"


def test_execute_request_unreadable_error_body_keeps_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    template = parse_template(
        {
            "url": "https://weather.example",
            "response": {"error": {"input_type": "json", "output": "Weather error: {{data.message}}"}},
        }
    )
    with pytest.raises(PluginRequestError) as info:
        asyncio.run(execute_request(template, "Oslo", {}, _client(handler)))
    assert str(info.value) == "502 Bad Gateway"
    assert info.value.status_code == 502
