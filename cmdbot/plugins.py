"""Plugin commands described by declarative JSON request templates.

A template names the outbound HTTP request (``url``, ``method``, ``headers``,
``query``, ``body``), how the command's trailing text becomes ``DATA``
(``input``), and how the response is turned into a reply (``response``).
Strings inside a template may use a small interpolation language::

    {{DATA.city}}                       value lookup, dotted path
    {{#each item in data.items}}...{{/each}}
    {{#if data.ok}}...{{#else}}...{{/if}}
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

import httpx

from cmdbot.errors import PluginRequestError, PluginTemplateError

logger = logging.getLogger("plugins")

INPUT_TYPES = frozenset({"text", "json", "space-separated", "comma-separated"})
BODY_TYPES = frozenset({"json", "form", "text"})
RESPONSE_INPUT_TYPES = frozenset({"json", "text", "blob"})
OUTPUT_TYPES = frozenset({"text", "markdown", "html", "image"})

_TAG_RE = re.compile(r"(\{\{.*?\}\})", re.S)
_EACH_RE = re.compile(r"^#each\s+(\w+)\s+in\s+(\S+)$")
_IF_RE = re.compile(r"^#if\s+(\S+)$")
_SINGLE_VAR_RE = re.compile(r"^\{\{\s*([^#/\s][^}]*?)\s*\}\}$")


@dataclass(frozen=True)
class _Text:
    value: str


@dataclass(frozen=True)
class _Var:
    path: str


@dataclass(frozen=True)
class _Each:
    alias: str
    path: str
    body: list["_Node"]


@dataclass(frozen=True)
class _If:
    path: str
    then: list["_Node"]
    otherwise: list["_Node"]


_Node = Union[_Text, _Var, _Each, _If]


def _tag_name(token: str) -> str | None:
    if token.startswith("{{") and token.endswith("}}"):
        return token[2:-2].strip()
    return None


def _parse(tokens: list[str], pos: int, stop: tuple[str, ...]) -> tuple[list[_Node], int]:
    nodes: list[_Node] = []
    while pos < len(tokens):
        token = tokens[pos]
        tag = _tag_name(token)
        if tag is None:
            if token:
                nodes.append(_Text(token))
            pos += 1
            continue
        if tag in stop:
            return nodes, pos
        each = _EACH_RE.match(tag)
        if each:
            body, pos = _parse(tokens, pos + 1, ("/each",))
            if pos >= len(tokens):
                raise PluginTemplateError(f"Unclosed block: {{{{{tag}}}}}")
            nodes.append(_Each(alias=each.group(1), path=each.group(2), body=body))
            pos += 1
            continue
        cond = _IF_RE.match(tag)
        if cond:
            then, pos = _parse(tokens, pos + 1, ("#else", "/if"))
            otherwise: list[_Node] = []
            if pos < len(tokens) and _tag_name(tokens[pos]) == "#else":
                otherwise, pos = _parse(tokens, pos + 1, ("/if",))
            if pos >= len(tokens):
                raise PluginTemplateError(f"Unclosed block: {{{{{tag}}}}}")
            nodes.append(_If(path=cond.group(1), then=then, otherwise=otherwise))
            pos += 1
            continue
        if tag.startswith("#") or tag.startswith("/"):
            raise PluginTemplateError(f"Unexpected tag: {{{{{tag}}}}}")
        nodes.append(_Var(tag))
        pos += 1
    return nodes, pos


def lookup(scope: Mapping[str, Any], path: str) -> Any:
    if path == ".":
        return scope.get(".")
    parts = path.split(".")
    if parts[0] not in scope:
        return None
    current: Any = scope[parts[0]]
    for part in parts[1:]:
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, bool)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _render_nodes(nodes: list[_Node], scope: Mapping[str, Any]) -> str:
    out: list[str] = []
    for node in nodes:
        if isinstance(node, _Text):
            out.append(node.value)
        elif isinstance(node, _Var):
            out.append(_stringify(lookup(scope, node.path)))
        elif isinstance(node, _Each):
            items = lookup(scope, node.path)
            if isinstance(items, dict):
                items = list(items.values())
            if not isinstance(items, list):
                continue
            for item in items:
                out.append(_render_nodes(node.body, {**scope, node.alias: item}))
        else:
            branch = node.then if lookup(scope, node.path) else node.otherwise
            out.append(_render_nodes(branch, scope))
    return "".join(out)


def render_string(template: str, scope: Mapping[str, Any]) -> str:
    nodes, _ = _parse(_TAG_RE.split(template), 0, ())
    return _render_nodes(nodes, scope)


def render_value(value: Any, scope: Mapping[str, Any]) -> Any:
    """Render a JSON structure; a lone ``{{path}}`` string keeps the value's type."""
    if isinstance(value, str):
        single = _SINGLE_VAR_RE.match(value)
        if single:
            return lookup(scope, single.group(1))
        return render_string(value, scope)
    if isinstance(value, list):
        return [render_value(item, scope) for item in value]
    if isinstance(value, dict):
        return {k: render_value(v, scope) for k, v in value.items()}
    return value


def format_input(text: str, input_type: str | None) -> Any:
    if input_type == "json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise PluginTemplateError(f"Invalid JSON input: {exc.msg}") from exc
    if input_type == "space-separated":
        return text.split()
    if input_type == "comma-separated":
        return [item.strip() for item in text.split(",") if item.strip()]
    return text


@dataclass(frozen=True)
class BodySpec:
    type: str
    content: Any


@dataclass(frozen=True)
class ResponseSpec:
    input_type: str = "text"
    output_type: str = "text"
    output: str | None = None


@dataclass(frozen=True)
class RequestTemplate:
    url: str
    method: str = "GET"
    headers: dict[str, Any] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    input_type: str = "text"
    input_required: bool = False
    body: BodySpec | None = None
    content: ResponseSpec = field(default_factory=ResponseSpec)
    error: ResponseSpec | None = None


@dataclass(frozen=True)
class PluginResult:
    type: str
    content: Any


def _parse_response_spec(raw: Any, name: str) -> ResponseSpec:
    if not isinstance(raw, dict):
        raise PluginTemplateError(f"response.{name} must be an object")
    input_type = str(raw.get("input_type", "text"))
    output_type = str(raw.get("output_type", "text"))
    if input_type not in RESPONSE_INPUT_TYPES:
        raise PluginTemplateError(f"Unsupported response.{name}.input_type: {input_type}")
    if output_type not in OUTPUT_TYPES:
        raise PluginTemplateError(f"Unsupported response.{name}.output_type: {output_type}")
    output = raw.get("output")
    if output is not None and not isinstance(output, str):
        raise PluginTemplateError(f"response.{name}.output must be a string")
    return ResponseSpec(input_type=input_type, output_type=output_type, output=output)


def parse_template(raw: Any) -> RequestTemplate:
    if not isinstance(raw, dict):
        raise PluginTemplateError("Template must be a JSON object")
    url = raw.get("url")
    if not isinstance(url, str) or not url.strip():
        raise PluginTemplateError("Template url is required")

    headers = raw.get("headers") or {}
    query = raw.get("query") or {}
    if not isinstance(headers, dict) or not isinstance(query, dict):
        raise PluginTemplateError("Template headers and query must be objects")

    input_raw = raw.get("input") or {}
    input_type = str(input_raw.get("type", "text")) if isinstance(input_raw, dict) else "text"
    if input_type not in INPUT_TYPES:
        raise PluginTemplateError(f"Unsupported input type: {input_type}")

    body: BodySpec | None = None
    body_raw = raw.get("body")
    if body_raw is not None:
        if not isinstance(body_raw, dict):
            raise PluginTemplateError("Template body must be an object")
        body_type = str(body_raw.get("type", "json"))
        if body_type not in BODY_TYPES:
            raise PluginTemplateError(f"Unsupported body type: {body_type}")
        body = BodySpec(type=body_type, content=body_raw.get("content"))

    response_raw = raw.get("response") or {}
    if not isinstance(response_raw, dict):
        raise PluginTemplateError("Template response must be an object")
    content = _parse_response_spec(response_raw["content"], "content") if "content" in response_raw else ResponseSpec()
    error = _parse_response_spec(response_raw["error"], "error") if "error" in response_raw else None

    return RequestTemplate(
        url=url.strip(),
        method=str(raw.get("method", "GET")).upper(),
        headers=headers,
        query=query,
        input_type=input_type,
        input_required=bool(input_raw.get("required", False)) if isinstance(input_raw, dict) else False,
        body=body,
        content=content,
        error=error,
    )


async def load_template(source: str, client: httpx.AsyncClient) -> RequestTemplate:
    """Parse an inline JSON template, fetching it first when ``source`` is a URL."""
    text = source.strip()
    if text.startswith("http"):
        logger.info("Fetching plugin template url=%s", text)
        resp = await client.get(text)
        resp.raise_for_status()
        text = resp.text
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PluginTemplateError(f"Invalid template JSON: {exc.msg}") from exc
    return parse_template(raw)


def prepare_input(template: RequestTemplate, text: str) -> Any:
    if template.input_required and not text:
        raise PluginTemplateError("Missing input")
    return format_input(text, template.input_type)


def _read_response(resp: httpx.Response, input_type: str) -> Any:
    if input_type == "json":
        try:
            return resp.json()
        except ValueError as exc:
            raise PluginTemplateError("Response is not valid JSON") from exc
    if input_type == "blob":
        return resp.content
    return resp.text


def _render_response(spec: ResponseSpec, resp: httpx.Response, scope: Mapping[str, Any]) -> Any:
    data = _read_response(resp, spec.input_type)
    if spec.output is None:
        if isinstance(data, (bytes, str)):
            return data
        return json.dumps(data, ensure_ascii=False)
    return render_string(spec.output, {**scope, "data": data, ".": data})


async def execute_request(
    template: RequestTemplate,
    data: Any,
    env: Mapping[str, Any],
    client: httpx.AsyncClient,
) -> PluginResult:
    scope = {"DATA": data, "ENV": dict(env), ".": data}
    url = render_string(template.url, scope)
    params = {k: _stringify(v) for k, v in render_value(template.query, scope).items() if v is not None}
    headers = {k: _stringify(v) for k, v in render_value(template.headers, scope).items() if v is not None}

    kwargs: dict[str, Any] = {}
    if template.body is not None:
        content = render_value(template.body.content, scope)
        if template.body.type == "json":
            kwargs["json"] = content
        elif template.body.type == "form":
            if not isinstance(content, dict):
                raise PluginTemplateError("Form body content must be an object")
            kwargs["data"] = {k: _stringify(v) for k, v in content.items()}
        else:
            kwargs["content"] = _stringify(content)

    logger.info("Plugin request method=%s url=%s params=%s", template.method, url, sorted(params))
    resp = await client.request(template.method, url, params=params or None, headers=headers or None, **kwargs)

    if not resp.is_success:
        message = f"{resp.status_code} {resp.reason_phrase}"
        if template.error is not None:
            try:
                rendered = _render_response(template.error, resp, scope)
            except PluginTemplateError as exc:
                logger.warning("Plugin error response unreadable status=%s error=%s", resp.status_code, exc)
            else:
                if isinstance(rendered, str) and rendered:
                    message = rendered
        logger.warning("Plugin request failed status=%s url=%s", resp.status_code, url)
        raise PluginRequestError(message, status_code=resp.status_code)

    content = _render_response(template.content, resp, scope)
    return PluginResult(type=template.content.output_type, content=content)
