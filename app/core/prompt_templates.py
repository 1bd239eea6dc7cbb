"""Handlebars-style rendering for agent prompt templates.

Agent prompts are stored in the database with Handlebars syntax. The renderer
covers the subset those prompts use:

- ``{{ name }}`` / ``{{ user.profile.name }}`` substitution (no HTML escaping)
- ``{{#if x}}``, ``{{#unless x}}``, ``{{#each items}}``, ``{{#with obj}}``
  blocks with ``{{else}}``, nestable
- ``this``, ``@index``, ``@first``, ``@last`` and ``@key`` inside ``#each``
- helpers: default, json, jsonParse, formatDate, notEmpty, length,
  uppercase, lowercase, truncate, plus ``(helper arg)`` sub-expressions
"""

import json
import re
from datetime import datetime
from typing import Any, Callable

from app.core.logging import get_logger

logger = get_logger(__name__)

_TAG_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_ARG_PATTERN = re.compile(r"\s*(\"[^\"]*\"|'[^']*'|\(|\)|[^\s()]+)")
_LEGACY_VARIABLE_PATTERN = re.compile(r"\{\{\s*([\w.@-]+)\s*\}\}")

BLOCK_KEYWORDS = {"if", "unless", "each", "with", "else", "this"}


class TemplateSyntaxError(ValueError):
    """Raised when a template cannot be parsed."""


class _Text:
    def __init__(self, value: str):
        self.value = value


class _Expr:
    def __init__(self, expression: str):
        self.expression = expression


class _Block:
    def __init__(self, name: str, expression: str):
        self.name = name
        self.expression = expression
        self.children: list = []
        self.inverse: list = []


# =============================================================================
# Parsing
# =============================================================================


def _parse(template: str) -> list:
    root = _Block("root", "")
    stack: list[tuple[_Block, list]] = [(root, root.children)]
    position = 0

    for match in _TAG_PATTERN.finditer(template):
        if match.start() > position:
            stack[-1][1].append(_Text(template[position : match.start()]))
        position = match.end()

        tag = match.group(1).strip()
        if tag.startswith("!"):
            continue

        if tag.startswith("#"):
            name, _, expression = tag[1:].strip().partition(" ")
            block = _Block(name, expression.strip())
            stack[-1][1].append(block)
            stack.append((block, block.children))
        elif tag.startswith("/"):
            name = tag[1:].strip()
            block, _ = stack[-1]
            if len(stack) == 1 or block.name != name:
                raise TemplateSyntaxError(f"Unexpected closing tag {{{{/{name}}}}}")
            stack.pop()
        elif tag in ("else", "^"):
            block, _ = stack[-1]
            if len(stack) == 1:
                raise TemplateSyntaxError("{{else}} outside of a block")
            stack[-1] = (block, block.inverse)
        else:
            stack[-1][1].append(_Expr(tag))

    if len(stack) > 1:
        raise TemplateSyntaxError(f"Unclosed block {{{{#{stack[-1][0].name}}}}}")

    if position < len(template):
        root.children.append(_Text(template[position:]))
    return root.children


def _tokenize_arguments(expression: str) -> list:
    """Split an expression into literals, paths and nested sub-expression lists."""
    tokens = [t for t in _ARG_PATTERN.findall(expression) if t.strip()]
    result: list = []
    stack = [result]
    for token in tokens:
        if token == "(":
            nested: list = []
            stack[-1].append(nested)
            stack.append(nested)
        elif token == ")":
            if len(stack) == 1:
                raise TemplateSyntaxError(f"Unbalanced parenthesis in '{expression}'")
            stack.pop()
        else:
            stack[-1].append(token)
    if len(stack) > 1:
        raise TemplateSyntaxError(f"Unbalanced parenthesis in '{expression}'")
    return result


# =============================================================================
# Helpers
# =============================================================================


def _is_empty(value: Any) -> bool:
    return value is None or value is False or value == "" or value == [] or value == {}


def _helper_default(value: Any, fallback: Any = "") -> Any:
    return fallback if _is_empty(value) else value


def _helper_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _helper_json_parse(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return None


def _helper_format_date(value: Any, style: str = "short") -> str:
    if not isinstance(value, str) or not value:
        return "" if value is None else str(value)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if style == "short":
        return parsed.strftime("%Y-%m-%d")
    if style == "time":
        return parsed.strftime("%H:%M")
    if style == "long":
        return parsed.strftime("%d %B %Y")
    return parsed.strftime("%Y-%m-%d %H:%M")


def _helper_length(value: Any) -> int:
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return 0


def _helper_truncate(value: Any, limit: Any = 100) -> str:
    text = "" if value is None else str(value)
    size = int(limit)
    return text if len(text) <= size else f"{text[:size]}..."


HELPERS: dict[str, Callable[..., Any]] = {
    "default": _helper_default,
    "json": _helper_json,
    "jsonParse": _helper_json_parse,
    "formatDate": _helper_format_date,
    "notEmpty": lambda value: not _is_empty(value),
    "length": _helper_length,
    "uppercase": lambda value: "" if value is None else str(value).upper(),
    "lowercase": lambda value: "" if value is None else str(value).lower(),
    "truncate": _helper_truncate,
}


# =============================================================================
# Evaluation
# =============================================================================


class _Frame:
    def __init__(self, context: Any, data: dict[str, Any] | None = None):
        self.context = context
        self.data = data or {}


def _lookup_path(context: Any, path: str) -> Any:
    if isinstance(context, dict) and path in context:
        return context[path]

    current = context
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _resolve_token(token: Any, frame: _Frame) -> Any:
    if isinstance(token, list):
        return _evaluate(token, frame)
    if token[0] in "\"'":
        return token[1:-1]
    if re.fullmatch(r"-?\d+(\.\d+)?", token):
        return float(token) if "." in token else int(token)
    if token in ("true", "false"):
        return token == "true"
    if token in ("null", "undefined"):
        return None
    if token.startswith("@"):
        return frame.data.get(token[1:])
    if token in ("this", "."):
        return frame.context
    if token.startswith("this."):
        return _lookup_path(frame.context, token[5:])
    return _lookup_path(frame.context, token)


def _evaluate(tokens: list, frame: _Frame) -> Any:
    if not tokens:
        return None
    head = tokens[0]
    if isinstance(head, str) and head in HELPERS and len(tokens) > 1:
        args = [_resolve_token(token, frame) for token in tokens[1:]]
        return HELPERS[head](*args)
    return _resolve_token(head, frame)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() != "" and value.strip().lower() != "false"
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return bool(value)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _render_nodes(nodes: list, frame: _Frame) -> str:
    output: list[str] = []
    for node in nodes:
        if isinstance(node, _Text):
            output.append(node.value)
        elif isinstance(node, _Expr):
            output.append(_stringify(_evaluate(_tokenize_arguments(node.expression), frame)))
        else:
            output.append(_render_block(node, frame))
    return "".join(output)


def _render_block(block: _Block, frame: _Frame) -> str:
    value = _evaluate(_tokenize_arguments(block.expression), frame)

    if block.name == "if":
        return _render_nodes(block.children if _truthy(value) else block.inverse, frame)

    if block.name == "unless":
        return _render_nodes(block.inverse if _truthy(value) else block.children, frame)

    if block.name == "with":
        if not _truthy(value):
            return _render_nodes(block.inverse, frame)
        return _render_nodes(block.children, _Frame(value, frame.data))

    if block.name == "each":
        if isinstance(value, dict):
            items = list(value.items())
        elif isinstance(value, (list, tuple)):
            items = list(enumerate(value))
        else:
            items = []
        if not items:
            return _render_nodes(block.inverse, frame)

        parts = []
        for position, (key, item) in enumerate(items):
            data = {
                **frame.data,
                "index": position,
                "key": key,
                "first": position == 0,
                "last": position == len(items) - 1,
            }
            parts.append(_render_nodes(block.children, _Frame(item, data)))
        return "".join(parts)

    raise TemplateSyntaxError(f"Unknown block helper '{block.name}'")


# =============================================================================
# Public API
# =============================================================================


def render_template(template: str | None, variables: dict[str, Any] | None) -> str:
    """
    Render a Handlebars-style prompt template.

    Missing and null variables render as empty strings. A template that
    cannot be parsed renders as an empty string and the failure is logged.

    Args:
        template: Template source
        variables: Values available to the template

    Returns:
        Rendered text
    """
    if not template:
        return ""

    try:
        nodes = _parse(template)
        return _render_nodes(nodes, _Frame(dict(variables or {})))
    except (TemplateSyntaxError, TypeError, ValueError) as e:
        logger.error(f"Failed to render prompt template: {e}")
        return ""


def extract_template_variables(template: str | None) -> list[str]:
    """
    List the variable names a template references, in order of first use.

    Helper names, literals and loop data (``@index``) are excluded.
    """
    if not template:
        return []

    found: list[str] = []

    def collect(tokens: list) -> None:
        for position, token in enumerate(tokens):
            if isinstance(token, list):
                collect(token)
                continue
            if position == 0 and token in HELPERS and len(tokens) > 1:
                continue
            if token[0] in "\"'@" or token in BLOCK_KEYWORDS or token.startswith("this."):
                continue
            if re.fullmatch(r"-?\d+(\.\d+)?", token) or token in ("true", "false", "null"):
                continue
            if token not in found:
                found.append(token)

    for match in _TAG_PATTERN.finditer(template):
        tag = match.group(1).strip()
        if not tag or tag[0] in "!/" or tag in ("else", "^"):
            continue
        if tag.startswith("#"):
            _, _, tag = tag[1:].partition(" ")
        try:
            collect(_tokenize_arguments(tag))
        except TemplateSyntaxError:
            continue

    return found


def substitute_prompt_variables(template: str, variables: dict[str, Any]) -> str:
    """Plain ``{{key}}`` replacement used by legacy prompts; null values are left untouched."""

    def replace(match: re.Match) -> str:
        key = match.group(1)
        value = variables.get(key)
        if value is None:
            return match.group(0)
        return _stringify(value)

    return _LEGACY_VARIABLE_PATTERN.sub(replace, template)
