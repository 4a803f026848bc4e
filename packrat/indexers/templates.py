"""
Definition templates and keyword filters.

Supports the subset of the Cardigann template language that search
definitions use in practice::

    {{ .Keywords }}  {{ .Query.Season }}  {{ .Config.apikey }}
    {{ join .Categories "," }}  {{ re_replace .Keywords "\\s+" "." }}
    {{ if .Query.IMDBID }}...{{ else }}...{{ end }}
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence, Union
from urllib.parse import quote_plus, unquote_plus

from packrat import logger
from packrat.errors import RequestCompilationError

TemplateValue = Union[str, int, Sequence[str], None]

_ACTION = re.compile(r"\{\{-?\s*(.*?)\s*-?\}\}", re.DOTALL)
_ARG = re.compile(r'"(?:[^"\\]|\\.)*"|\S+')
_GO_GROUP = re.compile(r"\$(\d+)")
_QUOTED_ESCAPE = re.compile(r'\\(["\\])')


def _to_text(value: TemplateValue) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def _is_truthy(value: TemplateValue) -> bool:
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return bool(_to_text(value))


@dataclass
class _Node:
    kind: str
    text: str = ""
    body: list["_Node"] = field(default_factory=list)
    orelse: list["_Node"] = field(default_factory=list)


def _parse(template: str) -> list[_Node]:
    root: list[_Node] = []
    stack: list[tuple[_Node, bool]] = []
    current = root
    pos = 0
    for match in _ACTION.finditer(template):
        if match.start() > pos:
            current.append(_Node("text", template[pos:match.start()]))
        pos = match.end()
        action = match.group(1).strip()
        head = action.split(None, 1)[0] if action else ""
        if head == "if":
            node = _Node("if", action[2:].strip())
            current.append(node)
            stack.append((node, False))
            current = node.body
        elif head == "else":
            if not stack or stack[-1][1]:
                raise RequestCompilationError(f"Unexpected 'else' in template: {template!r}")
            node, _ = stack.pop()
            stack.append((node, True))
            current = node.orelse
        elif head == "end":
            if not stack:
                raise RequestCompilationError(f"Unexpected 'end' in template: {template!r}")
            stack.pop()
            if stack:
                parent, in_else = stack[-1]
                current = parent.orelse if in_else else parent.body
            else:
                current = root
        else:
            current.append(_Node("expr", action))
    if stack:
        raise RequestCompilationError(f"Unterminated 'if' in template: {template!r}")
    if pos < len(template):
        current.append(_Node("text", template[pos:]))
    return root


class TemplateContext:
    """Variables visible to a template, keyed by their dotted name (``.Query.Season``)."""

    def __init__(self, variables: Optional[Mapping[str, TemplateValue]] = None):
        self._variables: dict[str, TemplateValue] = dict(variables or {})

    def set(self, name: str, value: TemplateValue) -> None:
        self._variables[name] = value

    def get(self, name: str) -> TemplateValue:
        return self._variables.get(name)

    def copy(self) -> "TemplateContext":
        return TemplateContext(self._variables)

    def _argument(self, token: str) -> TemplateValue:
        if token.startswith('"') and token.endswith('"') and len(token) >= 2:
            return _QUOTED_ESCAPE.sub(r"\1", token[1:-1])
        if token.startswith("."):
            return self.get(token)
        raise RequestCompilationError(f"Cannot resolve template argument '{token}'")

    def evaluate(self, expression: str) -> TemplateValue:
        tokens = _ARG.findall(expression)
        if not tokens:
            return ""
        head, args = tokens[0], tokens[1:]
        if head.startswith(".") or head.startswith('"'):
            if args:
                raise RequestCompilationError(f"Unexpected arguments in '{expression}'")
            return self._argument(head)
        values = [self._argument(arg) for arg in args]
        if head == "join" and len(values) == 2:
            items = values[0] if isinstance(values[0], (list, tuple)) else [_to_text(values[0])]
            return _to_text(values[1]).join(str(item) for item in items if str(item))
        if head == "re_replace" and len(values) == 3:
            return re.sub(_to_text(values[1]), _GO_GROUP.sub(r"\\\1", _to_text(values[2])), _to_text(values[0]))
        if head == "and" and values:
            return values[-1] if all(_is_truthy(v) for v in values) else ""
        if head == "or" and values:
            return next((v for v in values if _is_truthy(v)), "")
        if head == "eq" and len(values) == 2:
            return "true" if _to_text(values[0]) == _to_text(values[1]) else ""
        raise RequestCompilationError(f"Unsupported template function in '{expression}'")


def _render(nodes: list[_Node], context: TemplateContext, escape: Optional[Callable[[str], str]]) -> str:
    parts: list[str] = []
    for node in nodes:
        if node.kind == "text":
            parts.append(node.text)
        elif node.kind == "expr":
            value = _to_text(context.evaluate(node.text))
            parts.append(escape(value) if escape else value)
        else:
            branch = node.body if _is_truthy(context.evaluate(node.text)) else node.orelse
            parts.append(_render(branch, context, escape))
    return "".join(parts)


def expand(template: str, context: TemplateContext, escape: Optional[Callable[[str], str]] = None) -> str:
    """Expand ``template``; ``escape`` is applied to substituted values only."""
    if "{{" not in template:
        return template
    return _render(_parse(template), context, escape)


def _strip_diacritics(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def _filter_trim(value: str, args: Sequence[str]) -> str:
    return value.strip(args[0]) if args else value.strip()


def _filter_replace(value: str, args: Sequence[str]) -> str:
    return value.replace(args[0], args[1])


def _filter_re_replace(value: str, args: Sequence[str]) -> str:
    return re.sub(args[0], _GO_GROUP.sub(r"\\\1", args[1]), value)


def _filter_split(value: str, args: Sequence[str]) -> str:
    parts = value.split(args[0])
    index = int(args[1])
    return parts[index] if -len(parts) <= index < len(parts) else ""


KEYWORD_FILTERS: dict[str, Callable[[str, Sequence[str]], str]] = {
    "trim": _filter_trim,
    "replace": _filter_replace,
    "re_replace": _filter_re_replace,
    "split": _filter_split,
    "tolower": lambda value, _args: value.lower(),
    "toupper": lambda value, _args: value.upper(),
    "append": lambda value, args: value + args[0],
    "prepend": lambda value, args: args[0] + value,
    "urlencode": lambda value, _args: quote_plus(value),
    "urldecode": lambda value, _args: unquote_plus(value),
    "diacritics": lambda value, _args: _strip_diacritics(value),
}


def apply_filters(value: str, filters: Sequence[tuple[str, Sequence[str]]]) -> str:
    """Run index-declared keyword filters in order. Unknown or failing filters are skipped."""
    for name, args in filters:
        filter_fn = KEYWORD_FILTERS.get(name.lower())
        if filter_fn is None:
            logger.get_logger().warning(f"Unknown keyword filter: {name}")
            continue
        try:
            value = filter_fn(value, [str(arg) for arg in args])
        except (IndexError, ValueError, re.error) as e:
            logger.get_logger().error(f"Keyword filter {name} failed: {e}")
    return value
