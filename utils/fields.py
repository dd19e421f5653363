"""
Field resolver for queue payloads.

Payloads are flat key/value mappings. A key can also be a small template
expression evaluated against the payload:

    CONCAT:sep|ref1|ref2|...     join the resolved refs with sep
    FORMAT:template|ref1|...     replace %1%, %2%, ... in template

Refs go through the same lookup, so a literal key always wins and a ref
naming a stored template returns the template text unevaluated.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Optional

_PLACEHOLDER = re.compile(r"%(\d+)%")


def get_nested_value(data: Optional[dict], path: str) -> Any:
    """Walk a nested dict using dot notation, e.g. 'rekanan.nama'."""
    if not isinstance(data, dict) or not isinstance(path, str):
        return None
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict) and current.get(part):
            current = current[part]
        else:
            return None
    return current


def _unquote(token: str) -> str:
    return token.strip('"')


def _concat(data: dict[str, Any], tokens: list[str]) -> str:
    separator = _unquote(tokens[0])
    values = [resolve_field(data, _unquote(ref.strip())) for ref in tokens[1:]]
    return separator.join("" if v is None else str(v) for v in values)


def _format(data: dict[str, Any], tokens: list[str]) -> str:
    template = _unquote(tokens[0])
    values = [resolve_field(data, _unquote(ref.strip())) for ref in tokens[1:]]

    def replacer(match: re.Match) -> str:
        idx = int(match.group(1)) - 1
        if 0 <= idx < len(values):
            value = values[idx]
            return "" if value is None else str(value)
        return match.group(0)

    return _PLACEHOLDER.sub(replacer, template)


EXPRESSIONS: dict[str, Callable[[dict[str, Any], list[str]], str]] = {
    "CONCAT": _concat,
    "FORMAT": _format,
}


def resolve_field(data: Optional[dict[str, Any]], key: Any) -> Any:
    """
    Resolve ``key`` against ``data``.

    Literal keys win over expressions. Returns None when the key is neither
    present nor a known expression.
    """
    if not isinstance(key, str) or data is None:
        return None
    if data.get(key) is not None:
        return data[key]
    if ":" in key:
        kind, body = key.split(":", 1)
        fn = EXPRESSIONS.get(kind.strip().upper())
        if fn is not None:
            return fn(data, body.split("|"))
    return None
