"""Convert JSON text into property-list style Python values."""

from __future__ import annotations

import logging
import re
from typing import Any

from .jsmn import Token, TokenType, tokenize

__all__ = ["json_to_plist"]

_log = logging.getLogger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_LEADING_INT = re.compile(r"[+-]?\d+")


def _strtoll(text: str) -> int:
    match = _LEADING_INT.match(text)
    if not match:
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(match.group())))


def _text(js: str, token: Token) -> str:
    return js[token.start:token.end]


def _parse_primitive(js: str, token: Token) -> Any:
    text = _text(js, token)
    first = text[:1]
    if first == "f":
        return False
    if first == "t":
        return True
    if first == "-" or first.isdigit():
        return _strtoll(text)
    _log.warning("invalid primitive value '%s' encountered, will return as string", text)
    return text


def _parse_value(js: str, tokens: list[Token], index: int) -> tuple[Any, int]:
    if index >= len(tokens):
        return None, index
    token = tokens[index]
    if token.type == TokenType.OBJECT:
        return _parse_object(js, tokens, index)
    if token.type == TokenType.ARRAY:
        return _parse_array(js, tokens, index)
    if token.type == TokenType.STRING:
        return _text(js, token), index + 1
    return _parse_primitive(js, token), index + 1


def _parse_array(js: str, tokens: list[Token], index: int) -> tuple[list, int]:
    result = []
    position = index + 1
    for _ in range(tokens[index].size):
        value, position = _parse_value(js, tokens, position)
        if value is not None:
            result.append(value)
    return result, position


def _parse_object(js: str, tokens: list[Token], index: int) -> tuple[dict, int]:
    result: dict[str, Any] = {}
    position = index + 1
    remaining = tokens[index].size
    while remaining > 0:
        key_token = tokens[position] if position < len(tokens) else None
        if key_token is None or key_token.type != TokenType.STRING:
            raise ValueError("keys must be of type STRING")
        key = _text(js, key_token)
        value, position = _parse_value(js, tokens, position + 1)
        if value is not None:
            result[key] = value
        remaining -= 2
    return result, position


def _parse_top(js: str, tokens: list[Token]) -> Any:
    value, _ = _parse_value(js, tokens, 0)
    return value


def json_to_plist(json_string: str) -> Any:
    """Convert JSON text to dicts, lists, strings, ints and bools.

    Only the first top-level value is converted. Numbers keep their leading
    integer part, clamped to the signed 64-bit range. Strings are taken as
    written, without unescaping. Any other unquoted value, such as ``null``,
    becomes a string. Returns ``None`` when the text holds no value.
    Raises ``ValueError`` (or a tokenizer error) on malformed input.
    """
    if json_string is None:
        raise ValueError("no JSON string given")
    tokens = tokenize(json_string)
    if not tokens:
        return None
    return _parse_top(json_string, tokens)