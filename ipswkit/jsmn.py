"""A minimal, non-strict JSON tokenizer.

The tokenizer does not build values. It records where every object, array,
string and primitive lies in the input. Strings are not unescaped. Any
unquoted run of printable characters counts as a primitive.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "TokenType",
    "Token",
    "JsmnError",
    "NotEnoughTokensError",
    "InvalidJsonError",
    "PartialJsonError",
    "Parser",
    "tokenize",
]


class TokenType(IntEnum):
    """Kind of a JSON token."""

    PRIMITIVE = 0
    OBJECT = 1
    ARRAY = 2
    STRING = 3


@dataclass
class Token:
    """A token's kind and its span ``[start, end)`` in the input.

    ``size`` counts the direct children of an object or array. For an object,
    keys and values are both counted.
    """

    type: TokenType
    start: int = -1
    end: int = -1
    size: int = 0

    @property
    def _is_open(self) -> bool:
        return self.start != -1 and self.end == -1


class JsmnError(ValueError):
    """Base class for tokenizer errors."""

    code = 0


class NotEnoughTokensError(JsmnError):
    """More tokens are needed than were allowed."""

    code = -1

    def __init__(self, message: str = "Not enough tokens were provided") -> None:
        super().__init__(message)


class InvalidJsonError(JsmnError):
    """The input holds a character that is not allowed where it stands."""

    code = -2

    def __init__(self, message: str = "Invalid character inside JSON string") -> None:
        super().__init__(message)


class PartialJsonError(JsmnError):
    """The input ends before the JSON data is complete."""

    code = -3

    def __init__(
        self,
        message: str = "The string is not a full JSON packet, more bytes expected",
    ) -> None:
        super().__init__(message)


_SKIPPED = frozenset("\t\r\n :,")
_PRIMITIVE_END = frozenset(":\t\r\n ,]}")
_ESCAPABLE = frozenset('"/\\bfrnut')
_END = "\0"


class Parser:
    """Incremental tokenizer.

    When a call to :meth:`parse` fails with :class:`NotEnoughTokensError`,
    calling it again on the same input with a larger limit resumes where the
    previous call stopped.
    """

    def __init__(self) -> None:
        self.pos = 0
        self.tokens: list[Token] = []
        self.toksuper = -1

    def parse(self, js: str, num_tokens: int | None = None) -> list[Token]:
        """Tokenize ``js``, allowing at most ``num_tokens`` tokens in total.

        ``None`` means no limit. Returns the list of tokens found.
        """
        while (c := self._char(js, self.pos)) != _END:
            if c in "{[":
                token = self._alloc(num_tokens)
                if token is None:
                    raise NotEnoughTokensError()
                self._count_child()
                token.type = TokenType.OBJECT if c == "{" else TokenType.ARRAY
                token.start = self.pos
                self.toksuper = len(self.tokens) - 1
            elif c in "}]":
                self._close(TokenType.OBJECT if c == "}" else TokenType.ARRAY)
            elif c == '"':
                self._parse_string(js, num_tokens)
                self._count_child()
            elif c in _SKIPPED:
                pass
            else:
                self._parse_primitive(js, num_tokens)
                self._count_child()
            self.pos += 1

        if any(token._is_open for token in self.tokens):
            raise PartialJsonError()
        return list(self.tokens)

    @staticmethod
    def _char(js: str, index: int) -> str:
        if index < len(js):
            return js[index]
        return _END

    def _alloc(self, num_tokens: int | None) -> Token | None:
        if num_tokens is not None and len(self.tokens) >= num_tokens:
            return None
        token = Token(TokenType.PRIMITIVE)
        self.tokens.append(token)
        return token

    def _count_child(self) -> None:
        if self.toksuper != -1:
            self.tokens[self.toksuper].size += 1

    def _close(self, wanted: TokenType) -> None:
        index = next(
            (i for i in reversed(range(len(self.tokens))) if self.tokens[i]._is_open),
            None,
        )
        if index is None:
            raise InvalidJsonError()
        token = self.tokens[index]
        if token.type != wanted:
            raise InvalidJsonError()
        token.end = self.pos + 1
        self.toksuper = next(
            (i for i in reversed(range(index)) if self.tokens[i]._is_open),
            -1,
        )

    def _parse_string(self, js: str, num_tokens: int | None) -> None:
        start = self.pos
        self.pos += 1
        while (c := self._char(js, self.pos)) != _END:
            if c == '"':
                token = self._alloc(num_tokens)
                if token is None:
                    self.pos = start
                    raise NotEnoughTokensError()
                token.type = TokenType.STRING
                token.start = start + 1
                token.end = self.pos
                return
            if c == "\\":
                self.pos += 1
                if self._char(js, self.pos) not in _ESCAPABLE:
                    self.pos = start
                    raise InvalidJsonError()
            self.pos += 1
        self.pos = start
        raise PartialJsonError()

    def _parse_primitive(self, js: str, num_tokens: int | None) -> None:
        start = self.pos
        while (c := self._char(js, self.pos)) != _END:
            if c in _PRIMITIVE_END:
                break
            if not 32 <= ord(c) < 127:
                self.pos = start
                raise InvalidJsonError()
            self.pos += 1
        token = self._alloc(num_tokens)
        if token is None:
            self.pos = start
            raise NotEnoughTokensError()
        token.type = TokenType.PRIMITIVE
        token.start = start
        token.end = self.pos
        self.pos -= 1


def tokenize(js: str, num_tokens: int | None = None) -> list[Token]:
    """Tokenize ``js`` with a fresh parser."""
    return Parser().parse(js, num_tokens)