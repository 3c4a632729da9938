"""PATCH ``path`` grammar.

    path       := attrPath [ "[" comparison "]" ]
    attrPath   := ATTRNAME [ "." ATTRNAME ]
    comparison := ATTRNAME "eq" value

Anything else raises ``PathSyntaxError``. Whether a well-formed path is
*supported* for a resource kind is decided by the patch interpreter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from .errors import PathSyntaxError
from .filtering import ScimFilterOp, Token, TokenKind, parse_comparison, tokenize

_ATTRIBUTE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_$-]*(\.[A-Za-z][A-Za-z0-9_$-]*)?$")


@dataclass(frozen=True, slots=True)
class ValuePredicate:
    attribute: str
    operator: ScimFilterOp
    value: str


@dataclass(frozen=True, slots=True)
class AttributePath:
    attribute: str


@dataclass(frozen=True, slots=True)
class FilteredPath:
    attribute: str
    predicate: ValuePredicate


PatchPath = Union[AttributePath, FilteredPath]


class _PathParser:
    def __init__(self, source: str, tokens: list[Token]) -> None:
        self._source = source
        self._tokens = tokens
        self._index = 0

    def _fail(self, message: str) -> PathSyntaxError:
        return PathSyntaxError(f"Invalid path {self._source!r}: {message}")

    def _peek(self) -> Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise self._fail("unexpected end of path")
        self._index += 1
        return token

    def _attribute(self) -> str:
        token = self._next()
        if token.kind is not TokenKind.WORD or not _ATTRIBUTE_RE.match(token.text):
            raise self._fail(f"expected attribute name at position {token.position}")
        return token.text

    def _predicate(self) -> ValuePredicate:
        inner: list[Token] = []
        while True:
            token = self._next()
            if token.kind is TokenKind.RBRACKET:
                break
            if token.kind is TokenKind.LBRACKET:
                raise self._fail("nested filters are not supported")
            inner.append(token)
        try:
            attribute, operator, value = parse_comparison(inner)
        except ValueError as exc:
            raise self._fail(str(exc)) from exc
        if not _ATTRIBUTE_RE.match(attribute):
            raise self._fail(f"invalid filter attribute {attribute!r}")
        return ValuePredicate(attribute=attribute, operator=operator, value=value)

    def parse(self) -> PatchPath:
        attribute = self._attribute()
        path: PatchPath
        token = self._peek()
        if token is not None and token.kind is TokenKind.LBRACKET:
            self._index += 1
            path = FilteredPath(attribute=attribute, predicate=self._predicate())
        else:
            path = AttributePath(attribute=attribute)
        trailing = self._peek()
        if trailing is not None:
            raise self._fail(f"unexpected {trailing.text!r} at position {trailing.position}")
        return path


def parse_patch_path(path: str) -> PatchPath:
    if not path or not path.strip():
        raise PathSyntaxError("Invalid path: path is empty")
    try:
        tokens = tokenize(path)
    except ValueError as exc:
        raise PathSyntaxError(f"Invalid path {path!r}: {exc}") from exc
    return _PathParser(path, tokens).parse()
