"""SCIM filter expression parser (RFC 7644 §3.4.2.2).

Identity providers look users and groups up before creating them, e.g.
``GET /scim/v2/Users?filter=userName eq "j@x.com"``. Only a single
comparison is understood:

    attribute SP "eq" SP value

where ``value`` is either a double-quoted string (``\\"`` escapes a quote) or a
bare word. Compound filters, other operators and other attributes raise
``UnsupportedFilterError``; the list endpoint decides whether that becomes a
400 or an unfiltered listing.

The tokenizer is shared with the PATCH path grammar (``patch_path.py``), which
embeds the same comparison inside ``members[...]``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import UnsupportedFilterError


class TokenKind(str, Enum):
    WORD = "word"
    STRING = "string"
    LBRACKET = "["
    RBRACKET = "]"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str
    position: int


class ScimFilterOp(str, Enum):
    """Supported SCIM filter operators."""

    EQ = "eq"


@dataclass(frozen=True, slots=True)
class ScimFilter:
    """Parsed SCIM filter expression."""

    attribute: str
    operator: ScimFilterOp
    value: str


# Lower-cased attribute name -> canonical SCIM spelling.
FILTERABLE_ATTRIBUTES: dict[str, str] = {
    "username": "userName",
    "displayname": "displayName",
}

_PUNCTUATION = {"[": TokenKind.LBRACKET, "]": TokenKind.RBRACKET}


def tokenize(expression: str) -> list[Token]:
    """Split an expression into words, quoted strings and brackets.

    Raises ``ValueError`` on an unterminated string or a dangling escape.
    """
    tokens: list[Token] = []
    index = 0
    length = len(expression)
    while index < length:
        char = expression[index]
        if char.isspace():
            index += 1
            continue
        if char in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[char], char, index))
            index += 1
            continue
        if char == '"':
            start = index
            index += 1
            chars: list[str] = []
            while True:
                if index >= length:
                    raise ValueError(f"unterminated string at position {start}")
                current = expression[index]
                if current == "\\":
                    if index + 1 >= length:
                        raise ValueError(f"dangling escape at position {index}")
                    chars.append(expression[index + 1])
                    index += 2
                    continue
                if current == '"':
                    index += 1
                    break
                chars.append(current)
                index += 1
            tokens.append(Token(TokenKind.STRING, "".join(chars), start))
            continue
        start = index
        while (
            index < length
            and not expression[index].isspace()
            and expression[index] not in _PUNCTUATION
            and expression[index] != '"'
        ):
            index += 1
        tokens.append(Token(TokenKind.WORD, expression[start:index], start))
    return tokens


def parse_comparison(tokens: list[Token]) -> tuple[str, ScimFilterOp, str]:
    """Parse exactly ``<attribute> eq <value>`` from a token list.

    Raises ``ValueError`` for any other shape.
    """
    if len(tokens) != 3:
        raise ValueError(f"expected 3 tokens, got {len(tokens)}")
    attribute, operator, value = tokens
    if attribute.kind is not TokenKind.WORD:
        raise ValueError("attribute must be a bare word")
    if operator.kind is not TokenKind.WORD:
        raise ValueError("operator must be a bare word")
    try:
        op = ScimFilterOp(operator.text.lower())
    except ValueError as exc:
        raise ValueError(f"unsupported operator {operator.text!r}") from exc
    if value.kind not in (TokenKind.WORD, TokenKind.STRING):
        raise ValueError("value must be a string or a bare word")
    return attribute.text, op, value.text


def parse_scim_filter(expression: str | None) -> ScimFilter | None:
    """Parse a simple SCIM filter expression.

    Returns ``None`` for a missing or blank filter and a ``ScimFilter`` with the
    canonical attribute spelling otherwise.
    """
    if expression is None or not expression.strip():
        return None

    try:
        attribute, operator, value = parse_comparison(tokenize(expression))
    except ValueError as exc:
        raise UnsupportedFilterError(f"Unsupported filter: {exc}") from exc

    canonical = FILTERABLE_ATTRIBUTES.get(attribute.lower())
    if canonical is None:
        raise UnsupportedFilterError(
            f"Unsupported filter attribute: {attribute!r}"
        )
    return ScimFilter(attribute=canonical, operator=operator, value=value)
