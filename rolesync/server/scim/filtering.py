"""SCIM filter expression parser (RFC 7644 §3.4.2.2).

Identity providers (Okta, Azure AD, OneLogin, etc.) use filters to look up
resources before deciding whether to create or update them::

    GET /scim/v2/Users?filter=userName eq "john@example.com"

This module parses a deliberately restricted subset of the SCIM filter
grammar::

    expression := comparison ( ("and" | "or") comparison )*
    comparison := attribute SP operator SP value

Supported operators: ``eq``, ``co`` (contains), ``sw`` (starts with).
Connectives fold into a single flat ``and`` or ``or`` node; mixing the two in
one expression is rejected rather than guessing at precedence.

Only ``userName``, ``active`` and ``externalId`` may be filtered on. The
allowlist is enforced here, before any query is built, so the translation to
a SQL predicate is total and unknown attributes never reach the database.
The input length is capped before tokenizing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from sqlalchemy import and_
from sqlalchemy import ColumnElement
from sqlalchemy import func
from sqlalchemy import or_
from sqlalchemy import true

from rolesync.db.models import ScopeMember
from rolesync.db.models import User

MAX_FILTER_LENGTH = 256

ALLOWED_FILTER_ATTRIBUTES = frozenset({"userName", "active", "externalId"})


class FilterParseError(ValueError):
    """Raised when a filter string is malformed or not supported."""


class ScimFilterOperator(str, Enum):
    """Supported SCIM filter operators."""

    EQUAL = "eq"
    CONTAINS = "co"
    STARTS_WITH = "sw"


@dataclass(frozen=True, slots=True)
class ScimFilter:
    """A single ``attribute operator value`` comparison."""

    attribute: str
    operator: ScimFilterOperator
    value: str


@dataclass(frozen=True, slots=True)
class ScimFilterAnd:
    children: tuple[ScimFilterExpression, ...]


@dataclass(frozen=True, slots=True)
class ScimFilterOr:
    children: tuple[ScimFilterExpression, ...]


ScimFilterExpression = ScimFilter | ScimFilterAnd | ScimFilterOr


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class _TokenType(str, Enum):
    ATTR = "attribute"
    OP = "operator"
    STR = "string"
    BOOL = "boolean"
    AND = "and"
    OR = "or"


class _Token(NamedTuple):
    type: _TokenType
    value: str


_WHITESPACE = frozenset({" ", "\t"})
_OPERATORS = frozenset(op.value for op in ScimFilterOperator)


def _tokenize(raw: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    length = len(raw)

    while i < length:
        char = raw[i]

        if char in _WHITESPACE:
            i += 1
            continue

        if char == '"':
            i += 1
            chars: list[str] = []
            while i < length and raw[i] != '"':
                if raw[i] == "\\" and i + 1 < length:
                    i += 1
                chars.append(raw[i])
                i += 1
            if i >= length:
                raise FilterParseError("Unterminated string in filter")
            i += 1
            tokens.append(_Token(_TokenType.STR, "".join(chars)))
            continue

        start = i
        while i < length and raw[i] not in _WHITESPACE and raw[i] != '"':
            i += 1
        word = raw[start:i]
        lower = word.lower()

        if lower == "and":
            tokens.append(_Token(_TokenType.AND, lower))
        elif lower == "or":
            tokens.append(_Token(_TokenType.OR, lower))
        elif lower in _OPERATORS:
            tokens.append(_Token(_TokenType.OP, lower))
        elif lower in ("true", "false"):
            tokens.append(_Token(_TokenType.BOOL, lower))
        else:
            tokens.append(_Token(_TokenType.ATTR, word))

    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, tokens: list[_Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> _Token | None:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _expect(self, expected: tuple[_TokenType, ...], what: str) -> _Token:
        token = self._peek()
        if token is None or token.type not in expected:
            got = token.type.value if token else "end of filter"
            raise FilterParseError(
                f"Expected {what} at position {self._pos}, got {got}"
            )
        self._pos += 1
        return token

    def parse(self) -> ScimFilterExpression:
        expression = self._parse_expression()
        trailing = self._peek()
        if trailing is not None:
            raise FilterParseError(
                f"Unexpected token at position {self._pos}: '{trailing.value}'"
            )
        return expression

    def _parse_expression(self) -> ScimFilterExpression:
        children: list[ScimFilterExpression] = [self._parse_comparison()]
        connective: _TokenType | None = None

        while (token := self._peek()) is not None and token.type in (
            _TokenType.AND,
            _TokenType.OR,
        ):
            if connective is not None and token.type != connective:
                raise FilterParseError(
                    'Mixing "and" and "or" in one filter is not supported; '
                    "use separate requests"
                )
            connective = token.type
            self._pos += 1
            children.append(self._parse_comparison())

        if connective is None:
            return children[0]
        if connective == _TokenType.AND:
            return ScimFilterAnd(children=tuple(children))
        return ScimFilterOr(children=tuple(children))

    def _parse_comparison(self) -> ScimFilter:
        attr_token = self._expect((_TokenType.ATTR,), "attribute")
        if attr_token.value not in ALLOWED_FILTER_ATTRIBUTES:
            raise FilterParseError(
                f"Unsupported filter attribute: {attr_token.value}"
            )

        op_token = self._expect((_TokenType.OP,), "operator")
        value_token = self._expect((_TokenType.STR, _TokenType.BOOL), "value")

        return ScimFilter(
            attribute=attr_token.value,
            operator=ScimFilterOperator(op_token.value),
            value=value_token.value,
        )


def _tokenize_bounded(filter_string: str) -> list[_Token]:
    if len(filter_string) > MAX_FILTER_LENGTH:
        raise FilterParseError(
            f"Filter exceeds maximum length of {MAX_FILTER_LENGTH} characters"
        )
    tokens = _tokenize(filter_string)
    if not tokens:
        raise FilterParseError("Empty filter")
    return tokens


def parse_scim_filter(filter_string: str) -> ScimFilterExpression:
    """Parse a SCIM filter expression into a tree.

    Args:
        filter_string: Raw filter query parameter value, e.g.
            ``'userName eq "john@example.com"'``

    Returns:
        A single ``ScimFilter`` or a flat ``ScimFilterAnd`` / ``ScimFilterOr``.

    Raises:
        FilterParseError: If the filter is too long, empty, malformed, mixes
            connectives, or references an attribute outside the allowlist.
    """
    return _Parser(_tokenize_bounded(filter_string)).parse()


def parse_group_display_name_filter(filter_string: str) -> str:
    """Parse the one filter supported on Groups: ``displayName eq "<value>"``.

    Returns the requested display name.
    """
    tokens = _tokenize_bounded(filter_string)
    if (
        len(tokens) != 3
        or tokens[0].type != _TokenType.ATTR
        or tokens[0].value.lower() != "displayname"
        or tokens[1] != _Token(_TokenType.OP, ScimFilterOperator.EQUAL.value)
        or tokens[2].type != _TokenType.STR
    ):
        raise FilterParseError(
            "Only 'displayName eq \"<value>\"' filters are supported for Groups"
        )
    return tokens[2].value


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def has_attribute(expr: ScimFilterExpression, attribute: str) -> bool:
    """Whether *attribute* is compared anywhere in the tree."""
    if isinstance(expr, ScimFilter):
        return expr.attribute == attribute
    return any(has_attribute(child, attribute) for child in expr.children)


def extract_external_id_value(expr: ScimFilterExpression) -> str | None:
    """Return the value of the first ``externalId`` comparison in the tree.

    IdPs commonly wrap ``externalId eq "..."`` in a trivial ``and``, so the
    whole tree is searched.
    """
    if isinstance(expr, ScimFilter):
        return expr.value if expr.attribute == "externalId" else None
    for child in expr.children:
        value = extract_external_id_value(child)
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# SQL translation
# ---------------------------------------------------------------------------


def _comparison_to_clause(node: ScimFilter) -> ColumnElement[bool]:
    if node.attribute == "active":
        if node.value.lower() == "true":
            return ScopeMember.deactivated_at.is_(None)
        return ScopeMember.deactivated_at.is_not(None)

    if node.attribute == "userName":
        value = node.value.lower()
        if node.operator == ScimFilterOperator.EQUAL:
            return func.lower(User.email) == value
        if node.operator == ScimFilterOperator.CONTAINS:
            return User.email.icontains(value, autoescape=True)
        return User.email.istartswith(value, autoescape=True)

    if node.attribute == "externalId":
        # The caller resolves externalId through the mapping table and adds
        # the resulting user id constraint itself.
        if node.operator != ScimFilterOperator.EQUAL:
            raise FilterParseError(
                f"Operator '{node.operator.value}' is not supported for externalId"
            )
        return true()

    raise FilterParseError(f"Unsupported filter attribute: {node.attribute}")


def filter_to_clause(expr: ScimFilterExpression) -> ColumnElement[bool]:
    """Translate a filter tree into a SQLAlchemy predicate.

    The predicate references ``User`` and ``ScopeMember`` columns; the query
    it is applied to must join both.
    """
    if isinstance(expr, ScimFilterAnd):
        return and_(*(filter_to_clause(child) for child in expr.children))
    if isinstance(expr, ScimFilterOr):
        return or_(*(filter_to_clause(child) for child in expr.children))
    return _comparison_to_clause(expr)
