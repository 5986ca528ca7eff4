"""Query-shape normalization and hashing.

Two queries have the same shape when they only differ in the literal values
they pass as arguments (and in whitespace, commas or comments). The shape is
computed from the GraphQL token stream: literal tokens in value position are
replaced by a single placeholder, everything else is kept verbatim. A list
literal counts as one value, so ``[1, 2]`` and ``[3]`` both become ``?``;
lists that reference a variable keep their structure.
"""

from __future__ import annotations

import hashlib
import re
from collections import deque
from collections.abc import Callable
from functools import lru_cache

from graphql.error import GraphQLSyntaxError
from graphql.language import Lexer, Source, Token, TokenKind

from qlog import conf
from qlog.errors import QueryLexError
from qlog.logging import get_logger

__all__ = ["HASH_LENGTH", "PLACEHOLDER", "ShapeNormalizer", "canonicalize"]

logger = get_logger("shape")

HASH_LENGTH = 32
PLACEHOLDER = "?"
RAW_PREFIX = "raw:"

_LITERAL_KINDS = frozenset(
    {TokenKind.INT, TokenKind.FLOAT, TokenKind.STRING, TokenKind.BLOCK_STRING}
)
_OPERATION_KEYWORDS = frozenset({"query", "mutation", "subscription"})
_CLIENT_OPERATION_NAME = re.compile(r"^(GraphQL__Client__OperationDefinition)_[0-9]+$")

# Frames of the context stack
_SELECTION = "selection"
_ARGUMENTS = "arguments"
_VARIABLES = "variables"
_OBJECT = "object"
_LIST = "list"


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8"), usedforsecurity=False).hexdigest()[
        :HASH_LENGTH
    ]


def _name(value: str) -> str:
    match = _CLIENT_OPERATION_NAME.match(value)
    if match:
        return match.group(1)
    return value


def _list_items(next_token: Callable[[], Token]) -> list[Token]:
    """Read the tokens of a list value up to and including its closing bracket."""
    items: list[Token] = []
    depth = 1
    while depth:
        token = next_token()
        items.append(token)
        if token.kind is TokenKind.EOF:
            break
        if token.kind in (TokenKind.BRACKET_L, TokenKind.BRACE_L):
            depth += 1
        elif token.kind in (TokenKind.BRACKET_R, TokenKind.BRACE_R):
            depth -= 1
    return items


def canonicalize(query: str) -> str:
    """
    Return the canonical, literal-free token string for ``query``.

    Raises:
        QueryLexError: If the lexer rejects the query text.
    """
    lexer = Lexer(Source(query))
    pending: deque[Token] = deque()
    tokens: list[str] = []
    stack: list[str] = []
    expect_value = False
    in_header = False
    after_dollar = False

    def next_token() -> Token:
        if pending:
            return pending.popleft()
        try:
            return lexer.advance()
        except GraphQLSyntaxError as exc:
            raise QueryLexError(exc.message, query) from exc

    while True:
        token = next_token()
        kind = token.kind
        if kind is TokenKind.EOF:
            break

        frame = stack[-1] if stack else None
        in_value = expect_value or frame == _LIST

        if after_dollar:
            after_dollar = False
            if kind is TokenKind.NAME:
                tokens.append(token.value)
                if in_value:
                    expect_value = False
                continue

        if kind is TokenKind.DOLLAR:
            tokens.append("$")
            after_dollar = True
            continue

        if in_value:
            if kind in _LITERAL_KINDS or kind is TokenKind.NAME:
                tokens.append(PLACEHOLDER)
                expect_value = False
                continue
            if kind is TokenKind.BRACKET_L:
                expect_value = False
                items = _list_items(next_token)
                if any(item.kind is TokenKind.DOLLAR for item in items):
                    stack.append(_LIST)
                    tokens.append("[")
                    pending.extendleft(reversed(items))
                else:
                    # A literal list is one value, whatever its length
                    tokens.append(PLACEHOLDER)
                    if items and items[-1].kind is TokenKind.EOF:
                        pending.appendleft(items[-1])
                continue
            if kind is TokenKind.BRACE_L:
                stack.append(_OBJECT)
                tokens.append("{")
                expect_value = False
                continue

        if kind is TokenKind.NAME:
            if not stack:
                if token.value in _OPERATION_KEYWORDS:
                    in_header = True
                elif token.value == "fragment":
                    in_header = False
            tokens.append(_name(token.value))
            continue

        expect_value = False
        if kind is TokenKind.PAREN_L:
            directive = len(tokens) >= 2 and tokens[-2] == "@"
            if in_header and not stack and not directive:
                stack.append(_VARIABLES)
            else:
                stack.append(_ARGUMENTS)
        elif kind is TokenKind.PAREN_R:
            if frame in (_ARGUMENTS, _VARIABLES):
                stack.pop()
        elif kind is TokenKind.BRACE_L:
            stack.append(_SELECTION)
            in_header = False
        elif kind is TokenKind.BRACE_R:
            if stack:
                stack.pop()
        elif kind is TokenKind.BRACKET_R:
            if frame == _LIST:
                stack.pop()
        elif kind is TokenKind.COLON:
            expect_value = frame in (_ARGUMENTS, _OBJECT)
        elif kind is TokenKind.EQUALS:
            expect_value = frame == _VARIABLES
        tokens.append(token.value if token.value is not None else kind.value)

    return " ".join(tokens)


@lru_cache(maxsize=4096)
def _shape_hash(query: str) -> str:
    return _digest(canonicalize(query))


class ShapeNormalizer:
    """
    Compute shape hashes and composite query ids.

    ``lex_error_policy`` decides what happens to query text the lexer rejects:
    ``"raw"`` hashes the whitespace-normalized raw text instead, ``"drop"``
    lets the ``QueryLexError`` propagate so the caller skips the record.
    """

    def __init__(self, lex_error_policy: str | None = None) -> None:
        if lex_error_policy is None:
            lex_error_policy = conf.lex_error_policy()
        if lex_error_policy not in conf.LEX_ERROR_POLICIES:
            raise ValueError(f"Unknown lex error policy '{lex_error_policy}'.")
        self.lex_error_policy = lex_error_policy
        self.lex_errors = 0

    def canonicalize(self, query: str) -> str:
        return canonicalize(query)

    def shape_hash(self, query: str) -> str:
        try:
            return _shape_hash(query)
        except QueryLexError as exc:
            self.lex_errors += 1
            if self.lex_error_policy == "drop":
                raise
            logger.debug(
                "hashing raw query text",
                context={"reason": exc.reason, "length": len(query)},
            )
            return _digest(RAW_PREFIX + " ".join(query.split()))

    def query_hash(self, query: str, variables: str | None) -> str:
        return _digest(f"{query}\0{variables or ''}")

    def query_id(
        self, query: str, variables: str | None, shape_hash: str | None = None
    ) -> str:
        if shape_hash is None:
            shape_hash = self.shape_hash(query)
        return f"{shape_hash}-{self.query_hash(query, variables)}"

    def verify(self, query_id: str, query: str, variables: str | None) -> bool:
        """Return True if ``query_id`` is the id this normalizer computes."""
        return query_id == self.query_id(query, variables)
