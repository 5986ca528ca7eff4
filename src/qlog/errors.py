"""Exception types and anomaly records shared across qlog."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "InvariantViolation",
    "LineParseError",
    "QlogError",
    "QueryLexError",
    "SchemaError",
]


class QlogError(Exception):
    """Base class for errors raised by qlog."""


class LineParseError(QlogError, ValueError):
    """Raised when a log line cannot be turned into a query record."""

    def __init__(self, reason: str, line: str | None = None) -> None:
        self.reason = reason
        self.line = line
        super().__init__(f"Cannot parse log line: {reason}.")


class QueryLexError(LineParseError):
    """Raised when query text cannot be tokenized for shape normalization."""

    def __init__(self, reason: str, query: str | None = None) -> None:
        super().__init__(f"query does not tokenize ({reason})")
        self.query = query


class SchemaError(QlogError, ValueError):
    """Raised when a persisted summary record lacks a field or has a bad value."""

    def __init__(self, field_name: str, problem: str = "is missing") -> None:
        self.field_name = field_name
        super().__init__(f"Summary field '{field_name}' {problem}.")


@dataclass(frozen=True)
class InvariantViolation:
    """A data-integrity anomaly that is reported to the caller, never raised."""

    kind: str
    key: str
    detail: str

    def __str__(self) -> str:
        return f"{self.kind} for {self.key}: {self.detail}"
