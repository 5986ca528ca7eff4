"""Representation of a single observed query execution."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from qlog.errors import LineParseError

__all__ = ["QUERY_ID_PATTERN", "RawEntry"]

QUERY_ID_PATTERN = re.compile(r"^[0-9a-f]+-[0-9a-f]+$")


@dataclass(frozen=True)
class RawEntry:
    """
    One query execution as logged by a graph node.

    ``query_id`` is always ``<shape-hash>-<query-hash>``; ``request_id`` keeps
    the node's own identifier so the original log line can still be found.
    """

    subgraph: str
    query_id: str
    block: int | None
    time_ms: int
    query: str
    variables: str | None
    timestamp: str | None = None
    request_id: str | None = None
    complexity: int = 0
    cached: bool = False

    def __post_init__(self) -> None:
        if not QUERY_ID_PATTERN.match(self.query_id):
            raise LineParseError(f"malformed query_id {self.query_id!r}")
        if isinstance(self.time_ms, bool) or not isinstance(self.time_ms, int):
            raise LineParseError(f"time must be an integer, got {self.time_ms!r}")
        if self.time_ms < 0:
            raise LineParseError(f"negative query time {self.time_ms}")

    @property
    def shape_hash(self) -> str:
        return self.query_id.split("-", 1)[0]

    def to_record(self) -> dict[str, Any]:
        """Return the per-query JSONL representation."""
        record: dict[str, Any] = {
            "subgraph": self.subgraph,
            "query_id": self.query_id,
            "block": self.block,
            "time": self.time_ms,
            "query": self.query,
            "variables": self.variables,
            "timestamp": self.timestamp,
        }
        if self.request_id is not None:
            record["request_id"] = self.request_id
        if self.complexity:
            record["complexity"] = self.complexity
        if self.cached:
            record["cached"] = True
        return record

    @classmethod
    def from_record(
        cls, record: Mapping[str, Any], *, query_id: str | None = None
    ) -> "RawEntry":
        """
        Build an entry from a per-query JSONL record.

        Parameters:
            record: Decoded JSON object.
            query_id: Replacement for the record's own ``query_id``.

        Raises:
            LineParseError: If a required field is missing or has the wrong type.
        """
        for name in ("subgraph", "query"):
            if not isinstance(record.get(name), str):
                raise LineParseError(f"record field '{name}' is missing")
        time_ms = record.get("time", record.get("time_ms"))
        if time_ms is None:
            raise LineParseError("record field 'time' is missing")
        block = record.get("block")
        if block is not None and (isinstance(block, bool) or not isinstance(block, int)):
            raise LineParseError(f"invalid block {block!r}")
        variables = record.get("variables")
        if variables is not None and not isinstance(variables, str):
            raise LineParseError("record field 'variables' must be text")
        resolved_id = query_id if query_id is not None else record.get("query_id")
        if not isinstance(resolved_id, str):
            raise LineParseError("record field 'query_id' is missing")
        timestamp = record.get("timestamp")
        return cls(
            subgraph=record["subgraph"],
            query_id=resolved_id,
            block=block,
            time_ms=time_ms,
            query=record["query"],
            variables=variables,
            timestamp=None if timestamp is None else str(timestamp),
            request_id=record.get("request_id"),
            complexity=int(record.get("complexity") or 0),
            cached=bool(record.get("cached", False)),
        )
