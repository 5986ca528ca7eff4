"""Pull the text payload out of cloud logging exports."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from qlog import conf
from qlog.errors import LineParseError
from qlog.logging import get_logger
from qlog.parser import GQL_MARKER, SQL_MARKER, LineParser

__all__ = ["ExtractCounts", "PayloadExtractor", "iter_log_files"]

logger = get_logger("extract")


@dataclass
class ExtractCounts:
    lines: int = 0
    graphql: int = 0
    sql: int = 0
    other: int = 0
    trimmed: int = 0
    invalid: int = 0
    unparsed: int = 0

    def add(self, other: "ExtractCounts") -> None:
        self.lines += other.lines
        self.graphql += other.graphql
        self.sql += other.sql
        self.other += other.other
        self.trimmed += other.trimmed
        self.invalid += other.invalid
        self.unparsed += other.unparsed


def iter_log_files(root: Path) -> Iterator[Path]:
    """Yield every ``*.json`` file below ``root`` in a stable order."""
    if root.is_file():
        yield root
        return
    yield from sorted(path for path in root.rglob("*.json") if path.is_file())


class PayloadExtractor:
    """
    Route each entry's ``textPayload`` to the GraphQL, SQL or other stream.

    Payloads the logging sink truncated carry ``trimmed_marker`` and are
    dropped, since their query text is incomplete. With a ``parser`` the
    GraphQL stream receives one per-query JSONL record per entry instead of
    the raw text; entries the parser rejects are counted as ``unparsed``.
    """

    def __init__(
        self,
        graphql: TextIO,
        sql: TextIO | None = None,
        other: TextIO | None = None,
        *,
        trimmed_marker: str | None = None,
        parser: LineParser | None = None,
    ) -> None:
        self.graphql = graphql
        self.sql = sql
        self.other = other
        self.trimmed_marker = trimmed_marker or conf.trimmed_marker()
        self.parser = parser

    def _write_graphql(self, envelope: dict, text: str, counts: ExtractCounts) -> None:
        if self.parser is None:
            self.graphql.write(text)
            return
        try:
            entry = self.parser.parse_object(envelope)
        except LineParseError as exc:
            counts.unparsed += 1
            logger.debug("skipping unparsable payload", context={"reason": exc.reason})
            return
        self.graphql.write(json.dumps(entry.to_record(), separators=(",", ":")) + "\n")

    def extract(self, lines: Iterable[str]) -> ExtractCounts:
        counts = ExtractCounts()
        for line in lines:
            counts.lines += 1
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                counts.invalid += 1
                continue
            if not isinstance(entry, dict):
                counts.invalid += 1
                continue
            text = entry.get("textPayload")
            if not isinstance(text, str):
                continue
            if not text.endswith("\n"):
                text += "\n"
            if self.trimmed_marker in text:
                counts.trimmed += 1
            elif SQL_MARKER in text:
                counts.sql += 1
                if self.sql is not None:
                    self.sql.write(text)
            elif GQL_MARKER in text:
                counts.graphql += 1
                self._write_graphql(entry, text, counts)
            else:
                counts.other += 1
                if self.other is not None:
                    self.other.write(text)
        return counts

    def extract_path(self, root: Path, *, verbose: bool = False) -> ExtractCounts:
        total = ExtractCounts()
        for path in iter_log_files(root):
            if verbose:
                logger.info("reading log file", context={"path": str(path)})
            with path.open("r", encoding="utf-8", errors="replace") as handle:
                total.add(self.extract(handle))
        return total
