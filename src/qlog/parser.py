"""Turn graph-node query log lines into ``RawEntry`` records.

Three dialects are understood:

* ``plain``: the node's own text line, e.g.
  ``Dec 30 20:55:13.071 INFO Query timing (GraphQL), block: 1, query_time_ms: 160,
  variables: null, query: query Stuff { things } , query_id: f-1-4, subgraph_id: Qm..,
  component: GraphQlRunner``
* ``wrapped``: a cloud logging entry whose ``textPayload`` (or
  ``jsonPayload.message``) holds a plain line
* ``jsonl``: a per-query record as written by the sampler
"""

from __future__ import annotations

import json
import re
from dataclasses import replace
from typing import Any, Mapping

from qlog import conf
from qlog.entry import QUERY_ID_PATTERN, RawEntry
from qlog.errors import LineParseError
from qlog.logging import get_logger
from qlog.shape import ShapeNormalizer

__all__ = [
    "GQL_MARKER",
    "SQL_MARKER",
    "LineParser",
    "is_json_line",
    "is_summary_record",
    "load_json_object",
    "record_kind",
]

logger = get_logger("parser")

GQL_MARKER = "Query timing (GraphQL)"
SQL_MARKER = "Query timing (SQL)"

_QUERY_START = ", query: "
# Formatted GraphQL never has a comma surrounded by whitespace, so the last
# occurrence of this delimiter ends the query text.
_QUERY_END = " , query_id: "
_VARIABLES_START = ", variables: "
_MAX_NESTING = 4
_JSON_DECODER = json.JSONDecoder()

_INTEGER = re.compile(r"^[0-9]+$")
_TAIL = re.compile(r"^(?P<qid>[0-9a-f-]+), subgraph_id: (?P<sid>[A-Za-z0-9]+)(?:,|\s*$)")
_LEVEL_SUFFIX = re.compile(r"\s*\b(?:TRCE|DEBG|INFO|WARN|ERRO|CRIT)\s*$")


def is_json_line(line: str) -> bool:
    return line.lstrip().startswith("{")


def load_json_object(line: str) -> dict[str, Any]:
    try:
        value = json.loads(line)
    except json.JSONDecodeError as exc:
        raise LineParseError(f"invalid JSON ({exc.msg})", line) from exc
    if not isinstance(value, dict):
        raise LineParseError("JSON line is not an object", line)
    return value


def _envelope_payload(obj: Mapping[str, Any]) -> Any:
    if "textPayload" in obj:
        return obj["textPayload"]
    json_payload = obj.get("jsonPayload")
    if isinstance(json_payload, Mapping) and "message" in json_payload:
        return json_payload["message"]
    return None


def is_summary_record(obj: Mapping[str, Any]) -> bool:
    return "calls" in obj and "query" in obj


def record_kind(obj: Mapping[str, Any]) -> str | None:
    """Classify a decoded JSON object as ``wrapped``, ``summary``, ``jsonl`` or None."""
    if _envelope_payload(obj) is not None:
        return "wrapped"
    if is_summary_record(obj):
        return "summary"
    if "query" in obj and "subgraph" in obj:
        return "jsonl"
    return None


def _json_value_end(text: str, start: int) -> int | None:
    """Return the end offset of the JSON object or array at ``start``, if any."""
    if not text.startswith(("{", "["), start):
        return None
    try:
        _, end = _JSON_DECODER.raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    return end


def _integer(raw: str, name: str) -> int:
    value = raw.strip()
    if not _INTEGER.match(value):
        raise LineParseError(f"invalid {name} {value!r}")
    return int(value)


class LineParser:
    """
    Parse log lines of one dialect (or detect the dialect per line).

    The parser owns a ``ShapeNormalizer`` and stamps every entry with the
    composite ``<shape-hash>-<query-hash>`` id.
    """

    def __init__(
        self,
        normalizer: ShapeNormalizer | None = None,
        *,
        dialect: str | None = None,
        verify_query_ids: bool | None = None,
    ) -> None:
        if dialect is None:
            dialect = conf.input_dialect()
        if dialect not in conf.INPUT_DIALECTS:
            raise ValueError(f"Unknown input dialect '{dialect}'.")
        if verify_query_ids is None:
            verify_query_ids = conf.verify_query_ids()
        self.normalizer = normalizer or ShapeNormalizer()
        self.dialect = dialect
        self.verify_query_ids = verify_query_ids
        self.query_id_mismatches = 0

    def parse_line(self, line: str) -> RawEntry:
        """
        Parse one line according to the configured dialect.

        Raises:
            LineParseError: If the line is not a well-formed query timing record.
            QueryLexError: If the query cannot be tokenized and the normalizer drops such queries.
        """
        line = line.rstrip("\r\n")
        if self.dialect == "plain":
            return self.parse_plain(line)
        if self.dialect == "auto" and not is_json_line(line):
            return self.parse_plain(line)
        return self.parse_object(load_json_object(line), line)

    def parse_object(self, obj: Mapping[str, Any], line: str | None = None) -> RawEntry:
        kind = record_kind(obj)
        if self.dialect in ("wrapped", "jsonl") and kind != self.dialect:
            raise LineParseError(f"expected a {self.dialect} record", line)
        if kind == "wrapped":
            return self._parse_wrapped(obj, depth=0)
        if kind == "jsonl":
            return self.parse_record(obj)
        if kind == "summary":
            raise LineParseError("summary record where a query record was expected", line)
        raise LineParseError("unrecognized JSON record", line)

    def parse_plain(self, line: str, timestamp: str | None = None) -> RawEntry:
        marker = line.find(GQL_MARKER)
        if marker < 0:
            raise LineParseError("not a GraphQL query timing line", line)
        body = line[marker + len(GQL_MARKER) :]

        query_start = body.find(_QUERY_START)
        variables: str | None = None
        header_end = query_start
        variables_start = body.find(_VARIABLES_START)
        if variables_start >= 0 and (query_start < 0 or variables_start < query_start):
            header_end = variables_start
            value_start = variables_start + len(_VARIABLES_START)
            # Variable values may contain the query delimiter themselves
            value_end = _json_value_end(body, value_start)
            if value_end is not None:
                query_start = body.find(_QUERY_START, value_end)
            if query_start >= 0:
                raw_variables = body[value_start:query_start].strip()
                if raw_variables != "null":
                    variables = raw_variables

        query_end = body.rfind(_QUERY_END)
        if query_start < 0:
            raise LineParseError("missing query", line)
        if query_end < query_start:
            raise LineParseError("missing query_id", line)
        query = body[query_start + len(_QUERY_START) : query_end]

        tail = _TAIL.match(body[query_end + len(_QUERY_END) :])
        if tail is None:
            raise LineParseError("malformed query_id or subgraph_id", line)

        fields: dict[str, str] = {}
        for part in body[:header_end].split(","):
            key, sep, value = part.partition(": ")
            if sep:
                fields[key.strip()] = value.strip()

        if "query_time_ms" not in fields:
            raise LineParseError("missing query_time_ms", line)
        time_ms = _integer(fields["query_time_ms"], "query_time_ms")
        block_raw = fields.get("block", "null")
        block = None if block_raw == "null" else _integer(block_raw, "block")
        complexity = _integer(fields.get("complexity", "0"), "complexity")
        cached = fields.get("cached") == "true"

        if timestamp is None:
            prefix = _LEVEL_SUFFIX.sub("", line[:marker]).strip()
            timestamp = prefix or None

        shape_hash = self.normalizer.shape_hash(query)
        return RawEntry(
            subgraph=tail.group("sid"),
            query_id=self.normalizer.query_id(query, variables, shape_hash),
            block=block,
            time_ms=time_ms,
            query=query,
            variables=variables,
            timestamp=timestamp,
            request_id=tail.group("qid"),
            complexity=complexity,
            cached=cached,
        )

    def parse_record(self, record: Mapping[str, Any]) -> RawEntry:
        """
        Build an entry from a per-query JSONL record, recomputing its query id.

        An embedded id in composite form that disagrees with the recomputed
        one is counted in ``query_id_mismatches`` when verification is on.
        """
        query = record.get("query")
        if not isinstance(query, str):
            raise LineParseError("record field 'query' is missing")
        variables = record.get("variables")
        if isinstance(variables, (dict, list)):
            variables = json.dumps(variables, separators=(",", ":"))

        query_id = self.normalizer.query_id(query, variables)
        embedded = record.get("query_id")
        request_id = record.get("request_id")
        if isinstance(embedded, str) and QUERY_ID_PATTERN.match(embedded):
            if self.verify_query_ids and embedded != query_id:
                self.query_id_mismatches += 1
                logger.warning(
                    "query id mismatch",
                    context={
                        "embedded": embedded,
                        "computed": query_id,
                        "subgraph": record.get("subgraph"),
                    },
                )
        elif isinstance(embedded, str) and request_id is None:
            request_id = embedded

        try:
            return RawEntry.from_record(
                {**record, "variables": variables, "request_id": request_id},
                query_id=query_id,
            )
        except LineParseError:
            raise
        except (TypeError, ValueError) as exc:
            raise LineParseError(str(exc)) from exc

    def _parse_wrapped(self, envelope: Mapping[str, Any], depth: int) -> RawEntry:
        payload = _envelope_payload(envelope)
        if not isinstance(payload, str):
            raise LineParseError("log envelope has no text payload")
        fallback = envelope.get("timestamp")
        return self._parse_payload(
            payload, None if fallback is None else str(fallback), depth + 1
        )

    def _parse_payload(
        self, payload: str, fallback_timestamp: str | None, depth: int
    ) -> RawEntry:
        if depth > _MAX_NESTING:
            raise LineParseError("log payload nested too deeply")
        text = payload.strip()
        if text.startswith('"'):
            try:
                unescaped = json.loads(text)
            except json.JSONDecodeError as exc:
                raise LineParseError(f"invalid escaped payload ({exc.msg})") from exc
            if not isinstance(unescaped, str):
                raise LineParseError("escaped payload is not text")
            return self._parse_payload(unescaped, fallback_timestamp, depth + 1)
        if is_json_line(text):
            inner = load_json_object(text)
            kind = record_kind(inner)
            if kind == "wrapped":
                entry = self._parse_wrapped(inner, depth)
            elif kind == "jsonl":
                entry = self.parse_record(inner)
            else:
                raise LineParseError("unrecognized JSON payload")
        else:
            entry = self.parse_plain(text)
        if entry.timestamp is None and fallback_timestamp is not None:
            entry = replace(entry, timestamp=fallback_timestamp)
        return entry
