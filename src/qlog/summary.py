"""Summary JSONL records: one object per query shape."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any, TextIO

from qlog.aggregate import NO_UUID, ShapeAccumulator
from qlog.errors import SchemaError
from qlog.logging import get_logger
from qlog.shape import ShapeNormalizer

__all__ = [
    "SummaryReader",
    "decode_summary",
    "encode_summary",
    "read_summaries",
    "write_summaries",
]

logger = get_logger("summary")

_REQUIRED_INTEGERS = ("calls", "total_time", "time_squared", "max_time")
_OPTIONAL_INTEGERS = (
    "slow_count",
    "max_complexity",
    "id",
    "cached_count",
    "cached_time",
    "cached_max_time",
)


def encode_summary(accumulator: ShapeAccumulator) -> dict[str, Any]:
    return {
        "query": accumulator.example_query,
        "subgraph": accumulator.subgraph,
        "total_time": accumulator.total_time,
        "time_squared": accumulator.time_squared,
        "max_time": accumulator.max_time,
        "max_uuid": accumulator.max_uuid,
        "max_variables": accumulator.max_variables,
        "max_complexity": accumulator.max_complexity,
        "slow_count": accumulator.slow_count,
        "calls": accumulator.calls,
        "id": accumulator.id,
        "cached_count": accumulator.cached_count,
        "cached_time": accumulator.cached_time,
        "cached_max_time": accumulator.cached_max_time,
        "hash": accumulator.shape_hash,
    }


def _integer(record: Mapping[str, Any], name: str, default: int | None = None) -> int:
    value = record.get(name, default)
    if value is None:
        raise SchemaError(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SchemaError(name, "must be an integer")
    if value < 0:
        raise SchemaError(name, "must not be negative")
    return value


def _text(record: Mapping[str, Any], name: str) -> str:
    value = record.get(name)
    if value is None:
        raise SchemaError(name)
    if not isinstance(value, str):
        raise SchemaError(name, "must be text")
    return value


def decode_summary(
    record: Mapping[str, Any], normalizer: ShapeNormalizer | None = None
) -> ShapeAccumulator:
    """
    Rebuild an accumulator from a summary record.

    Records written by older versions may lack optional fields or carry a
    numeric ``hash``; a missing, zero or numeric hash is recomputed from the
    query text.

    Raises:
        SchemaError: If a required field is missing or has the wrong type.
    """
    query = _text(record, "query")
    subgraph = _text(record, "subgraph")
    values = {name: _integer(record, name) for name in _REQUIRED_INTEGERS}
    values.update({name: _integer(record, name, 0) for name in _OPTIONAL_INTEGERS})

    max_uuid = record.get("max_uuid")
    if max_uuid is None:
        max_uuid = NO_UUID
    max_variables = record.get("max_variables")
    if not isinstance(max_uuid, str):
        raise SchemaError("max_uuid", "must be text")
    if max_variables is not None and not isinstance(max_variables, str):
        raise SchemaError("max_variables", "must be text")

    shape_hash = record.get("hash")
    if not isinstance(shape_hash, str) or not shape_hash:
        shape_hash = (normalizer or ShapeNormalizer(lex_error_policy="raw")).shape_hash(
            query
        )

    return ShapeAccumulator(
        shape_hash=shape_hash,
        subgraph=subgraph,
        example_query=query,
        max_uuid=max_uuid,
        max_variables=max_variables,
        **values,
    )


class SummaryReader:
    """Decode summary lines, skipping records that do not fit the schema."""

    def __init__(self, normalizer: ShapeNormalizer | None = None) -> None:
        self.normalizer = normalizer or ShapeNormalizer(lex_error_policy="raw")
        self.skipped = 0

    def read(self, lines: Iterable[str]) -> list[ShapeAccumulator]:
        accumulators: list[ShapeAccumulator] = []
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise SchemaError("record", "must be a JSON object")
                accumulators.append(decode_summary(record, self.normalizer))
            except (json.JSONDecodeError, SchemaError) as exc:
                self.skipped += 1
                logger.warning(
                    "skipping summary record",
                    context={"line": number, "error": str(exc)},
                )
        return accumulators


def read_summaries(
    lines: Iterable[str], normalizer: ShapeNormalizer | None = None
) -> list[ShapeAccumulator]:
    return SummaryReader(normalizer).read(lines)


def write_summaries(accumulators: Iterable[ShapeAccumulator], out: TextIO) -> int:
    count = 0
    for accumulator in accumulators:
        out.write(json.dumps(encode_summary(accumulator), separators=(",", ":")) + "\n")
        count += 1
    return count
