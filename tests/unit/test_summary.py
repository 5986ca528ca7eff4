from __future__ import annotations

import io
import json
from unittest.mock import patch

import pytest

from qlog.aggregate import NO_UUID, ShapeAccumulator
from qlog.errors import SchemaError
from qlog.shape import ShapeNormalizer
from qlog.summary import (
    SummaryReader,
    decode_summary,
    encode_summary,
    read_summaries,
    write_summaries,
)


def _record(**overrides) -> dict:
    record = {
        "query": "{ things(first: 10) { id } }",
        "subgraph": "QmA",
        "total_time": 2100,
        "time_squared": 2510000,
        "max_time": 1500,
        "max_uuid": "aa-02",
        "max_variables": '{"first":10}',
        "max_complexity": 3,
        "slow_count": 1,
        "calls": 3,
        "id": 4,
        "cached_count": 1,
        "cached_time": 9,
        "cached_max_time": 9,
        "hash": "aa",
    }
    record.update(overrides)
    return record


def test_encode_writes_all_fields() -> None:
    accumulator = decode_summary(_record())

    assert encode_summary(accumulator) == _record()


def test_decode_fills_accumulator() -> None:
    accumulator = decode_summary(_record())

    assert accumulator.shape_hash == "aa"
    assert accumulator.example_query == "{ things(first: 10) { id } }"
    assert accumulator.calls == 3
    assert accumulator.max_uuid == "aa-02"
    assert accumulator.id == 4


def test_optional_fields_default() -> None:
    record = {
        "query": "{ a }",
        "subgraph": "QmA",
        "total_time": 10,
        "time_squared": 100,
        "max_time": 10,
        "calls": 1,
        "hash": "bb",
    }

    accumulator = decode_summary(record)

    assert accumulator.slow_count == 0
    assert accumulator.max_complexity == 0
    assert accumulator.cached_count == 0
    assert accumulator.max_uuid == NO_UUID
    assert accumulator.max_variables is None
    assert accumulator.id == 0


def test_empty_max_uuid_is_kept() -> None:
    accumulator = decode_summary(_record(max_uuid=""))

    assert accumulator.max_uuid == ""
    assert encode_summary(accumulator)["max_uuid"] == ""


def test_null_max_uuid_defaults() -> None:
    assert decode_summary(_record(max_uuid=None)).max_uuid == NO_UUID


@pytest.mark.parametrize("shape_hash", [None, 0, 17, ""])
def test_missing_or_numeric_hash_is_recomputed(shape_hash, normalizer) -> None:
    record = _record(hash=shape_hash)
    if shape_hash is None:
        del record["hash"]

    accumulator = decode_summary(record, normalizer)

    assert accumulator.shape_hash == normalizer.shape_hash(record["query"])


@pytest.mark.parametrize(
    ("field_name", "value"),
    [
        ("calls", None),
        ("total_time", "2100"),
        ("time_squared", -1),
        ("max_time", True),
        ("slow_count", 1.5),
        ("query", None),
        ("subgraph", 7),
        ("max_uuid", 12),
        ("max_variables", {"first": 10}),
    ],
)
def test_schema_errors(field_name: str, value) -> None:
    record = _record(**{field_name: value})
    if value is None:
        del record[field_name]

    with pytest.raises(SchemaError) as info:
        decode_summary(record)

    assert info.value.field_name == field_name


def test_reader_skips_bad_records() -> None:
    lines = [
        json.dumps(_record()) + "\n",
        "\n",
        "not json\n",
        "[1, 2]\n",
        json.dumps(_record(calls="3")) + "\n",
        json.dumps(_record(hash="cc")) + "\n",
    ]
    reader = SummaryReader(ShapeNormalizer(lex_error_policy="raw"))

    with patch("qlog.summary.logger") as mock_logger:
        accumulators = reader.read(lines)

    assert [acc.shape_hash for acc in accumulators] == ["aa", "cc"]
    assert reader.skipped == 3
    assert mock_logger.warning.call_count == 3
    assert mock_logger.warning.call_args.args[0] == "skipping summary record"
    assert mock_logger.warning.call_args.kwargs["context"]["line"] == 5


def test_write_summaries_one_line_per_record() -> None:
    accumulators = [
        ShapeAccumulator("aa", "QmA", "{ a }", calls=1, total_time=5, max_time=5),
        ShapeAccumulator("bb", "QmB", "{ b }", calls=2, total_time=8, max_time=6),
    ]
    out = io.StringIO()

    assert write_summaries(accumulators, out) == 2

    lines = out.getvalue().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["hash"] == "bb"
    assert [acc.shape_hash for acc in read_summaries(lines)] == ["aa", "bb"]


def test_collection_survives_write_and_read(normalizer) -> None:
    accumulators = [
        decode_summary(_record()),
        ShapeAccumulator("bb", "QmB", "{ b }", calls=1, total_time=5, time_squared=25, max_time=5, id=2),
        ShapeAccumulator("cc", "QmC", "{ c }", cached_count=3, cached_time=12, cached_max_time=6),
    ]
    out = io.StringIO()
    write_summaries(accumulators, out)

    assert read_summaries(out.getvalue().splitlines(keepends=True), normalizer) == accumulators
