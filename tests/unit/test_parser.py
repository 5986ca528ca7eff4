from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from django.test import SimpleTestCase

from qlog.errors import LineParseError, QueryLexError
from qlog.parser import LineParser, is_summary_record, record_kind
from qlog.shape import ShapeNormalizer
from tests.utils.log_lines import (
    CACHED_THINGS,
    EXCHANGE,
    RATE_UPDATES,
    RATE_UPDATES_OTHER_VALUES,
    RATE_UPDATES_QUERY,
    SQL_LINE,
    STUFF,
    THINGS_BY_ID,
    TRANSCODERS_FRAGMENT,
    TRANSCODERS_FRAGMENT_QUERY,
    timing_line,
    wrapped,
)


class PlainLineTests(SimpleTestCase):
    def setUp(self):
        self.normalizer = ShapeNormalizer(lex_error_policy="raw")
        self.parser = LineParser(self.normalizer, dialect="plain")

    def test_parse_simple_line(self):
        entry = self.parser.parse_line(STUFF)

        self.assertEqual(entry.subgraph, "QmSuBgRaPh")
        self.assertEqual(entry.block, 10344025)
        self.assertEqual(entry.time_ms, 160)
        self.assertEqual(entry.query, "query Stuff { things }")
        self.assertIsNone(entry.variables)
        self.assertEqual(entry.timestamp, "Dec 30 20:55:13.071")
        self.assertEqual(entry.request_id, "f-1-4-b-e4")
        self.assertEqual(entry.complexity, 0)
        self.assertFalse(entry.cached)

    def test_query_id_is_composite(self):
        entry = self.parser.parse_line(THINGS_BY_ID)

        self.assertEqual(
            entry.query_id,
            self.normalizer.query_id('query { things(id:"1") { id }}', "{}"),
        )
        self.assertEqual(
            entry.shape_hash, self.normalizer.shape_hash('query { things(id:"1") { id }}')
        )

    def test_variables_may_contain_the_query_delimiter(self):
        query = "query Q($q: String) { t(q: $q) { id } }"
        line = timing_line(5, query=query, variables='{"q":"a, query: b"}')

        entry = self.parser.parse_line(line)

        self.assertEqual(entry.query, query)
        self.assertEqual(entry.variables, '{"q":"a, query: b"}')
        self.assertEqual(entry.time_ms, 5)
        self.assertEqual(entry.query_id, self.normalizer.query_id(query, entry.variables))

    def test_variables_are_kept_verbatim(self):
        entry = self.parser.parse_line(EXCHANGE)

        self.assertEqual(entry.variables, '{"id":"0xdeadbeef"}')
        self.assertEqual(
            entry.query,
            "query exchange($id: String!) { exchange(id: $id) { id tokenAddress } }",
        )

    def test_query_with_commas_and_fragments(self):
        entry = self.parser.parse_line(TRANSCODERS_FRAGMENT)

        self.assertEqual(entry.query, TRANSCODERS_FRAGMENT_QUERY)
        self.assertEqual(entry.time_ms, 2657)
        self.assertEqual(entry.block, 1234)
        self.assertEqual(
            entry.variables,
            '{"_v1_first":100,"_v2_where":{"status":"Registered"},"_v0_skip":0}',
        )

    def test_complexity_and_cached_fields(self):
        entry = self.parser.parse_line(RATE_UPDATES)

        self.assertEqual(entry.query, RATE_UPDATES_QUERY)
        self.assertEqual(entry.complexity, 4711)
        self.assertFalse(entry.cached)
        self.assertEqual(entry.request_id, "cb9af68f-ae60-4dba-b9b3-89aee6fe8eca")

    def test_cached_line_without_timestamp(self):
        entry = self.parser.parse_line(CACHED_THINGS)

        self.assertTrue(entry.cached)
        self.assertEqual(entry.time_ms, 23)
        self.assertEqual(entry.block, 21458574)
        self.assertIsNone(entry.timestamp)
        self.assertEqual(entry.subgraph, "Qmsubgraph")

    def test_same_shape_for_different_values(self):
        first = self.parser.parse_line(RATE_UPDATES)
        second = self.parser.parse_line(RATE_UPDATES_OTHER_VALUES)

        self.assertEqual(first.shape_hash, second.shape_hash)
        self.assertNotEqual(first.query_id, second.query_id)

    def test_null_block(self):
        entry = self.parser.parse_line(timing_line(5, block="null"))

        self.assertIsNone(entry.block)

    def test_sql_line_is_rejected(self):
        with self.assertRaises(LineParseError):
            self.parser.parse_line(SQL_LINE)

    def test_malformed_lines_are_rejected(self):
        bad_lines = [
            "Dec 30 20:55:13.071 INFO Starting node",
            timing_line("abc"),
            timing_line(-5),
            timing_line(5, request_id="not-hex!"),
            timing_line(5, block="soon"),
            timing_line(5).replace(", query: ", ", q: "),
            timing_line(5).replace(" , query_id: ", " query_id: "),
            timing_line(5).replace("query_time_ms: 5, ", ""),
        ]
        for line in bad_lines:
            with self.subTest(line=line), self.assertRaises(LineParseError):
                self.parser.parse_line(line)


def test_lex_error_under_drop_policy() -> None:
    parser = LineParser(ShapeNormalizer(lex_error_policy="drop"), dialect="plain")

    with pytest.raises(QueryLexError):
        parser.parse_line(timing_line(5, query='{ things(id: "oops) }'))


def test_lex_error_under_raw_policy(normalizer: ShapeNormalizer) -> None:
    parser = LineParser(normalizer, dialect="plain")

    entry = parser.parse_line(timing_line(5, query='{ things(id: "oops) }'))

    assert entry.query == '{ things(id: "oops) }'
    assert normalizer.lex_errors == 1


class WrappedLineTests(SimpleTestCase):
    def setUp(self):
        self.parser = LineParser(ShapeNormalizer(lex_error_policy="raw"), dialect="auto")

    def test_text_payload(self):
        entry = self.parser.parse_line(
            wrapped(STUFF.rstrip("\n"), timestamp="2020-12-30T20:55:13Z")
        )

        self.assertEqual(entry.time_ms, 160)
        self.assertEqual(entry.timestamp, "Dec 30 20:55:13.071")

    def test_envelope_timestamp_fills_missing_line_timestamp(self):
        entry = self.parser.parse_line(
            wrapped(CACHED_THINGS, timestamp="2024-12-20T10:11:12.123Z")
        )

        self.assertEqual(entry.timestamp, "2024-12-20T10:11:12.123Z")

    def test_escaped_payload(self):
        entry = self.parser.parse_line(wrapped(json.dumps(CACHED_THINGS)))

        self.assertTrue(entry.cached)
        self.assertEqual(entry.subgraph, "Qmsubgraph")

    def test_json_payload_message(self):
        line = json.dumps({"jsonPayload": {"message": EXCHANGE}})

        entry = self.parser.parse_line(line)

        self.assertEqual(entry.variables, '{"id":"0xdeadbeef"}')

    def test_nested_envelope(self):
        entry = self.parser.parse_line(wrapped(wrapped(EXCHANGE)))

        self.assertEqual(entry.time_ms, 12)

    def test_envelope_without_text_is_rejected(self):
        with self.assertRaises(LineParseError):
            self.parser.parse_line(wrapped("Dec 30 INFO something else"))

    def test_invalid_json_is_rejected(self):
        with self.assertRaises(LineParseError):
            self.parser.parse_line('{"textPayload": ')

    def test_wrapped_dialect_rejects_records(self):
        parser = LineParser(dialect="wrapped")
        record = json.dumps({"subgraph": "QmA", "query": "{ a }", "time": 1})

        with self.assertRaises(LineParseError):
            parser.parse_line(record)


class RecordTests(SimpleTestCase):
    def setUp(self):
        self.normalizer = ShapeNormalizer(lex_error_policy="raw")
        self.parser = LineParser(self.normalizer, dialect="jsonl", verify_query_ids=True)

    def _record(self, **overrides):
        record = {
            "subgraph": "QmA",
            "block": 5,
            "time": 12,
            "query": "{ things { id } }",
            "variables": None,
            "timestamp": "t0",
        }
        record.update(overrides)
        return record

    def test_query_id_is_recomputed(self):
        entry = self.parser.parse_line(json.dumps(self._record()))

        self.assertEqual(entry.query_id, self.normalizer.query_id("{ things { id } }", None))
        self.assertEqual(self.parser.query_id_mismatches, 0)

    def test_matching_embedded_id(self):
        query_id = self.normalizer.query_id("{ things { id } }", None)

        entry = self.parser.parse_line(json.dumps(self._record(query_id=query_id)))

        self.assertEqual(entry.query_id, query_id)
        self.assertEqual(self.parser.query_id_mismatches, 0)

    def test_mismatched_embedded_id_is_counted(self):
        with patch("qlog.parser.logger") as mock_logger:
            entry = self.parser.parse_line(json.dumps(self._record(query_id="abc-def")))

        self.assertNotEqual(entry.query_id, "abc-def")
        self.assertEqual(self.parser.query_id_mismatches, 1)
        mock_logger.warning.assert_called_once()
        self.assertEqual(mock_logger.warning.call_args.args[0], "query id mismatch")

    def test_mismatch_not_counted_without_verification(self):
        parser = LineParser(self.normalizer, dialect="jsonl", verify_query_ids=False)

        parser.parse_line(json.dumps(self._record(query_id="abc-def")))

        self.assertEqual(parser.query_id_mismatches, 0)

    def test_node_id_becomes_request_id(self):
        entry = self.parser.parse_line(
            json.dumps(self._record(query_id="cb9af68f-ae60-4dba-b9b3-89aee6fe8eca"))
        )

        self.assertEqual(entry.request_id, "cb9af68f-ae60-4dba-b9b3-89aee6fe8eca")

    def test_object_variables_are_serialized(self):
        entry = self.parser.parse_line(json.dumps(self._record(variables={"id": "1"})))

        self.assertEqual(entry.variables, '{"id":"1"}')

    def test_bad_records(self):
        for record in (
            self._record(time=-3),
            self._record(time="12"),
            {"subgraph": "QmA", "query": "{ a }"},
        ):
            with self.subTest(record=record), self.assertRaises(LineParseError):
                self.parser.parse_line(json.dumps(record))

    def test_summary_record_is_not_a_query(self):
        parser = LineParser(self.normalizer, dialect="auto")

        with self.assertRaises(LineParseError):
            parser.parse_line(json.dumps({"query": "{ a }", "calls": 3}))


def test_record_kind() -> None:
    assert record_kind({"textPayload": "x"}) == "wrapped"
    assert record_kind({"jsonPayload": {"message": "x"}}) == "wrapped"
    assert record_kind({"query": "{ a }", "calls": 1}) == "summary"
    assert record_kind({"query": "{ a }", "subgraph": "QmA"}) == "jsonl"
    assert record_kind({"jsonPayload": {}}) is None
    assert is_summary_record({"query": "{ a }", "calls": 0})


def test_unknown_dialect() -> None:
    with pytest.raises(ValueError):
        LineParser(dialect="xml")
