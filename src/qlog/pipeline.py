"""The single-pass processing pipeline behind the ``process`` command."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from qlog.aggregate import Aggregator, ShapeAccumulator
from qlog.combine import Combiner
from qlog.errors import InvariantViolation, LineParseError, QueryLexError, SchemaError
from qlog.logging import get_logger
from qlog.parser import (
    GQL_MARKER,
    LineParser,
    is_json_line,
    is_summary_record,
    load_json_object,
)
from qlog.sampler import ReservoirSample, Sampler
from qlog.summary import decode_summary

__all__ = ["ProcessResult", "ProcessStats", "QueryLogProcessor", "process_lines"]

logger = get_logger("pipeline")


@dataclass
class ProcessStats:
    lines: int = 0
    queries: int = 0
    summaries: int = 0
    ignored: int = 0
    skipped: int = 0
    lex_errors: int = 0
    elapsed: float = 0.0


@dataclass
class ProcessResult:
    summaries: dict[str, ShapeAccumulator]
    samples: dict[str, ReservoirSample]
    stats: ProcessStats
    anomalies: list[InvariantViolation] = field(default_factory=list)


class QueryLogProcessor:
    """
    Feed lines through parser, aggregator and sampler.

    Every line commits completely or not at all, so processing can stop after
    any line. Pre-summarized records found in the input are merged into the
    result at ``finish``.
    """

    def __init__(
        self,
        parser: LineParser | None = None,
        aggregator: Aggregator | None = None,
        sampler: Sampler | None = None,
        *,
        report_unrecognized: bool = False,
    ) -> None:
        self.parser = parser or LineParser()
        self.aggregator = aggregator or Aggregator()
        self.sampler = sampler or Sampler(capacity=0)
        self.report_unrecognized = report_unrecognized
        self.stats = ProcessStats()
        self._presummarized: list[ShapeAccumulator] = []
        self._started = time.perf_counter()

    def _is_candidate(self, line: str) -> bool:
        if self.parser.dialect == "plain":
            return GQL_MARKER in line
        if self.parser.dialect == "auto" and not is_json_line(line):
            return GQL_MARKER in line
        return bool(line.strip())

    def feed(self, line: str) -> None:
        self.stats.lines += 1
        if not self._is_candidate(line):
            self.stats.ignored += 1
            if self.report_unrecognized and line.strip():
                logger.info("not a query", context={"line": line.rstrip()})
            return
        try:
            if self.parser.dialect != "plain" and is_json_line(line):
                record = load_json_object(line)
                if is_summary_record(record):
                    self._presummarized.append(
                        decode_summary(record, self.parser.normalizer)
                    )
                    self.stats.summaries += 1
                    return
                entry = self.parser.parse_object(record, line)
            else:
                entry = self.parser.parse_line(line)
        except QueryLexError as exc:
            self.stats.lex_errors += 1
            self.stats.skipped += 1
            logger.debug("dropping untokenizable query", context={"error": str(exc)})
            return
        except (LineParseError, SchemaError) as exc:
            self.stats.skipped += 1
            logger.debug(
                "skipping line",
                context={"line": self.stats.lines, "error": str(exc)},
            )
            return

        self.aggregator.observe(entry.shape_hash, entry.subgraph, entry)
        self.sampler.offer(entry.subgraph, entry)
        self.stats.queries += 1

    def feed_all(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.feed(line)

    def finish(self) -> ProcessResult:
        summaries = self.aggregator.finish()
        anomalies = list(self.aggregator.anomalies)
        if self._presummarized:
            combiner = Combiner()
            summaries = combiner.merge([summaries, self._presummarized])
            anomalies.extend(combiner.anomalies)
        self.stats.lex_errors = max(
            self.stats.lex_errors, self.parser.normalizer.lex_errors
        )
        self.stats.elapsed = time.perf_counter() - self._started
        logger.info(
            "processed query log",
            context={
                "lines": self.stats.lines,
                "queries": self.stats.queries,
                "summaries": self.stats.summaries,
                "skipped": self.stats.skipped,
                "ignored": self.stats.ignored,
                "shapes": len(summaries),
                "elapsed": round(self.stats.elapsed, 3),
            },
        )
        return ProcessResult(
            summaries=summaries,
            samples=self.sampler.finish(),
            stats=self.stats,
            anomalies=anomalies,
        )


def process_lines(
    lines: Iterable[str],
    parser: LineParser | None = None,
    aggregator: Aggregator | None = None,
    sampler: Sampler | None = None,
) -> ProcessResult:
    processor = QueryLogProcessor(parser, aggregator, sampler)
    processor.feed_all(lines)
    return processor.finish()
