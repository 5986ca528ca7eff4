"""Per-shape running statistics, updated one observation at a time."""

from __future__ import annotations

from dataclasses import dataclass, replace

from qlog import conf
from qlog.entry import RawEntry
from qlog.errors import InvariantViolation
from qlog.logging import get_logger

__all__ = ["NO_UUID", "Aggregator", "ShapeAccumulator"]

logger = get_logger("aggregate")

NO_UUID = "(none)"


@dataclass
class ShapeAccumulator:
    """
    Running statistics for one query shape.

    ``max_time``, ``max_uuid``, ``max_variables`` and ``max_complexity``
    always describe the same observation and are only replaced together.
    Cached executions are tracked separately and never enter the
    non-cached statistics.
    """

    shape_hash: str
    subgraph: str
    example_query: str
    calls: int = 0
    slow_count: int = 0
    total_time: int = 0
    time_squared: int = 0
    max_time: int = 0
    max_uuid: str = NO_UUID
    max_variables: str | None = None
    max_complexity: int = 0
    cached_count: int = 0
    cached_time: int = 0
    cached_max_time: int = 0
    id: int = 0

    @property
    def hash(self) -> str:
        return self.shape_hash

    @classmethod
    def start(
        cls,
        shape_hash: str,
        subgraph: str,
        entry: RawEntry,
        slow_threshold: int = conf.DEFAULT_SLOW_THRESHOLD_MS,
    ) -> "ShapeAccumulator":
        accumulator = cls(
            shape_hash=shape_hash, subgraph=subgraph, example_query=entry.query
        )
        accumulator.add(entry, slow_threshold)
        return accumulator

    def add(
        self, entry: RawEntry, slow_threshold: int = conf.DEFAULT_SLOW_THRESHOLD_MS
    ) -> None:
        time_ms = entry.time_ms
        if entry.cached:
            self.cached_count += 1
            self.cached_time += time_ms
            if time_ms > self.cached_max_time:
                self.cached_max_time = time_ms
            return

        self.calls += 1
        self.total_time += time_ms
        self.time_squared += time_ms * time_ms
        if time_ms > slow_threshold:
            self.slow_count += 1
        # The first call always sets the maximum, even at 0 ms
        if self.calls == 1 or time_ms > self.max_time:
            self.max_time = time_ms
            self.max_uuid = entry.query_id
            self.max_variables = entry.variables
            self.max_complexity = entry.complexity

    def merge(self, other: "ShapeAccumulator") -> None:
        """Fold ``other`` into this accumulator; ties on the maximum keep ours."""
        if other.calls and (not self.calls or other.max_time > self.max_time):
            self.max_time = other.max_time
            self.max_uuid = other.max_uuid
            self.max_variables = other.max_variables
            self.max_complexity = other.max_complexity
        self.calls += other.calls
        self.slow_count += other.slow_count
        self.total_time += other.total_time
        self.time_squared += other.time_squared

        self.cached_count += other.cached_count
        self.cached_time += other.cached_time
        if other.cached_max_time > self.cached_max_time:
            self.cached_max_time = other.cached_max_time

    def copy(self) -> "ShapeAccumulator":
        return replace(self)


class Aggregator:
    """Maintain one ``ShapeAccumulator`` per shape hash over a stream of entries."""

    def __init__(self, slow_threshold: int | None = None) -> None:
        if slow_threshold is None:
            slow_threshold = conf.slow_threshold_ms()
        self.slow_threshold = slow_threshold
        self.anomalies: list[InvariantViolation] = []
        self._accumulators: dict[str, ShapeAccumulator] = {}
        self._conflicts: set[tuple[str, str]] = set()

    def __len__(self) -> int:
        return len(self._accumulators)

    def observe(self, shape_hash: str, subgraph: str, entry: RawEntry) -> None:
        accumulator = self._accumulators.get(shape_hash)
        if accumulator is None:
            self._accumulators[shape_hash] = ShapeAccumulator.start(
                shape_hash, subgraph, entry, self.slow_threshold
            )
            return
        if (
            accumulator.subgraph != subgraph
            and (shape_hash, subgraph) not in self._conflicts
        ):
            self._conflicts.add((shape_hash, subgraph))
            self._report_subgraph_conflict(accumulator, subgraph)
        accumulator.add(entry, self.slow_threshold)

    def observe_entry(self, entry: RawEntry) -> None:
        self.observe(entry.shape_hash, entry.subgraph, entry)

    def finish(self) -> dict[str, ShapeAccumulator]:
        """Return the accumulators in first-seen order, numbered from 1."""
        result: dict[str, ShapeAccumulator] = {}
        for number, (shape_hash, accumulator) in enumerate(
            self._accumulators.items(), start=1
        ):
            finished = accumulator.copy()
            finished.id = number
            result[shape_hash] = finished
        return result

    def _report_subgraph_conflict(
        self, accumulator: ShapeAccumulator, subgraph: str
    ) -> None:
        violation = InvariantViolation(
            kind="subgraph conflict",
            key=accumulator.shape_hash,
            detail=f"seen for {accumulator.subgraph} and {subgraph}",
        )
        self.anomalies.append(violation)
        logger.warning(
            "shape seen under two subgraphs",
            context={
                "shape_hash": accumulator.shape_hash,
                "subgraph": accumulator.subgraph,
                "other_subgraph": subgraph,
            },
        )
