"""Derived statistics and report rendering over summary accumulators."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from qlog.aggregate import ShapeAccumulator

__all__ = [
    "QueryStats",
    "find_by_label",
    "format_detail",
    "format_table",
    "human_readable_time",
    "sort_accumulators",
]

_SECS_PER_MINUTE = 60
_SECS_PER_HOUR = 60 * _SECS_PER_MINUTE
_SECS_PER_DAY = 24 * _SECS_PER_HOUR


@dataclass(frozen=True)
class QueryStats:
    """Average, spread and slow ratio derived from one accumulator."""

    accumulator: ShapeAccumulator

    @property
    def avg(self) -> float:
        if not self.accumulator.calls:
            return 0.0
        return self.accumulator.total_time / self.accumulator.calls

    @property
    def variance(self) -> float:
        calls = self.accumulator.calls
        if not calls:
            return 0.0
        avg = self.avg
        # Cancellation can push this marginally below zero
        return max(0.0, self.accumulator.time_squared / calls - avg * avg)

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)

    @property
    def slow_percent(self) -> float:
        if not self.accumulator.calls:
            return 0.0
        return self.accumulator.slow_count * 100.0 / self.accumulator.calls

    @property
    def cached_avg(self) -> float:
        if not self.accumulator.cached_count:
            return 0.0
        return self.accumulator.cached_time / self.accumulator.cached_count


_SORT_KEYS = {
    "c": lambda acc: acc.calls,
    "a": lambda acc: QueryStats(acc).avg,
    "m": lambda acc: acc.max_time,
    "s": lambda acc: acc.slow_count,
    "u": lambda acc: acc.max_uuid,
    "t": lambda acc: acc.total_time,
}


def sort_accumulators(
    accumulators: Iterable[ShapeAccumulator], key: str = "total_time"
) -> list[ShapeAccumulator]:
    """Sort descending by the column whose name starts with ``key``'s first letter."""
    sort_key = _SORT_KEYS.get(key[:1].lower(), _SORT_KEYS["t"])
    return sorted(accumulators, key=sort_key, reverse=True)


def find_by_label(
    accumulators: Iterable[ShapeAccumulator], label: str
) -> ShapeAccumulator | None:
    """
    Look up an accumulator by its display label, e.g. ``Q12``.

    Raises:
        ValueError: If ``label`` is not of the form ``Q<number>``.
    """
    if not label.startswith("Q") or not label[1:].isdigit():
        raise ValueError(f"Invalid query identifier '{label}'.")
    number = int(label[1:])
    for accumulator in accumulators:
        if accumulator.id == number:
            return accumulator
    return None


def human_readable_time(time_ms: int) -> tuple[float, str]:
    seconds = time_ms / 1000
    if seconds > _SECS_PER_DAY:
        return seconds / _SECS_PER_DAY, "days"
    if seconds > 2 * _SECS_PER_HOUR:
        return seconds / _SECS_PER_HOUR, "h"
    if seconds > 5 * _SECS_PER_MINUTE:
        return seconds / _SECS_PER_MINUTE, "m"
    if seconds > 10:
        return seconds, "s"
    return float(time_ms), "ms"


def format_table(accumulators: Iterable[ShapeAccumulator]) -> str:
    lines = [
        "| {:^7} | {:^8} | {:^10} | {:^12} | {:^6} | {:^6} | {:^6} | {:^6} |".format(
            "QID", "calls", "complexity", "total", "avg", "stddev", "max", "slow"
        ),
        "|---------+----------+------------+--------------+--------+--------+--------+--------|",
    ]
    for accumulator in accumulators:
        stats = QueryStats(accumulator)
        lines.append(
            "| Q{:0>6} | {:>8} | {:>10} | {:>12} | {:>6.0f} | {:>6.0f} | {:>6} | {:>6} |".format(
                accumulator.id,
                accumulator.calls,
                accumulator.max_complexity,
                accumulator.total_time,
                stats.avg,
                stats.stddev,
                accumulator.max_time,
                accumulator.slow_count,
            )
        )
    return "\n".join(lines)


def format_detail(accumulator: ShapeAccumulator) -> str:
    stats = QueryStats(accumulator)
    total, total_unit = human_readable_time(accumulator.total_time)
    lines = [
        f"{'':=<32} Q{accumulator.id} {'':=<32}",
        f"# subgraph:        {accumulator.subgraph}",
        f"# shape:           {accumulator.shape_hash}",
        f"# calls:           {accumulator.calls:>12}",
        f"# complexity:      {accumulator.max_complexity:>12}",
        f"# slow_count:      {accumulator.slow_count:>12}",
        f"# slow_percent:    {stats.slow_percent:>12.2f} %",
        f"# total_time:      {total:>12.1f} {total_unit}",
        f"# avg_time:        {stats.avg:>12.0f} ms",
        f"# stddev_time:     {stats.stddev:>12.0f} ms",
    ]
    if accumulator.cached_count:
        cached, cached_unit = human_readable_time(accumulator.cached_time)
        lines.extend(
            [
                f"# cached calls:    {accumulator.cached_count:>12}",
                f"# cached time:     {cached:>12.1f} {cached_unit}",
                f"# cached avg_time: {stats.cached_avg:>12.0f} ms",
                f"# cached max_time: {accumulator.cached_max_time:>12} ms",
            ]
        )
    lines.extend(
        [
            f"# max_time:        {accumulator.max_time:>12} ms",
            f"# max_uuid:        {accumulator.max_uuid}",
        ]
    )
    if accumulator.max_variables is not None:
        lines.append(f"# max_variables:   {accumulator.max_variables}")
    lines.extend(["", accumulator.example_query])
    return "\n".join(lines)
