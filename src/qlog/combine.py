"""Merge independently produced summary collections into one."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from qlog.aggregate import ShapeAccumulator
from qlog.errors import InvariantViolation
from qlog.logging import get_logger

__all__ = ["Combiner", "merge_summaries"]

logger = get_logger("combine")

SummaryCollection = Mapping[str, ShapeAccumulator] | Iterable[ShapeAccumulator]


def _accumulators(collection: SummaryCollection) -> Iterable[ShapeAccumulator]:
    if isinstance(collection, Mapping):
        return collection.values()
    return collection


class Combiner:
    """
    Associative, commutative merge of summary collections keyed by shape hash.

    Counters and time sums add up. The maximum and its uuid, variables and
    complexity come from the input holding the largest ``max_time``; on a tie
    the earliest input wins. ``subgraph`` and ``example_query`` come from the
    first input that defines the shape.
    """

    def __init__(self) -> None:
        self.anomalies: list[InvariantViolation] = []

    def merge(
        self, collections: Iterable[SummaryCollection]
    ) -> dict[str, ShapeAccumulator]:
        merged: dict[str, ShapeAccumulator] = {}
        for collection in collections:
            for accumulator in _accumulators(collection):
                existing = merged.get(accumulator.shape_hash)
                if existing is None:
                    merged[accumulator.shape_hash] = accumulator.copy()
                    continue
                if existing.subgraph != accumulator.subgraph:
                    self._report_subgraph_conflict(existing, accumulator)
                existing.merge(accumulator)

        result: dict[str, ShapeAccumulator] = {}
        for number, shape_hash in enumerate(sorted(merged), start=1):
            accumulator = merged[shape_hash]
            accumulator.id = number
            result[shape_hash] = accumulator
        logger.debug("combined summaries", context={"shapes": len(result)})
        return result

    def _report_subgraph_conflict(
        self, existing: ShapeAccumulator, other: ShapeAccumulator
    ) -> None:
        violation = InvariantViolation(
            kind="subgraph conflict",
            key=existing.shape_hash,
            detail=f"merged {other.subgraph} into {existing.subgraph}",
        )
        self.anomalies.append(violation)
        logger.warning(
            "summaries disagree on subgraph",
            context={
                "shape_hash": existing.shape_hash,
                "subgraph": existing.subgraph,
                "other_subgraph": other.subgraph,
            },
        )


def merge_summaries(*collections: SummaryCollection) -> dict[str, ShapeAccumulator]:
    return Combiner().merge(collections)
