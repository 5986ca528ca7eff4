"""Uniform per-subgraph samples of query records, drawn in a single pass."""

from __future__ import annotations

import hashlib
import random
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from qlog import conf
from qlog.entry import RawEntry
from qlog.logging import get_logger

__all__ = [
    "ReservoirSample",
    "Sampler",
    "iter_sample_records",
    "merge_reservoirs",
]

logger = get_logger("sampler")


def _entry_digest(entry: RawEntry) -> bytes:
    payload = f"{entry.query}\0{entry.variables or ''}".encode("utf-8")
    return hashlib.sha256(payload, usedforsecurity=False).digest()


@dataclass
class ReservoirSample:
    """
    A fixed-capacity uniform sample of the entries offered for one subgraph.

    After ``seen`` offers every offered entry is in ``items`` with
    probability ``capacity / seen``.
    """

    capacity: int
    seen: int = 0
    items: list[RawEntry] = field(default_factory=list)
    distinct: bool = False
    _digests: set[bytes] = field(default_factory=set, repr=False)

    def offer(self, entry: RawEntry, rng: random.Random) -> bool:
        """Offer one entry; return True if it was placed in the sample."""
        if self.distinct:
            digest = _entry_digest(entry)
            if digest in self._digests:
                return False
            self._digests.add(digest)

        if len(self.items) < self.capacity:
            self.items.append(entry)
            self.seen += 1
            return True

        self.seen += 1
        slot = rng.randrange(self.seen)
        if slot < self.capacity:
            self.items[slot] = entry
            return True
        return False


class Sampler:
    """
    Keep one ``ReservoirSample`` per subgraph.

    A capacity of 0 disables sampling. When ``subgraphs`` is given only those
    subgraphs are sampled; ``excluded`` subgraphs are never sampled.
    """

    def __init__(
        self,
        capacity: int | None = None,
        subgraphs: Iterable[str] | None = None,
        *,
        excluded: Iterable[str] | None = None,
        distinct: bool | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if capacity is None:
            capacity = conf.sample_size()
        if capacity < 0:
            raise ValueError("Sample capacity must not be negative.")
        if subgraphs is None:
            subgraphs = conf.sample_subgraphs()
        if excluded is None:
            excluded = conf.sample_excluded_subgraphs()
        if distinct is None:
            distinct = conf.sample_distinct()
        self.capacity = capacity
        self.subgraphs = frozenset(subgraphs) if subgraphs else None
        self.excluded = frozenset(excluded)
        self.distinct = distinct
        self.rng = rng or random.Random()
        self._reservoirs: dict[str, ReservoirSample] = {}

    @property
    def enabled(self) -> bool:
        return self.capacity > 0

    def accepts(self, subgraph: str) -> bool:
        if not self.enabled or subgraph in self.excluded:
            return False
        return self.subgraphs is None or subgraph in self.subgraphs

    def offer(self, subgraph: str, entry: RawEntry) -> None:
        if not self.accepts(subgraph):
            return
        reservoir = self._reservoirs.get(subgraph)
        if reservoir is None:
            reservoir = ReservoirSample(capacity=self.capacity, distinct=self.distinct)
            self._reservoirs[subgraph] = reservoir
            logger.debug("sampling subgraph", context={"subgraph": subgraph})
        reservoir.offer(entry, self.rng)

    def offer_entry(self, entry: RawEntry) -> None:
        self.offer(entry.subgraph, entry)

    def finish(self) -> dict[str, ReservoirSample]:
        return {
            subgraph: self._reservoirs[subgraph]
            for subgraph in sorted(self._reservoirs)
        }


def merge_reservoirs(
    left: ReservoirSample,
    right: ReservoirSample,
    rng: random.Random | None = None,
) -> ReservoirSample:
    """
    Combine two reservoirs into one uniform sample of their joint stream.

    Each slot is filled from a side with probability proportional to the
    number of that side's offers not yet represented in the result, using a
    uniformly chosen, not yet used item from that side.
    """
    rng = rng or random.Random()
    capacity = min(left.capacity, right.capacity)
    pools = [list(left.items), list(right.items)]
    weights = [left.seen, right.seen]
    merged: list[RawEntry] = []

    while len(merged) < capacity and (weights[0] > 0 or weights[1] > 0):
        side = 0 if rng.randrange(weights[0] + weights[1]) < weights[0] else 1
        pool = pools[side]
        if not pool:
            weights[side] = 0
            continue
        merged.append(pool.pop(rng.randrange(len(pool))))
        weights[side] -= 1

    return ReservoirSample(
        capacity=capacity,
        seen=left.seen + right.seen,
        items=merged,
        distinct=left.distinct and right.distinct,
    )


def iter_sample_records(
    reservoirs: Mapping[str, ReservoirSample],
) -> Iterator[dict[str, Any]]:
    """Yield the per-query JSONL records of every sampled entry."""
    for subgraph, reservoir in reservoirs.items():
        for entry in reservoir.items:
            record = entry.to_record()
            record["subgraph"] = subgraph
            yield record
