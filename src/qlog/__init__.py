"""Convenience access to the qlog core components."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "Aggregator",
    "Combiner",
    "LineParser",
    "QueryLogProcessor",
    "QueryStats",
    "RawEntry",
    "ReservoirSample",
    "Sampler",
    "ShapeAccumulator",
    "ShapeNormalizer",
    "merge_reservoirs",
    "merge_summaries",
    "process_lines",
]

_MODULE_MAP = {
    "Aggregator": ("qlog.aggregate", "Aggregator"),
    "ShapeAccumulator": ("qlog.aggregate", "ShapeAccumulator"),
    "Combiner": ("qlog.combine", "Combiner"),
    "merge_summaries": ("qlog.combine", "merge_summaries"),
    "LineParser": ("qlog.parser", "LineParser"),
    "QueryLogProcessor": ("qlog.pipeline", "QueryLogProcessor"),
    "process_lines": ("qlog.pipeline", "process_lines"),
    "QueryStats": ("qlog.stats", "QueryStats"),
    "RawEntry": ("qlog.entry", "RawEntry"),
    "ReservoirSample": ("qlog.sampler", "ReservoirSample"),
    "Sampler": ("qlog.sampler", "Sampler"),
    "merge_reservoirs": ("qlog.sampler", "merge_reservoirs"),
    "ShapeNormalizer": ("qlog.shape", "ShapeNormalizer"),
}


def __getattr__(name: str) -> Any:
    if name not in __all__:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_path, attr = _MODULE_MAP[name]
    module = import_module(module_path)
    value = getattr(module, attr)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + __all__)
