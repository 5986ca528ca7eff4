"""Settings readers for qlog."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Mapping

from django.conf import settings

_SETTINGS_KEY = "QLOG"

DEFAULT_SLOW_THRESHOLD_MS = 1000
DEFAULT_EXCLUDED_SUBGRAPHS = frozenset({"indexnode", "subgraphs"})
DEFAULT_TRIMMED_MARKER = "[trimmed]"
LEX_ERROR_POLICIES = frozenset({"raw", "drop"})
INPUT_DIALECTS = frozenset({"auto", "plain", "wrapped", "jsonl"})


def _config(django_settings: Any = settings) -> Mapping[str, Any]:
    if not getattr(django_settings, "configured", True):
        return {}
    value = getattr(django_settings, _SETTINGS_KEY, {})
    if isinstance(value, Mapping):
        return value
    return {}


def _setting(name: str, default: Any, django_settings: Any = settings) -> Any:
    if not getattr(django_settings, "configured", True):
        return default
    return _config(django_settings).get(
        name, getattr(django_settings, f"{_SETTINGS_KEY}_{name}", default)
    )


def _subgraph_set(raw: Any) -> frozenset[str] | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, Iterable):
        return None
    return frozenset(str(name).strip() for name in raw if str(name).strip())


def slow_threshold_ms(django_settings: Any = settings) -> int:
    raw = _setting("SLOW_THRESHOLD_MS", DEFAULT_SLOW_THRESHOLD_MS, django_settings)
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return DEFAULT_SLOW_THRESHOLD_MS


def sample_size(django_settings: Any = settings) -> int:
    raw = _setting("SAMPLE_SIZE", 0, django_settings)
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return 0


def sample_subgraphs(django_settings: Any = settings) -> frozenset[str] | None:
    subgraphs = _subgraph_set(_setting("SAMPLE_SUBGRAPHS", None, django_settings))
    return subgraphs or None


def sample_excluded_subgraphs(django_settings: Any = settings) -> frozenset[str]:
    excluded = _subgraph_set(
        _setting(
            "SAMPLE_EXCLUDED_SUBGRAPHS", DEFAULT_EXCLUDED_SUBGRAPHS, django_settings
        )
    )
    if excluded is None:
        return DEFAULT_EXCLUDED_SUBGRAPHS
    return excluded


def sample_distinct(django_settings: Any = settings) -> bool:
    return bool(_setting("SAMPLE_DISTINCT", False, django_settings))


def lex_error_policy(django_settings: Any = settings) -> str:
    policy = str(_setting("LEX_ERROR_POLICY", "raw", django_settings)).strip().lower()
    if policy not in LEX_ERROR_POLICIES:
        return "raw"
    return policy


def verify_query_ids(django_settings: Any = settings) -> bool:
    return bool(_setting("VERIFY_QUERY_IDS", True, django_settings))


def input_dialect(django_settings: Any = settings) -> str:
    dialect = str(_setting("INPUT_DIALECT", "auto", django_settings)).strip().lower()
    if dialect not in INPUT_DIALECTS:
        return "auto"
    return dialect


def trimmed_marker(django_settings: Any = settings) -> str:
    marker = _setting("TRIMMED_MARKER", DEFAULT_TRIMMED_MARKER, django_settings)
    return str(marker) if marker else DEFAULT_TRIMMED_MARKER
