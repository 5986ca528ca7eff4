"""Structured logging helpers shared by every qlog component."""

from __future__ import annotations

import logging
from collections.abc import Mapping, MutableMapping
from typing import Any

__all__ = ["ContextFormatter", "QlogLoggerAdapter", "get_logger"]

_ROOT_LOGGER_NAME = "qlog"


class QlogLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that tags records with a component name and a context mapping.

    Callers pass structured details via ``context=``; they end up on the
    record's ``context`` attribute next to ``component``.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        context = kwargs.pop("context", None)
        if context is not None and not isinstance(context, Mapping):
            raise TypeError("context must be a mapping")

        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})

        merged: dict[str, Any] = {}
        existing = extra.get("context")
        if isinstance(existing, Mapping):
            merged.update(existing)
        if context:
            merged.update(context)
        extra["context"] = merged

        kwargs["extra"] = extra
        return msg, kwargs


class ContextFormatter(logging.Formatter):
    """Formatter that appends a record's ``context`` mapping as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "context", None)
        if not context:
            return message
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{message} [{pairs}]"


def get_logger(component: str | None = None) -> QlogLoggerAdapter:
    """
    Return a logger adapter for ``component`` under the ``qlog`` namespace.

    Parameters:
        component: Dotted component name, e.g. ``"parser"`` or ``"commands.process"``.

    Returns:
        QlogLoggerAdapter: Adapter whose records carry ``component`` and ``context``.
    """
    name = _ROOT_LOGGER_NAME if not component else f"{_ROOT_LOGGER_NAME}.{component}"
    return QlogLoggerAdapter(
        logging.getLogger(name), {"component": component or _ROOT_LOGGER_NAME}
    )
