"""Stream helpers shared by the qlog management commands."""

from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import TextIO

from django.core.management.base import CommandError

STDIO = "-"


@contextmanager
def open_output(path: str | None, fallback: TextIO | None) -> Iterator[TextIO | None]:
    """Yield a writable stream for ``path``; ``-`` or None selects ``fallback``."""
    if path is None or path == STDIO:
        yield fallback
        return
    try:
        handle = open(path, "w", encoding="utf-8")
    except OSError as exc:
        raise CommandError(f"failed to open `{path}`: {exc}") from exc
    with handle:
        yield handle


def iter_input_lines(paths: Iterable[str]) -> Iterator[str]:
    """Yield the lines of every file in ``paths`` (stdin when empty or ``-``)."""
    paths = list(paths) or [STDIO]
    for path in paths:
        if path == STDIO:
            yield from sys.stdin
            continue
        try:
            handle = open(path, "r", encoding="utf-8", errors="replace")
        except OSError as exc:
            raise CommandError(f"could not read `{path}`: {exc}") from exc
        with handle:
            yield from handle


def read_summary_lines(path: str) -> list[str]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.readlines()
    except OSError as exc:
        raise CommandError(f"could not read summaries from {path}: {exc}") from exc
