"""Entry point for the ``qlog`` console script."""

from __future__ import annotations

import sys
from typing import Any

import django
from django.conf import settings
from django.core.management import execute_from_command_line

DEFAULT_LOGGING: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "qlog": {
            "()": "qlog.logging.ContextFormatter",
            "format": "%(levelname)s %(component)s: %(message)s",
        },
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "qlog",
        },
    },
    "loggers": {
        "qlog": {"handlers": ["stderr"], "level": "INFO", "propagate": False},
    },
}


def configure(**overrides: Any) -> None:
    """Configure minimal Django settings unless a project already did."""
    if not settings.configured:
        settings.configure(
            INSTALLED_APPS=["qlog"],
            LOGGING=DEFAULT_LOGGING,
            QLOG={},
            **overrides,
        )
    django.setup()


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    configure()
    execute_from_command_line(["qlog", *argv])


if __name__ == "__main__":  # pragma: no cover
    main()
