from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from qlog.extract import PayloadExtractor
from qlog.parser import LineParser

from ._io import STDIO, open_output


class Command(BaseCommand):
    help = (
        "Read cloud logging exports and write each entry's text payload to the "
        "GraphQL or SQL output."
    )

    def add_arguments(self, parser) -> None:  # type: ignore[override]
        parser.add_argument(
            "source", help="Directory of *.json log exports, a single file, or '-'."
        )
        parser.add_argument(
            "-g",
            "--graphql",
            default="-",
            help="Write GraphQL timing lines to this file (default: stdout).",
        )
        parser.add_argument(
            "-s", "--sql", default=None, help="Write SQL timing lines to this file."
        )
        parser.add_argument(
            "--other", default=None, help="Write all remaining payloads to this file."
        )
        parser.add_argument(
            "--jsonl",
            action="store_true",
            help="Write GraphQL entries as per-query JSONL records instead of raw lines.",
        )

    def handle(self, *_: Any, **options: Any) -> None:
        source = options["source"]
        verbose = options["verbosity"] >= 2
        with (
            open_output(options["graphql"], self.stdout) as graphql,
            open_output(options["sql"], None) as sql,
            open_output(options["other"], None) as other,
        ):
            line_parser = LineParser(dialect="wrapped") if options["jsonl"] else None
            extractor = PayloadExtractor(graphql, sql, other, parser=line_parser)
            if source == STDIO:
                counts = extractor.extract(sys.stdin)
            else:
                root = Path(source)
                if not root.exists():
                    raise CommandError(f"extract: {source} does not exist")
                counts = extractor.extract_path(root, verbose=verbose)
        self.stderr.write(
            f"Skipped {counts.trimmed} trimmed lines out of {counts.lines} lines "
            f"({counts.graphql} GraphQL, {counts.sql} SQL, {counts.other} other, "
            f"{counts.invalid} invalid)"
        )
        if counts.unparsed:
            self.stderr.write(f"Skipped {counts.unparsed} unparsable GraphQL entries")
