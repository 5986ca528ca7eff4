from __future__ import annotations

from typing import Any

from django.core.management.base import BaseCommand

from qlog.combine import Combiner
from qlog.summary import SummaryReader, write_summaries

from ._io import open_output, read_summary_lines


class Command(BaseCommand):
    help = "Combine multiple summary files into one."

    def add_arguments(self, parser) -> None:  # type: ignore[override]
        parser.add_argument("files", nargs="+", help="Summary files to combine.")
        parser.add_argument(
            "-o",
            "--output",
            default="-",
            help="Write the combined summary here (default: stdout).",
        )

    def handle(self, *_: Any, **options: Any) -> None:
        reader = SummaryReader()
        collections = [
            reader.read(read_summary_lines(path)) for path in options["files"]
        ]
        combiner = Combiner()
        merged = combiner.merge(collections)
        with open_output(options["output"], self.stdout) as out:
            write_summaries(merged.values(), out)
        if reader.skipped:
            self.stderr.write(f"Skipped {reader.skipped} invalid summary records")
        for anomaly in combiner.anomalies:
            self.stderr.write(f"warning: {anomaly}")
