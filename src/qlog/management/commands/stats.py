from __future__ import annotations

from typing import Any

from django.core.management.base import BaseCommand

from qlog.stats import format_detail, format_table, sort_accumulators
from qlog.summary import read_summaries

from ._io import read_summary_lines


class Command(BaseCommand):
    help = "Show statistics for a summary file."

    def add_arguments(self, parser) -> None:  # type: ignore[override]
        parser.add_argument("summary", help="Summary file written by 'process'.")
        parser.add_argument(
            "--sort",
            default="total_time",
            help="Sort by calls, avg, max_time, slow_count, uuid or total_time.",
        )
        parser.add_argument(
            "-f",
            "--full",
            action="store_true",
            help="Print full query details instead of the table.",
        )

    def handle(self, *_: Any, **options: Any) -> None:
        accumulators = sort_accumulators(
            read_summaries(read_summary_lines(options["summary"])), options["sort"]
        )
        if options["full"]:
            self.stdout.write("\n\n".join(format_detail(acc) for acc in accumulators))
        else:
            self.stdout.write(format_table(accumulators))
