from __future__ import annotations

from typing import Any

from django.core.management.base import BaseCommand

from qlog.stats import find_by_label, format_detail
from qlog.summary import read_summaries

from ._io import read_summary_lines

QUERY_HELP_TEXT = """\
For each query, print summary statistics of the query:

# subgraph:        subgraph id
# shape:           shape hash grouping the query's executions
# calls:           number of non-cached executions
# slow_count:      number of executions that took longer than the slow threshold
# slow_percent:    slow_count / calls * 100
# total_time:      total time the executions took
# avg_time:        total_time / calls
# stddev_time:     standard deviation of the execution times
# cached calls:    executions served from cache; not part of the other numbers
# max_time:        longest execution
# max_uuid:        query_id of the execution that took max_time
# max_variables:   variables passed to that execution
"""


class Command(BaseCommand):
    help = "Show details about specific queries, e.g. Q12."

    def add_arguments(self, parser) -> None:  # type: ignore[override]
        parser.epilog = QUERY_HELP_TEXT
        parser.add_argument("summary", help="Summary file written by 'process'.")
        parser.add_argument("queries", nargs="+", help="Query labels such as Q12.")

    def handle(self, *_: Any, **options: Any) -> None:
        accumulators = read_summaries(read_summary_lines(options["summary"]))
        printed = 0
        for label in options["queries"]:
            try:
                accumulator = find_by_label(accumulators, label)
            except ValueError:
                self.stderr.write(f"skipping invalid query identifier {label}")
                continue
            if accumulator is None:
                self.stderr.write(f"no query {label} in summary")
                continue
            if printed:
                self.stdout.write("")
            self.stdout.write(format_detail(accumulator))
            printed += 1
