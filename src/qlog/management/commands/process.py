"""Summarize a query log and optionally sample its queries."""

from __future__ import annotations

import json
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from qlog import conf
from qlog.aggregate import Aggregator
from qlog.parser import LineParser
from qlog.pipeline import QueryLogProcessor
from qlog.sampler import Sampler, iter_sample_records
from qlog.summary import write_summaries

from ._io import iter_input_lines, open_output

DEFAULT_SAMPLE_FILE = "/var/tmp/samples.jsonl"


class Command(BaseCommand):
    help = "Process a query log (plain, wrapped or JSONL) and write a summary."

    def add_arguments(self, parser) -> None:  # type: ignore[override]
        parser.add_argument(
            "inputs",
            nargs="*",
            help="Log files to read; stdin when omitted or '-'.",
        )
        parser.add_argument(
            "-g",
            "--graphql",
            default="-",
            help="Write the GraphQL summary to this file (default: stdout).",
        )
        parser.add_argument(
            "--samples",
            type=int,
            default=None,
            help="Number of queries to sample per subgraph (default: QLOG SAMPLE_SIZE).",
        )
        parser.add_argument(
            "--sample-file",
            default=DEFAULT_SAMPLE_FILE,
            help=f"Where to write samples (default: {DEFAULT_SAMPLE_FILE}).",
        )
        parser.add_argument(
            "--sample-subgraphs",
            default=None,
            help="Comma-separated list of subgraphs to sample.",
        )
        parser.add_argument(
            "--dialect",
            choices=sorted(conf.INPUT_DIALECTS),
            default=None,
            help="Input dialect; detected per line by default.",
        )
        parser.add_argument(
            "-e",
            "--extra",
            action="store_true",
            help="Report lines that are not recognized as queries.",
        )

    def handle(self, *_: Any, **options: Any) -> None:
        samples = options["samples"]
        if samples is not None and samples < 0:
            raise CommandError("--samples must be >= 0.")
        subgraphs = None
        if options["sample_subgraphs"]:
            subgraphs = [
                name.strip()
                for name in options["sample_subgraphs"].split(",")
                if name.strip()
            ]
        sampler = Sampler(capacity=samples, subgraphs=subgraphs)
        if sampler.enabled:
            self.stderr.write(
                f"Taking {sampler.capacity} samples and writing them to "
                f"{options['sample_file']}"
            )
            if sampler.subgraphs is None:
                self.stderr.write("  sampling all subgraphs")
            else:
                self.stderr.write("  sampling these subgraphs")
                for subgraph in sorted(sampler.subgraphs):
                    self.stderr.write(f"    {subgraph}")

        processor = QueryLogProcessor(
            LineParser(dialect=options["dialect"]),
            Aggregator(),
            sampler,
            report_unrecognized=options["extra"],
        )
        processor.feed_all(iter_input_lines(options["inputs"]))
        result = processor.finish()

        with open_output(options["graphql"], self.stdout) as out:
            write_summaries(result.summaries.values(), out)
        if sampler.enabled:
            with open_output(options["sample_file"], self.stdout) as out:
                for record in iter_sample_records(result.samples):
                    out.write(json.dumps(record, separators=(",", ":")) + "\n")

        stats = result.stats
        self.stderr.write(
            f"Processed {stats.queries} GraphQL queries and {stats.summaries} "
            f"summary records from {stats.lines} lines in {stats.elapsed:.3f}s "
            f"({stats.skipped} skipped, {stats.ignored} ignored)"
        )
        for anomaly in result.anomalies:
            self.stderr.write(f"warning: {anomaly}")
