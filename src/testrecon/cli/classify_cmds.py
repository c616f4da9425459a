# src/testrecon/cli/classify_cmds.py

"""
Offline replay: feeds captured runner output (and optionally its report)
through the engine, without spawning anything.
"""

from pathlib import Path

import click
import structlog
from rich.console import Console

from testrecon.cli.utils import logging_options, setup_logging_from_context
from testrecon.engine import (
    CanonicalNameIndex,
    FatalErrorExtractor,
    HierarchicalAggregator,
    ReportReconciler,
    StreamingOutcomeClassifier,
    parse_junit_report,
)
from testrecon.exceptions import TestReconError
from testrecon.nodes import TestTree, iter_results_nodes
from testrecon.runtime.sinks import ConsoleSink
from testrecon.state import Outcome, RunResultTable, SourceOfTruth
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("cli.classify")


@click.command(name="classify")
@click.argument(
    "output_file",
    type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path),
)
@click.option(
    "-t",
    "--tree",
    "tree_path",
    type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path),
    required=True,
    envvar="TESTRECON_TREE",
    show_envvar=True,
    help="JSON manifest of the declared test tree.",
)
@click.option("--target", default=None, help="Node id the output belongs to (default: the whole tree).")
@click.option(
    "--report",
    "report_path",
    type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path),
    default=None,
    help="JUnit report captured from the same run.",
)
@logging_options
@click.pass_context
def classify_cli(
    ctx: click.Context,
    output_file: Path,
    tree_path: Path,
    target: str | None,
    report_path: Path | None,
    **kwargs,
):
    """Classify captured runner output in OUTPUT_FILE."""
    setup_logging_from_context(
        ctx,
        local_log_level=kwargs.get("log_level"),
        local_log_file=kwargs.get("log_file"),
        local_json_logs=kwargs.get("json_logs"),
    )
    log.info("Executing 'classify' command", output_file=str(output_file), target=target)

    try:
        tree = TestTree.from_json(tree_path)
    except TestReconError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(2)
    if target is not None and target not in tree:
        click.echo(f"Error: Unknown target: {target}", err=True)
        ctx.exit(2)
    roots = [tree[target]] if target is not None else list(tree.suites)

    sink = ConsoleSink(console=Console(), show_output=False)
    table = RunResultTable(node for root in roots for node in iter_results_nodes(root))
    index = CanonicalNameIndex.build(roots, tree)

    def record(outcome):
        node_id = outcome.node.id
        table.start(node_id)
        result = Outcome.PASSED if outcome.passed else Outcome.FAILED
        if table.record(node_id, result, SourceOfTruth.STREAMING, diagnostic=outcome.raw_line):
            sink.on_outcome(table[node_id].to_event())

    classifier = StreamingOutcomeClassifier(index, on_outcome=record)
    classifier.feed(output_file.read_bytes())
    classifier.flush()

    if report_path is not None:
        try:
            entries = parse_junit_report(report_path.read_text(encoding="utf-8", errors="replace"))
        except TestReconError as e:
            log.warning("Ignoring malformed report", report_path=str(report_path), error=str(e))
        else:
            for event in ReportReconciler(index, table).apply(entries).events:
                sink.on_outcome(event)

    fatal_error = FatalErrorExtractor().extract(classifier.combined_output())
    if fatal_error is not None:
        sink.console.print(f"[bold red]Fatal error:[/] {fatal_error.message} ({fatal_error.location or 'unknown location'})")
    aggregation = HierarchicalAggregator(tree).aggregate(roots, table, fatal_error)
    sink.on_verdicts(aggregation.verdicts)

    if classifier.unmatched:
        log.info("Identifiers that matched no declared test", identifiers=sorted(classifier.unmatched))
    if aggregation.has_failures:
        ctx.exit(1)

# 🔼⚙️
