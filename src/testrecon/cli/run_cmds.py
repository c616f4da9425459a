# src/testrecon/cli/run_cmds.py

import asyncio
import logging
import signal
import sys
from pathlib import Path

import attrs
import click
import structlog
from rich.console import Console

from testrecon.cli.utils import (
    config_option,
    load_config_or_default,
    logging_options,
    setup_logging_from_context,
)
from testrecon.config import RunnerConfig
from testrecon.exceptions import ConfigurationError, InvocationError
from testrecon.nodes import TestTree
from testrecon.runtime.controller import RunController, RunSummary
from testrecon.runtime.invocation import TemplateInvocationBuilder
from testrecon.runtime.process import SubprocessExecutor
from testrecon.runtime.sinks import ConsoleSink
from testrecon.state import RunState
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("cli.run")

EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INVOCATION = 3  # The runner could not be started; no test was judged
EXIT_CANCELLED = 130  # Standard exit code for SIGINT


def _exit_code_for(summaries: list[RunSummary]) -> int:
    if any(summary.state is RunState.CANCELLED for summary in summaries):
        return EXIT_CANCELLED
    if any(isinstance(summary.error, InvocationError) for summary in summaries):
        return EXIT_INVOCATION
    if all(summary.passed for summary in summaries):
        return 0
    return EXIT_FAILED


async def _run_targets(controller: RunController, targets: list[str]) -> list[RunSummary]:
    """Runs targets with SIGINT/SIGTERM wired to the cancel event."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread.
            pass
    try:
        return await controller.run_many(targets, cancel_event)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)


@click.command(name="run")
@click.argument("targets", nargs=-1, required=True)
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
@config_option
@click.option("--command", "command_template", default=None, help="Command template (overrides config).")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path of the JUnit report the runner writes (overrides config).",
)
@click.option("--timeout", "timeout_seconds", type=float, default=None, help="Wall-clock bound per run, in seconds.")
@click.option(
    "--working-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory the runner is started in (overrides config).",
)
@click.option("--raw-output", is_flag=True, default=False, help="Show runner output without cleanup.")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Hide runner output; show outcomes only.")
@logging_options
@click.pass_context
def run_cli(
    ctx: click.Context,
    targets: tuple[str, ...],
    tree_path: Path,
    config_path: Path,
    command_template: str | None,
    report_path: Path | None,
    timeout_seconds: float | None,
    working_dir: Path | None,
    raw_output: bool,
    quiet: bool,
    **kwargs,
):
    """Run TARGETS (node ids) and reconcile their outcomes."""
    try:
        config = load_config_or_default(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: Configuration problem in '{config_path}':\n{e}", err=True)
        ctx.exit(EXIT_USAGE)

    setup_logging_from_context(
        ctx,
        local_log_level=kwargs.get("log_level") or ctx.obj.get("LOG_LEVEL") or config.global_config.log_level,
        local_log_file=kwargs.get("log_file"),
        local_json_logs=kwargs.get("json_logs"),
    )
    log.info("Executing 'run' command", targets=list(targets), tree=str(tree_path))

    overrides = {
        "command_template": command_template,
        "report_path": report_path,
        "timeout_seconds": timeout_seconds,
        "working_dir": working_dir,
    }
    try:
        runner_config: RunnerConfig = attrs.evolve(
            config.runner, **{k: v for k, v in overrides.items() if v is not None}
        )
        if not runner_config.command_template:
            raise ConfigurationError("No command template: set runner.command_template or pass --command")
        builder = TemplateInvocationBuilder(runner_config.command_template)
        tree = TestTree.from_json(tree_path)
    except (ConfigurationError, ValueError) as e:
        log.error("Cannot start run", error=str(e))
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_USAGE)

    unknown = [target for target in targets if target not in tree]
    if unknown:
        click.echo(f"Error: Unknown target(s): {', '.join(unknown)}", err=True)
        ctx.exit(EXIT_USAGE)

    sink = ConsoleSink(
        console=Console(),
        clean_output=runner_config.clean_output and not raw_output,
        show_output=not quiet,
    )
    controller = RunController(tree, SubprocessExecutor(), builder, sink, runner_config)

    try:
        summaries = asyncio.run(_run_targets(controller, list(targets)))
    except KeyboardInterrupt:
        log.warning("Run interrupted by KeyboardInterrupt (CTRL-C).")
        logging.shutdown()
        sys.exit(EXIT_CANCELLED)

    exit_code = _exit_code_for(summaries)
    log.info("'run' command finished.", exit_code=exit_code)
    logging.shutdown()
    if exit_code != 0:
        sys.exit(exit_code)

# 🔼⚙️
