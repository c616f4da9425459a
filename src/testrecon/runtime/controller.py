# src/testrecon/runtime/controller.py

"""
Owns one runner invocation from spawn to published verdicts.

    IDLE -> SPAWNING -> STREAMING -> AWAITING_REPORT -> RECONCILING
         -> AGGREGATING -> PASSED | FAILED

Cancellation and timeout leave STREAMING directly for CANCELLED / TIMED_OUT.
"""

import asyncio
import contextlib
import time
from collections.abc import Sequence
from itertools import count

import structlog
from attrs import define, field

from testrecon.config.models import RunnerConfig
from testrecon.engine.aggregator import AggregationResult, HierarchicalAggregator
from testrecon.engine.classifier import StreamingOutcomeClassifier, StreamOutcome
from testrecon.engine.fatal import FatalErrorExtractor, FatalErrorInfo
from testrecon.engine.name_index import CanonicalNameIndex
from testrecon.engine.report import CorrectionSet, ReportReconciler
from testrecon.exceptions import (
    InvocationError,
    RunCancelledError,
    RunError,
    RunTimeoutError,
)
from testrecon.nodes import TestNode, TestTree, iter_results_nodes
from testrecon.protocols import InvocationBuilder, ProcessExecutor, ProcessHandle, ResultSink
from testrecon.runtime.process import SHELL_COMMAND_NOT_FOUND
from testrecon.state import Outcome, RunResultTable, RunState, SourceOfTruth
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("runtime.controller")

# Filesystem mtime granularity can put a fresh report slightly before the spawn time.
STALE_REPORT_SLACK_SECONDS = 1.0
CANCELLED_DIAGNOSTIC = "Test run cancelled before this test reported."
TIMED_OUT_DIAGNOSTIC = "Test run timed out before this test reported."


@define(slots=True)
class RunSummary:
    """Everything one invocation produced."""

    target_id: str
    state: RunState
    table: RunResultTable
    exit_code: int | None = field(default=None)
    aggregation: AggregationResult | None = field(default=None)
    corrections: CorrectionSet | None = field(default=None)
    fatal_error: FatalErrorInfo | None = field(default=None)
    error: RunError | None = field(default=None)
    duration: float = field(default=0.0)

    @property
    def passed(self) -> bool:
        return self.state is RunState.PASSED


class RunController:
    """
    Sequences classifier -> reconciler -> aggregator around one process.

    Runs on one controller never overlap; a second call waits for the first.
    """

    def __init__(
        self,
        tree: TestTree,
        executor: ProcessExecutor,
        builder: InvocationBuilder,
        sink: ResultSink,
        config: RunnerConfig | None = None,
        extractor: FatalErrorExtractor | None = None,
    ):
        self._tree = tree
        self._executor = executor
        self._builder = builder
        self._sink = sink
        self._config = config or RunnerConfig()
        self._extractor = extractor or FatalErrorExtractor()
        self._aggregator = HierarchicalAggregator(tree)
        self._lock = asyncio.Lock()
        self._run_ids = count(1)
        self.state = RunState.IDLE
        self._log = log.bind(controller_id=id(self))

    def _transition(self, target_id: str, new_state: RunState) -> None:
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        self._log.debug("Run state changed", target_id=target_id, old_state=old_state.name, new_state=new_state.name)
        self._sink.on_run_state(target_id, new_state)

    # --- Public API ---

    async def run_many(
        self,
        target_ids: Sequence[str],
        cancel_event: asyncio.Event | None = None,
    ) -> list[RunSummary]:
        """Runs targets one after another; once cancelled, the rest are skipped."""
        summaries = []
        for target_id in target_ids:
            summaries.append(await self.run(target_id, cancel_event))
        return summaries

    async def run(self, target_id: str, cancel_event: asyncio.Event | None = None) -> RunSummary:
        """
        Executes one target and publishes its results to the sink.

        Run-level errors are reported to the sink and recorded on the
        summary, never raised.

        Raises:
            KeyError: if `target_id` is not in the tree.
        """
        target = self._tree[target_id]
        async with self._lock:
            run_log = self._log.bind(run_id=next(self._run_ids), target_id=target_id)
            self.state = RunState.IDLE
            started = time.monotonic()
            summary = await self._run(target, cancel_event, run_log)
            summary.duration = time.monotonic() - started
            run_log.info(
                "Test run finished",
                state=summary.state.name,
                exit_code=summary.exit_code,
                duration=round(summary.duration, 3),
                emoji_key="run",
            )
            return summary

    # --- Run sequence ---

    async def _run(
        self,
        target: TestNode,
        cancel_event: asyncio.Event | None,
        run_log: StructLogger,
    ) -> RunSummary:
        table = RunResultTable(iter_results_nodes(target))
        index = CanonicalNameIndex.build([target], self._tree)
        summary = RunSummary(target_id=target.id, state=RunState.IDLE, table=table)

        if cancel_event is not None and cancel_event.is_set():
            run_log.info("Run cancelled before spawning")
            return self._stop(summary, target, RunCancelledError(target.id), RunState.CANCELLED, CANCELLED_DIAGNOSTIC)

        self._transition(target.id, RunState.SPAWNING)
        report_path = self._config.resolved_report_path()
        command = self._builder.build_command(target.id, report_path=report_path)
        spawned_at = time.time()
        try:
            handle = await self._executor.spawn(command, self._config.working_dir)
        except InvocationError as e:
            run_log.error("Could not start test runner", error=str(e))
            return self._fail_invocation(summary, e)

        classifier = StreamingOutcomeClassifier(
            index,
            on_outcome=lambda outcome: self._record_stream_outcome(table, outcome),
            on_output=self._sink.append_output,
        )
        self._transition(target.id, RunState.STREAMING)
        stop_reason = await self._stream(handle, classifier, cancel_event, summary)
        classifier.flush()

        if stop_reason is RunState.CANCELLED:
            run_log.info("Run cancelled by user")
            return self._stop(summary, target, RunCancelledError(target.id), RunState.CANCELLED, CANCELLED_DIAGNOSTIC)
        if stop_reason is RunState.TIMED_OUT:
            run_log.warning("Run timed out", timeout_seconds=self._config.timeout_seconds)
            error = RunTimeoutError(self._config.timeout_seconds, target_id=target.id)
            return self._stop(summary, target, error, RunState.TIMED_OUT, TIMED_OUT_DIAGNOSTIC)

        if summary.exit_code == SHELL_COMMAND_NOT_FOUND and not table.has_terminal_outcomes:
            error = InvocationError(f"Test runner command not found: {command}", target_id=target.id)
            run_log.error("Test runner command not found", command=command)
            return self._fail_invocation(summary, error)

        self._transition(target.id, RunState.AWAITING_REPORT)
        not_before = spawned_at - STALE_REPORT_SLACK_SECONDS if self._config.ignore_stale_report else None
        reconciler = ReportReconciler(
            index,
            table,
            wait_seconds=self._config.report_wait_seconds,
            poll_interval=self._config.report_poll_interval,
        )
        summary.corrections = CorrectionSet()
        try:
            report_found = await reconciler.wait(report_path, not_before=not_before)
            self._transition(target.id, RunState.RECONCILING)
            if report_found:
                summary.corrections = await reconciler.load(report_path)
        except Exception:
            # Losing the report must never lose the streaming results.
            run_log.exception("Report reconciliation failed, keeping streaming results")
        for event in summary.corrections.events:
            self._sink.on_outcome(event)

        self._transition(target.id, RunState.AGGREGATING)
        summary.fatal_error = self._extractor.extract(classifier.combined_output())
        summary.aggregation = self._aggregator.aggregate([target], table, summary.fatal_error)
        self._sink.on_verdicts(summary.aggregation.verdicts)

        clean = (
            summary.exit_code == 0
            and summary.fatal_error is None
            and not summary.aggregation.has_failures
        )
        summary.state = RunState.PASSED if clean else RunState.FAILED
        self._transition(target.id, summary.state)
        return summary

    async def _stream(
        self,
        handle: ProcessHandle,
        classifier: StreamingOutcomeClassifier,
        cancel_event: asyncio.Event | None,
        summary: RunSummary,
    ) -> RunState | None:
        """Feeds chunks until exit; returns CANCELLED or TIMED_OUT if the run was cut short."""

        async def consume() -> int:
            async for chunk in handle.chunks():
                classifier.feed(chunk.data, chunk.channel)
            return await handle.wait()

        consume_task = asyncio.create_task(consume())
        cancel_task = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        waiting = {consume_task} | ({cancel_task} if cancel_task else set())
        try:
            done, _ = await asyncio.wait(
                waiting,
                timeout=self._config.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if consume_task in done:
            summary.exit_code = consume_task.result()
            return None

        handle.kill()
        consume_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consume_task
        summary.exit_code = await self._reap(handle)
        return RunState.CANCELLED if cancel_task is not None and cancel_task in done else RunState.TIMED_OUT

    async def _reap(self, handle: ProcessHandle) -> int | None:
        """Waits for a terminated runner, killing it outright once the grace period ends."""
        grace = self._config.kill_grace_seconds
        try:
            return await asyncio.wait_for(handle.wait(), grace)
        except asyncio.TimeoutError:
            self._log.warning("Runner ignored termination, killing it", grace_seconds=grace)
        handle.kill(force=True)
        try:
            return await asyncio.wait_for(handle.wait(), grace)
        except asyncio.TimeoutError:
            self._log.error("Runner did not exit after being killed", grace_seconds=grace)
            return None

    # --- Helpers ---

    def _record_stream_outcome(self, table: RunResultTable, outcome: StreamOutcome) -> None:
        node_id = outcome.node.id
        table.start(node_id)
        result = Outcome.PASSED if outcome.passed else Outcome.FAILED
        if table.record(node_id, result, SourceOfTruth.STREAMING, diagnostic=outcome.raw_line):
            self._sink.on_outcome(table[node_id].to_event())

    def _stop(
        self,
        summary: RunSummary,
        target: TestNode,
        error: RunError,
        state: RunState,
        diagnostic: str,
    ) -> RunSummary:
        """Cancellation or timeout: pending tests become SKIPPED, terminal ones stay."""
        for node_id in summary.table.skip_pending(diagnostic):
            self._sink.on_outcome(summary.table[node_id].to_event())
        summary.aggregation = self._aggregator.aggregate([target], summary.table)
        self._sink.on_verdicts(summary.aggregation.verdicts)
        summary.error = error
        summary.state = state
        self._sink.on_run_error(error)
        self._transition(target.id, state)
        return summary

    def _fail_invocation(self, summary: RunSummary, error: InvocationError) -> RunSummary:
        """No test is blamed for a runner that never started."""
        summary.error = error
        summary.state = RunState.FAILED
        self._sink.on_run_error(error)
        self._transition(summary.target_id, RunState.FAILED)
        return summary

# 🔼⚙️
