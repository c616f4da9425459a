# tests/unit/test_controller.py

"""Unit tests for the RunController state machine."""

import asyncio
import os
import signal
import time
from unittest.mock import AsyncMock, patch

import attrs
import pytest

from testrecon.config import RunnerConfig
from testrecon.engine.report import ReportReconciler
from testrecon.exceptions import InvocationError, RunCancelledError, RunTimeoutError
from testrecon.nodes import TestTree
from testrecon.runtime.controller import RunController
from testrecon.runtime.invocation import TemplateInvocationBuilder
from testrecon.runtime.process import SubprocessExecutor
from testrecon.runtime.sinks import RecordingSink
from testrecon.state import Outcome, RunState, SourceOfTruth

LOGIN = "unit:LoginTest.php"
CART = "unit:CartTest.php"
SIGNUP = "acceptance:SignupCest.php"

HAPPY_PATH = [
    RunState.SPAWNING,
    RunState.STREAMING,
    RunState.AWAITING_REPORT,
    RunState.RECONCILING,
    RunState.AGGREGATING,
]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_controller(tree: TestTree, sink: RecordingSink, runner_config: RunnerConfig):
    def _make(executor, config: RunnerConfig | None = None) -> RunController:
        config = config or runner_config
        return RunController(tree, executor, TemplateInvocationBuilder(config.command_template), sink, config)

    return _make


@pytest.mark.asyncio
class TestNormalRuns:
    async def test_passing_file_run(self, make_controller, make_executor, make_handle, out, sink, runner_config) -> None:
        executor = make_executor(make_handle([out.stdout("✔ testLogin\n✔ test"), out.stdout("Logout\n")]))
        controller = make_controller(executor)

        summary = await controller.run(LOGIN)

        assert summary.state is RunState.PASSED
        assert summary.passed
        assert summary.exit_code == 0
        assert summary.error is None
        assert controller.state is RunState.PASSED
        assert [state for _, state in sink.run_states] == [*HAPPY_PATH, RunState.PASSED]
        assert executor.commands == [f"runner unit LoginTest.php --xml {runner_config.report_path}"]
        assert sink.outcome_of(f"{LOGIN}::testLogin") is Outcome.PASSED
        assert sink.outcome_of(f"{LOGIN}::testRemember#0") is Outcome.PASSED
        assert sink.outcome_of(LOGIN) is Outcome.PASSED
        assert "✔ testLogin" in sink.output_text()

    async def test_failing_stream_line(self, make_controller, make_executor, make_handle, out, sink) -> None:
        executor = make_executor(make_handle([out.stdout("✓ testLogin\n✗ testLogout\n")], exit_code=1))

        summary = await make_controller(executor).run("unit")

        assert summary.state is RunState.FAILED
        assert sink.outcome_of(f"{LOGIN}::testLogin") is Outcome.PASSED
        assert sink.outcome_of(f"{LOGIN}::testLogout") is Outcome.FAILED
        assert sink.outcome_of(LOGIN) is Outcome.FAILED
        assert sink.outcome_of("unit") is Outcome.FAILED
        assert sink.outcome_of(CART) is Outcome.UNSET

    async def test_report_corrects_streaming_outcome(
        self, make_controller, make_executor, make_handle, out, sink, runner_config
    ) -> None:
        report = '<testsuite name="CartTest"><testcase name="testAdd"/><testcase name="testRemove"/></testsuite>'
        executor = make_executor(
            make_handle([out.stdout("testAdd: FAILED\ntestRemove: OK\n")]),
            report_xml=report,
            report_path=runner_config.report_path,
        )

        summary = await make_controller(executor).run(CART)

        assert summary.state is RunState.PASSED
        assert summary.corrections.report_found
        assert [state for _, state in sink.run_states] == [*HAPPY_PATH, RunState.PASSED]
        events = [(e.node_id, e.outcome, e.corrected) for e in sink.events]
        assert events == [
            (f"{CART}::testAdd", Outcome.FAILED, False),
            (f"{CART}::testRemove", Outcome.PASSED, False),
            (f"{CART}::testAdd", Outcome.PASSED, True),
        ]
        assert sink.states[f"{CART}::testAdd"].source is SourceOfTruth.REPORT
        assert sink.outcome_of(CART) is Outcome.PASSED

    async def test_report_wait_runs_while_awaiting_report(
        self, make_controller, make_executor, make_handle, out, sink
    ) -> None:
        controller = make_controller(make_executor(make_handle([out.stdout("testAdd: OK\n")])))
        states_during_wait = []

        async def wait(self, report_path, not_before=None) -> bool:
            states_during_wait.append(controller.state)
            return False

        with patch.object(ReportReconciler, "wait", wait):
            summary = await controller.run(CART)

        assert states_during_wait == [RunState.AWAITING_REPORT]
        assert not summary.corrections.report_found
        assert [state for _, state in sink.run_states] == [*HAPPY_PATH, RunState.PASSED]

    async def test_stale_report_is_not_used(
        self, make_controller, make_executor, make_handle, out, sink, runner_config
    ) -> None:
        runner_config.report_path.write_text('<testsuite><testcase name="testAdd"><failure/></testcase></testsuite>')
        old = time.time() - 3600
        os.utime(runner_config.report_path, (old, old))
        executor = make_executor(make_handle([out.stdout("testAdd: OK\n")]))

        summary = await make_controller(executor).run(CART)

        assert not summary.corrections.report_found
        assert sink.outcome_of(f"{CART}::testAdd") is Outcome.PASSED

    async def test_reconciliation_crash_keeps_streaming_results(
        self, make_controller, make_executor, make_handle, out, sink
    ) -> None:
        executor = make_executor(make_handle([out.stdout("testAdd: OK\n")]))
        with patch(
            "testrecon.runtime.controller.ReportReconciler.wait",
            new=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            summary = await make_controller(executor).run(CART)

        assert summary.state is RunState.PASSED
        assert len(summary.corrections) == 0
        assert sink.outcome_of(f"{CART}::testAdd") is Outcome.PASSED

    async def test_nonzero_exit_without_failures_fails_the_run(
        self, make_controller, make_executor, make_handle, out
    ) -> None:
        executor = make_executor(make_handle([out.stdout("testAdd: OK\ntestRemove: OK\n")], exit_code=2))
        summary = await make_controller(executor).run(CART)
        assert summary.state is RunState.FAILED
        assert summary.exit_code == 2

    async def test_fatal_error_before_any_test(self, make_controller, make_executor, make_handle, out, sink) -> None:
        fatal = 'PHP Fatal error:  Trait "Loggable" not found in /app/tests/unit/LoginTest.php on line 3\n'
        executor = make_executor(make_handle([out.stderr(fatal)], exit_code=255))

        summary = await make_controller(executor).run("unit")

        assert summary.state is RunState.FAILED
        assert summary.fatal_error.line == 3
        assert summary.aggregation.early_abort
        assert sink.outcome_of(f"{LOGIN}::testLogin") is Outcome.FAILED
        assert sink.states[f"{LOGIN}::testLogin"].source is SourceOfTruth.FATAL
        assert sink.outcome_of(LOGIN) is Outcome.FAILED
        assert f"{CART}::testAdd" not in sink.states
        assert CART not in sink.states

    async def test_unknown_target(self, make_controller, make_executor) -> None:
        with pytest.raises(KeyError):
            await make_controller(make_executor()).run("unit:Nope.php")


@pytest.mark.asyncio
class TestRunErrors:
    async def test_spawn_failure_is_an_invocation_error(self, make_controller, failing_executor, sink) -> None:
        summary = await make_controller(failing_executor).run(CART)

        assert summary.state is RunState.FAILED
        assert isinstance(summary.error, InvocationError)
        assert sink.errors == [summary.error]
        assert [state for _, state in sink.run_states] == [RunState.SPAWNING, RunState.FAILED]
        # No test is blamed.
        assert sink.states == {}

    async def test_command_not_found_is_an_invocation_error(
        self, make_controller, make_executor, make_handle, out, sink
    ) -> None:
        executor = make_executor(make_handle([out.stderr("sh: 1: runner: not found\n")], exit_code=127))

        summary = await make_controller(executor).run(CART)

        assert summary.state is RunState.FAILED
        assert isinstance(summary.error, InvocationError)
        assert sink.states == {}

    async def test_cancellation_skips_pending_tests(
        self, make_controller, make_executor, make_handle, out, sink, runner_config
    ) -> None:
        handle = make_handle([out.stdout("✔ testAdd\n")], block=True)
        # A report on disk must not be consulted after cancellation.
        report = '<testsuite><testcase name="testAdd"><failure>late</failure></testcase></testsuite>'
        executor = make_executor(handle, report_xml=report, report_path=runner_config.report_path)
        cancel_event = asyncio.Event()

        run_task = asyncio.create_task(make_controller(executor).run(CART, cancel_event))
        await asyncio.wait_for(handle.chunks_delivered.wait(), 1)
        cancel_event.set()
        summary = await asyncio.wait_for(run_task, 1)

        assert summary.state is RunState.CANCELLED
        assert handle.killed
        assert isinstance(summary.error, RunCancelledError)
        assert sink.errors == [summary.error]
        assert sink.outcome_of(f"{CART}::testAdd") is Outcome.PASSED
        assert sink.outcome_of(f"{CART}::testRemove") is Outcome.SKIPPED
        assert sink.run_states[-1] == (CART, RunState.CANCELLED)
        assert RunState.RECONCILING not in [state for _, state in sink.run_states]

    async def test_timeout_kills_the_process(
        self, make_controller, make_executor, make_handle, out, sink, runner_config
    ) -> None:
        handle = make_handle([out.stdout("testRemove: FAILED\n")], block=True)
        config = attrs.evolve(runner_config, timeout_seconds=0.05)

        summary = await asyncio.wait_for(make_controller(make_executor(handle), config).run(CART), 2)

        assert summary.state is RunState.TIMED_OUT
        assert handle.killed
        assert summary.exit_code == handle.KILLED_EXIT_CODE
        assert isinstance(summary.error, RunTimeoutError)
        assert summary.error.timeout_seconds == 0.05
        assert sink.outcome_of(f"{CART}::testRemove") is Outcome.FAILED
        assert sink.outcome_of(f"{CART}::testAdd") is Outcome.SKIPPED
        assert sink.outcome_of(CART) is Outcome.FAILED

    async def test_runner_ignoring_termination_is_killed_outright(
        self, make_controller, make_executor, make_handle, out, sink, runner_config
    ) -> None:
        handle = make_handle([out.stdout("testAdd: OK\n")], block=True, ignore_terminate=True)
        config = attrs.evolve(runner_config, timeout_seconds=0.05, kill_grace_seconds=0.05)

        summary = await asyncio.wait_for(make_controller(make_executor(handle), config).run(CART), 2)

        assert summary.state is RunState.TIMED_OUT
        assert handle.kill_count == 2
        assert handle.forced
        assert summary.exit_code == handle.FORCE_KILLED_EXIT_CODE
        assert sink.outcome_of(f"{CART}::testRemove") is Outcome.SKIPPED

    async def test_cancelled_before_spawn(
self, make_controller, make_executor, sink) -> None:
        executor = make_executor()
        cancel_event = asyncio.Event()
        cancel_event.set()

        summary = await make_controller(executor).run(CART, cancel_event)

        assert summary.state is RunState.CANCELLED
        assert executor.commands == []
        assert sink.outcome_of(f"{CART}::testAdd") is Outcome.SKIPPED
        assert sink.run_states == [(CART, RunState.CANCELLED)]


@pytest.mark.asyncio
class TestMultipleRuns:
    async def test_run_many_runs_targets_in_order(self, make_controller, make_executor, make_handle, out) -> None:
        executor = make_executor(make_handle([out.stdout("testAdd: OK\nok 1 - signUp\n")]))

        summaries = await make_controller(executor).run_many([CART, SIGNUP])

        assert [s.target_id for s in summaries] == [CART, SIGNUP]
        assert len(executor.commands) == 2
        assert executor.commands[1].startswith("runner acceptance SignupCest.php")

    async def test_run_many_after_cancellation(self, make_controller, make_executor) -> None:
        executor = make_executor()
        cancel_event = asyncio.Event()
        cancel_event.set()

        summaries = await make_controller(executor).run_many([CART, SIGNUP], cancel_event)

        assert [s.state for s in summaries] == [RunState.CANCELLED, RunState.CANCELLED]
        assert executor.commands == []

    async def test_untouched_nodes_keep_prior_state(self, make_controller, make_executor, make_handle, out, sink) -> None:
        await make_controller(make_executor(make_handle([out.stdout("ok 1 - signUp\nok 2 - signIn\n")]))).run(SIGNUP)
        assert sink.outcome_of(SIGNUP) is Outcome.PASSED

        await make_controller(make_executor(make_handle([out.stdout("testAdd: FAILED\n")], exit_code=1))).run(CART)

        assert sink.outcome_of(SIGNUP) is Outcome.PASSED
        assert sink.outcome_of(f"{SIGNUP}::signIn") is Outcome.PASSED
        assert sink.outcome_of(CART) is Outcome.FAILED

    async def test_concurrent_runs_do_not_overlap(self, make_controller, make_executor, make_handle, out, sink) -> None:
        controller = make_controller(make_executor(make_handle([out.stdout("testAdd: OK\n")])))

        await asyncio.gather(controller.run(CART), controller.run(SIGNUP))

        targets = [target for target, _ in sink.run_states]
        first = targets[0]
        switch = targets.index(SIGNUP if first == CART else CART)
        assert all(t == first for t in targets[:switch])
        assert sink.run_states[switch - 1][1].is_terminal


@pytest.mark.asyncio
@pytest.mark.skipif(os.name != "posix", reason="requires a POSIX shell")
class TestShellRunner:
    async def test_timeout_kills_runner_that_traps_termination(self, tree, sink, runner_config) -> None:
        pid_file = runner_config.working_dir / "runner.pid"
        template = "echo $$ > runner.pid; trap '' TERM; while true; do sleep 0.1; done"
        config = attrs.evolve(
            runner_config, command_template=template, timeout_seconds=0.5, kill_grace_seconds=0.5
        )
        controller = RunController(tree, SubprocessExecutor(), TemplateInvocationBuilder(template), sink, config)

        summary = await asyncio.wait_for(controller.run(CART), 5)

        assert summary.state is RunState.TIMED_OUT
        assert summary.exit_code == -signal.SIGKILL
        pid = int(pid_file.read_text().strip())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
