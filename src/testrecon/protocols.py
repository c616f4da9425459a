#
# src/testrecon/protocols.py
#
"""
Defines the protocols for the collaborators the run controller depends on.

How commands are built, how processes are transported (locally, in a
container, remotely) and how results are displayed all live behind these
interfaces.
"""
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from attrs import define

from testrecon.engine.classifier import Channel
from testrecon.exceptions import RunError
from testrecon.state import OutcomeEvent, RunState, Verdict


@define(frozen=True, slots=True)
class OutputChunk:
    """One delivery of raw bytes from a process channel."""
    channel: Channel
    data: bytes


@runtime_checkable
class ProcessHandle(Protocol):
    """A spawned runner process."""

    def chunks(self) -> AsyncIterator[OutputChunk]:
        """
        Yields output chunks as they arrive, FIFO per channel.

        The iterator ends once both channels are closed.
        """
        ...

    async def wait(self) -> int:
        """Waits for the process to exit and returns its exit code."""
        ...

    def kill(self, force: bool = False) -> None:
        """
        Asks the process to terminate; `force` kills it outright.

        Safe to call after exit.
        """
        ...


@runtime_checkable
class ProcessExecutor(Protocol):
    """Spawns runner processes, locally or through some transport."""

    async def spawn(self, command: str, cwd: Path) -> ProcessHandle:
        """
        Starts `command` in `cwd`.

        Raises:
            InvocationError: if the process could not be started.
        """
        ...


@runtime_checkable
class InvocationBuilder(Protocol):
    """Builds the opaque command string for one run target."""

    def build_command(
        self,
        target_id: str,
        report_path: Path | None = None,
        coverage_path: Path | None = None,
    ) -> str:
        ...


@runtime_checkable
class ResultSink(Protocol):
    """Receives everything a host UI needs to display a run."""

    def append_output(self, text: str, channel: Channel) -> None:
        """Raw runner output, verbatim."""
        ...

    def on_outcome(self, event: OutcomeEvent) -> None:
        """A streaming or reconciled outcome for one node."""
        ...

    def on_verdicts(self, verdicts: Mapping[str, Verdict]) -> None:
        """Final verdicts; nodes absent from the mapping keep their previous state."""
        ...

    def on_run_state(self, target_id: str, state: RunState) -> None:
        ...

    def on_run_error(self, error: RunError) -> None:
        """A run-level condition that is not a test failure."""
        ...

# 🔼⚙️
