# src/testrecon/runtime/sinks.py

"""
Result sinks: where raw output, outcome events and verdicts are delivered.
"""

from collections.abc import Mapping

import structlog
from attrs import field, mutable
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from testrecon.engine.classifier import Channel
from testrecon.exceptions import RunError
from testrecon.nodes import SourceLocation
from testrecon.protocols import ResultSink
from testrecon.runtime.output import OutputCleaner
from testrecon.state import OUTCOME_EMOJI_MAP, Outcome, OutcomeEvent, RunState, SourceOfTruth, Verdict
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("runtime.sinks")

OUTCOME_STYLE = {
    Outcome.PASSED: "green",
    Outcome.FAILED: "bold red",
    Outcome.SKIPPED: "yellow",
    Outcome.RUNNING: "cyan",
    Outcome.UNSET: "dim",
}


@mutable(slots=True)
class NodeState:
    """Displayed state of one node. Persists across runs."""

    node_id: str = field()
    outcome: Outcome = field(default=Outcome.UNSET)
    diagnostic: str = field(default="")
    location: SourceLocation | None = field(default=None)
    source: SourceOfTruth | None = field(default=None)
    updates: int = field(default=0)

    def apply(self, event: OutcomeEvent) -> None:
        self.outcome = event.outcome
        self.diagnostic = event.diagnostic
        self.location = event.location
        self.source = event.source
        self.updates += 1


class RecordingSink(ResultSink):
    """
    Keeps the latest state of every node it has heard about.

    A node that receives no event or verdict in a run keeps the state from
    the previous run.
    """

    def __init__(self) -> None:
        self.states: dict[str, NodeState] = {}
        self.output: list[tuple[Channel, str]] = []
        self.events: list[OutcomeEvent] = []
        self.errors: list[RunError] = []
        self.run_states: list[tuple[str, RunState]] = []

    def outcome_of(self, node_id: str) -> Outcome:
        state = self.states.get(node_id)
        return state.outcome if state else Outcome.UNSET

    def output_text(self) -> str:
        return "".join(text for _, text in self.output)

    def append_output(self, text: str, channel: Channel) -> None:
        self.output.append((channel, text))

    def on_outcome(self, event: OutcomeEvent) -> None:
        self.events.append(event)
        self._apply(event)

    def on_verdicts(self, verdicts: Mapping[str, Verdict]) -> None:
        for verdict in verdicts.values():
            self._apply(verdict)

    def on_run_state(self, target_id: str, state: RunState) -> None:
        self.run_states.append((target_id, state))

    def on_run_error(self, error: RunError) -> None:
        self.errors.append(error)

    def _apply(self, event: OutcomeEvent) -> None:
        state = self.states.get(event.node_id)
        if state is None:
            state = self.states[event.node_id] = NodeState(node_id=event.node_id)
        state.apply(event)


class ConsoleSink(RecordingSink):
    """Renders a run on a rich console."""

    def __init__(
        self,
        console: Console | None = None,
        clean_output: bool = True,
        show_output: bool = True,
    ) -> None:
        super().__init__()
        self.console = console or Console()
        self._cleaner = OutputCleaner() if clean_output else None
        self._show_output = show_output

    def append_output(self, text: str, channel: Channel) -> None:
        super().append_output(text, channel)
        if not self._show_output:
            return
        if self._cleaner is not None:
            text = self._cleaner.clean(text)
        if text:
            self.console.out(text, end="", highlight=False)

    def on_outcome(self, event: OutcomeEvent) -> None:
        super().on_outcome(event)
        suffix = " [dim](corrected from report)[/]" if event.corrected else ""
        style = OUTCOME_STYLE[event.outcome]
        self.console.print(
            f"{OUTCOME_EMOJI_MAP[event.outcome]} [{style}]{escape(event.node_id)}[/]{suffix}",
            highlight=False,
        )

    def on_run_state(self, target_id: str, state: RunState) -> None:
        super().on_run_state(target_id, state)
        if state.is_terminal and self._cleaner is not None:
            tail = self._cleaner.flush()
            if tail and self._show_output:
                self.console.out(tail, end="", highlight=False)
            self._cleaner = OutputCleaner()

    def on_verdicts(self, verdicts: Mapping[str, Verdict]) -> None:
        super().on_verdicts(verdicts)
        if not verdicts:
            return
        table = Table(title="Verdicts", show_lines=False)
        table.add_column("", width=2)
        table.add_column("Node")
        table.add_column("Outcome")
        table.add_column("Source", style="dim")
        table.add_column("Location", style="dim")
        for node_id in sorted(verdicts):
            verdict = verdicts[node_id]
            table.add_row(
                OUTCOME_EMOJI_MAP[verdict.outcome],
                escape(node_id),
                f"[{OUTCOME_STYLE[verdict.outcome]}]{verdict.outcome.name}[/]",
                verdict.source.name.lower(),
                escape(str(verdict.location)) if verdict.location else "",
            )
        self.console.print(table)

    def on_run_error(self, error: RunError) -> None:
        super().on_run_error(error)
        self.console.print(f"[bold red]Run error:[/] {escape(str(error))}")

# 🔼⚙️
