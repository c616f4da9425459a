# src/testrecon/state.py

"""
Per-run state: outcomes, the run-result table, and the run state machine.
"""

from collections.abc import Iterable, Iterator
from enum import Enum, auto

import structlog
from attrs import define, field, mutable

from testrecon.nodes import DatasetVariant, Method, SourceLocation, TestNode
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("state")


class Outcome(Enum):
    """Outcome of a node within one run. Moves forward only."""

    UNSET = auto()
    RUNNING = auto()
    PASSED = auto()
    FAILED = auto()
    SKIPPED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_OUTCOMES


TERMINAL_OUTCOMES = frozenset({Outcome.PASSED, Outcome.FAILED, Outcome.SKIPPED})

OUTCOME_EMOJI_MAP = {
    Outcome.UNSET: "▫️",
    Outcome.RUNNING: "🔄",
    Outcome.PASSED: "✅",
    Outcome.FAILED: "❌",
    Outcome.SKIPPED: "⏭️",
}


class SourceOfTruth(Enum):
    """Where an outcome came from."""

    STREAMING = auto()  # Pattern match on live output.
    REPORT = auto()  # Structured post-run report.
    DEFAULT = auto()  # Not mentioned anywhere, sibling evidence says it ran.
    FATAL = auto()  # Aborted by a fatal runtime error.
    AGGREGATE = auto()  # Folded up from children.
    CONTROLLER = auto()  # Cancellation or timeout.


class RunState(Enum):
    """State machine of a single invocation."""

    IDLE = auto()
    SPAWNING = auto()
    STREAMING = auto()
    AWAITING_REPORT = auto()
    RECONCILING = auto()
    AGGREGATING = auto()
    PASSED = auto()
    FAILED = auto()
    CANCELLED = auto()
    TIMED_OUT = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.PASSED, RunState.FAILED, RunState.CANCELLED, RunState.TIMED_OUT)


@define(frozen=True, slots=True)
class OutcomeEvent:
    """A terminal outcome for one node, as published to the result sink."""

    node_id: str
    outcome: Outcome
    diagnostic: str = field(default="")
    location: SourceLocation | None = field(default=None)
    source: SourceOfTruth = field(default=SourceOfTruth.STREAMING)
    corrected: bool = field(default=False)

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASSED


# A final aggregated state has the same shape as an outcome event.
Verdict = OutcomeEvent


@mutable(slots=True)
class ResultEntry:
    """Mutable outcome record for one node during one run."""

    node_id: str = field()
    outcome: Outcome = field(default=Outcome.UNSET)
    diagnostic: str = field(default="")
    location: SourceLocation | None = field(default=None)
    source: SourceOfTruth | None = field(default=None)

    def to_event(self, corrected: bool = False) -> OutcomeEvent:
        return OutcomeEvent(
            node_id=self.node_id,
            outcome=self.outcome,
            diagnostic=self.diagnostic,
            location=self.location,
            source=self.source or SourceOfTruth.STREAMING,
            corrected=corrected,
        )


class RunResultTable:
    """
    Outcome records for every method and dataset variant in one run's scope.

    Entries are keyed by node id; all canonical-key variants of a name resolve
    to the same node, so they share one entry. A terminal entry is immutable
    for the run except through `correct`, which only the report reconciler
    calls.
    """

    def __init__(self, nodes: Iterable[Method | DatasetVariant]):
        self._entries: dict[str, ResultEntry] = {
            node.id: ResultEntry(node_id=node.id) for node in nodes
        }

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._entries

    def __getitem__(self, node_id: str) -> ResultEntry:
        return self._entries[node_id]

    def __iter__(self) -> Iterator[ResultEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, node_id: str) -> ResultEntry | None:
        return self._entries.get(node_id)

    def outcome_of(self, node: TestNode) -> Outcome:
        entry = self._entries.get(node.id)
        return entry.outcome if entry else Outcome.UNSET

    @property
    def has_terminal_outcomes(self) -> bool:
        return any(entry.outcome.is_terminal for entry in self._entries.values())

    def start(self, node_id: str) -> bool:
        """Moves an entry from UNSET to RUNNING."""
        entry = self._entries.get(node_id)
        if entry is None or entry.outcome is not Outcome.UNSET:
            return False
        entry.outcome = Outcome.RUNNING
        return True

    def record(
        self,
        node_id: str,
        outcome: Outcome,
        source: SourceOfTruth,
        diagnostic: str = "",
        location: SourceLocation | None = None,
    ) -> bool:
        """
        Records a terminal outcome for a node that has none yet.

        Returns False, leaving the entry untouched, when the node is unknown to
        this run or already terminal.
        """
        if not outcome.is_terminal:
            raise ValueError(f"Cannot record non-terminal outcome {outcome.name}")
        entry = self._entries.get(node_id)
        if entry is None:
            log.debug("Ignoring outcome for node outside run scope", node_id=node_id)
            return False
        if entry.outcome.is_terminal:
            return False
        entry.outcome = outcome
        entry.source = source
        entry.diagnostic = diagnostic
        entry.location = location
        return True

    def correct(
        self,
        node_id: str,
        outcome: Outcome,
        diagnostic: str = "",
        location: SourceLocation | None = None,
    ) -> bool:
        """
        Overwrites an entry with an authoritative report outcome.

        Returns True only when the stored outcome actually changed.
        """
        if not outcome.is_terminal:
            raise ValueError(f"Cannot correct to non-terminal outcome {outcome.name}")
        entry = self._entries.get(node_id)
        if entry is None or entry.outcome is outcome:
            return False
        old_outcome = entry.outcome
        entry.outcome = outcome
        entry.source = SourceOfTruth.REPORT
        entry.diagnostic = diagnostic
        entry.location = location
        log.debug(
            "Result entry corrected",
            node_id=node_id,
            old_outcome=old_outcome.name,
            new_outcome=outcome.name,
        )
        return True

    def skip_pending(self, diagnostic: str = "") -> list[str]:
        """Marks every non-terminal entry SKIPPED and returns their ids."""
        skipped = []
        for entry in self._entries.values():
            if entry.outcome.is_terminal:
                continue
            entry.outcome = Outcome.SKIPPED
            entry.source = SourceOfTruth.CONTROLLER
            entry.diagnostic = diagnostic
            skipped.append(entry.node_id)
        return skipped

# 🔼⚙️
