# src/testrecon/engine/aggregator.py

"""
Folds leaf outcomes into File and Suite verdicts.

Only nodes that receive a verdict are touched; anything without one keeps
whatever state it had before the run. Absence of evidence is never turned
into a pass or a failure, except for the one sanctioned default: inside a
File that demonstrably executed and had no failures, an unmentioned method
is assumed to have passed, because the runner only prints failures in
detail.
"""

from collections.abc import Iterable, Sequence

import structlog
from attrs import define, field

from testrecon.engine.fatal import FatalErrorInfo
from testrecon.nodes import (
    DatasetVariant,
    File,
    Method,
    Suite,
    TestNode,
    TestTree,
    iter_results_nodes,
)
from testrecon.state import Outcome, RunResultTable, SourceOfTruth, Verdict
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("engine.aggregator")

FATAL_ABORT_DIAGNOSTIC = "Execution aborted by fatal error."
DEFAULT_PASS_DIAGNOSTIC = "Not reported by the runner; assumed passed."


@define(slots=True)
class _Fold:
    """Leaf counts for one container after defaults were applied."""

    declared: int = 0
    passed: int = 0
    failed: int = 0
    failing_names: list[str] = field(factory=list)

    def add(self, other: "_Fold") -> None:
        self.declared += other.declared
        self.passed += other.passed
        self.failed += other.failed
        self.failing_names.extend(other.failing_names)

    @property
    def complete_and_passed(self) -> bool:
        return self.declared > 0 and self.passed == self.declared


@define(slots=True)
class AggregationResult:
    verdicts: dict[str, Verdict] = field(factory=dict)
    early_abort: bool = field(default=False)
    fatal_error: FatalErrorInfo | None = field(default=None)

    def outcome_of(self, node_id: str) -> Outcome:
        verdict = self.verdicts.get(node_id)
        return verdict.outcome if verdict else Outcome.UNSET

    @property
    def has_failures(self) -> bool:
        return any(v.outcome is Outcome.FAILED for v in self.verdicts.values())


class HierarchicalAggregator:
    """Derives verdicts for every File and Suite in a run's scope."""

    def __init__(self, tree: TestTree):
        self._tree = tree

    def aggregate(
        self,
        roots: Sequence[TestNode],
        table: RunResultTable,
        fatal_error: FatalErrorInfo | None = None,
    ) -> AggregationResult:
        result = AggregationResult(fatal_error=fatal_error)
        result.early_abort = fatal_error is not None and not table.has_terminal_outcomes

        if result.early_abort:
            log.warning(
                "Fatal error before any test reported; only the failing file is marked",
                fatal_file=fatal_error.file if fatal_error else None,
            )
            for root in roots:
                self._mark_aborted_files(root, fatal_error, result)  # type: ignore[arg-type]
        else:
            for root in roots:
                self._fold(root, table, fatal_error, result)

        self._propagate_to_ancestors(roots, result)
        log.debug(
            "Aggregation complete",
            verdicts=len(result.verdicts),
            early_abort=result.early_abort,
            failed=sum(1 for v in result.verdicts.values() if v.outcome is Outcome.FAILED),
        )
        return result

    # --- Early-abort mode ---

    def _mark_aborted_files(self, node: TestNode, fatal: FatalErrorInfo, result: AggregationResult) -> None:
        if isinstance(node, Suite):
            for file in node.files:
                self._mark_aborted_files(file, fatal, result)
            if any(result.outcome_of(file.id) is Outcome.FAILED for file in node.files):
                result.verdicts[node.id] = self._container_failure(node, fatal, [])
        elif isinstance(node, File):
            if not node.methods or not fatal.matches_file(node.location.file if node.location else None):
                return
            diagnostic = f"{FATAL_ABORT_DIAGNOSTIC}\n{fatal.message}"
            for result_node in iter_results_nodes(node):
                result.verdicts[result_node.id] = Verdict(
                    node_id=result_node.id,
                    outcome=Outcome.FAILED,
                    diagnostic=diagnostic,
                    location=fatal.location,
                    source=SourceOfTruth.FATAL,
                )
            result.verdicts[node.id] = self._container_failure(node, fatal, [])
        elif isinstance(node, (Method, DatasetVariant)):
            # A method-level target has no file of its own to scope the abort to.
            return
        else:
            raise TypeError(f"Unknown test node type: {type(node).__name__}")

    # --- Normal mode ---

    def _fold(
        self,
        node: TestNode,
        table: RunResultTable,
        fatal: FatalErrorInfo | None,
        result: AggregationResult,
    ) -> _Fold:
        if isinstance(node, Suite):
            fold = _Fold()
            any_file_failed = False
            for file in node.files:
                fold.add(self._fold(file, table, fatal, result))
                any_file_failed |= result.outcome_of(file.id) is Outcome.FAILED
            if any_file_failed or fold.failed:
                result.verdicts[node.id] = self._container_failure(node, fatal, fold.failing_names)
            elif fold.complete_and_passed:
                result.verdicts[node.id] = self._container_pass(node)
            return fold
        if isinstance(node, File):
            return self._fold_file(node, table, fatal, result)
        if isinstance(node, (Method, DatasetVariant)):
            # Method-level target: no file scope, so no default-pass evidence.
            return self._fold_leaves([node], table, fatal, result, allow_default=False)
        raise TypeError(f"Unknown test node type: {type(node).__name__}")

    def _fold_file(
        self,
        file: File,
        table: RunResultTable,
        fatal: FatalErrorInfo | None,
        result: AggregationResult,
    ) -> _Fold:
        results_nodes = list(iter_results_nodes(file))
        outcomes = [table.outcome_of(n) for n in results_nodes]
        executed = any(outcome.is_terminal for outcome in outcomes)
        any_failed = any(outcome is Outcome.FAILED for outcome in outcomes)
        fatal_here = fatal is not None and fatal.matches_file(file.location.file if file.location else None)

        allow_default = executed and not any_failed and not fatal_here
        fold = self._fold_leaves(file.methods, table, fatal, result, allow_default)

        if fold.failed or fatal_here:
            result.verdicts[file.id] = self._container_failure(file, fatal if fatal_here else None, fold.failing_names)
        elif fold.complete_and_passed:
            result.verdicts[file.id] = self._container_pass(file)
        return fold

    def _fold_leaves(
        self,
        methods: Iterable[Method | DatasetVariant],
        table: RunResultTable,
        fatal: FatalErrorInfo | None,
        result: AggregationResult,
        allow_default: bool,
    ) -> _Fold:
        fold = _Fold()
        for method in methods:
            if isinstance(method, Method) and method.datasets:
                fold.add(self._fold_parameterized(method, table, fatal, result, allow_default))
                continue
            fold.declared += 1
            outcome = self._leaf_verdict(method, table, fatal, result, allow_default)
            if outcome is Outcome.PASSED:
                fold.passed += 1
            elif outcome is Outcome.FAILED:
                fold.failed += 1
                fold.failing_names.append(method.name)
        return fold

    def _fold_parameterized(
        self,
        method: Method,
        table: RunResultTable,
        fatal: FatalErrorInfo | None,
        result: AggregationResult,
        allow_default: bool,
    ) -> _Fold:
        fold = self._fold_leaves(method.datasets, table, fatal, result, allow_default)
        own = table.get(method.id)
        own_outcome = own.outcome if own else Outcome.UNSET

        if fold.failed or own_outcome is Outcome.FAILED:
            diagnostic = own.diagnostic if own and own_outcome is Outcome.FAILED else ""
            result.verdicts[method.id] = Verdict(
                node_id=method.id,
                outcome=Outcome.FAILED,
                diagnostic=diagnostic or _failing_summary(fold.failing_names),
                location=method.location,
                source=SourceOfTruth.AGGREGATE,
            )
            if own_outcome is Outcome.FAILED and not fold.failed:
                # The runner blamed the method as a whole.
                fold.failed += 1
                fold.failing_names.append(method.name)
        elif fold.complete_and_passed:
            result.verdicts[method.id] = self._container_pass(method)
        elif own is not None and own_outcome.is_terminal and fold.passed == 0:
            result.verdicts[method.id] = own.to_event()
        return fold

    def _leaf_verdict(
        self,
        node: Method | DatasetVariant,
        table: RunResultTable,
        fatal: FatalErrorInfo | None,
        result: AggregationResult,
        allow_default: bool,
    ) -> Outcome:
        entry = table.get(node.id)
        if entry is not None and entry.outcome.is_terminal:
            verdict = entry.to_event()
            if entry.outcome is Outcome.FAILED and fatal is not None and fatal.location and not entry.location:
                verdict = Verdict(
                    node_id=node.id,
                    outcome=Outcome.FAILED,
                    diagnostic=f"{entry.diagnostic}\n{fatal.message}".strip(),
                    location=fatal.location,
                    source=entry.source or SourceOfTruth.STREAMING,
                )
            result.verdicts[node.id] = verdict
            return entry.outcome
        if allow_default:
            result.verdicts[node.id] = Verdict(
                node_id=node.id,
                outcome=Outcome.PASSED,
                diagnostic=DEFAULT_PASS_DIAGNOSTIC,
                source=SourceOfTruth.DEFAULT,
            )
            return Outcome.PASSED
        return Outcome.UNSET

    # --- Above the run scope ---

    def _propagate_to_ancestors(self, roots: Sequence[TestNode], result: AggregationResult) -> None:
        """Ancestors outside the scope only learn about failures."""
        scope = {root.id for root in roots}
        for root in roots:
            if result.outcome_of(root.id) is not Outcome.FAILED:
                continue
            for ancestor in self._tree.ancestors(root):
                if ancestor.id in scope or ancestor.id in result.verdicts:
                    continue
                result.verdicts[ancestor.id] = Verdict(
                    node_id=ancestor.id,
                    outcome=Outcome.FAILED,
                    diagnostic=f"{root.name} failed",
                    source=SourceOfTruth.AGGREGATE,
                )

    # --- Verdict builders ---

    @staticmethod
    def _container_pass(node: TestNode) -> Verdict:
        return Verdict(node_id=node.id, outcome=Outcome.PASSED, location=node.location, source=SourceOfTruth.AGGREGATE)

    @staticmethod
    def _container_failure(node: TestNode, fatal: FatalErrorInfo | None, failing_names: list[str]) -> Verdict:
        if fatal is not None:
            return Verdict(
                node_id=node.id,
                outcome=Outcome.FAILED,
                diagnostic=fatal.message,
                location=fatal.location or node.location,
                source=SourceOfTruth.FATAL,
            )
        return Verdict(
            node_id=node.id,
            outcome=Outcome.FAILED,
            diagnostic=_failing_summary(failing_names),
            location=node.location,
            source=SourceOfTruth.AGGREGATE,
        )


def _failing_summary(names: list[str]) -> str:
    if not names:
        return "Test failed"
    return f"{len(names)} failing test(s): {', '.join(names)}"

# 🔼⚙️
