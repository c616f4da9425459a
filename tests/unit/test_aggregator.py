# tests/unit/test_aggregator.py

"""Tests for hierarchical aggregation of leaf outcomes."""

import pytest

from testrecon.engine.aggregator import (
    DEFAULT_PASS_DIAGNOSTIC,
    FATAL_ABORT_DIAGNOSTIC,
    HierarchicalAggregator,
)
from testrecon.engine.fatal import FatalErrorInfo
from testrecon.nodes import SourceLocation, TestTree, iter_results_nodes
from testrecon.state import Outcome, RunResultTable, SourceOfTruth

LOGIN = "unit:LoginTest.php"
CART = "unit:CartTest.php"


def _record(table: RunResultTable, node_id: str, outcome: Outcome, diagnostic: str = "") -> None:
    table.start(node_id)
    assert table.record(node_id, outcome, SourceOfTruth.STREAMING, diagnostic=diagnostic)


@pytest.fixture
def aggregator(tree: TestTree) -> HierarchicalAggregator:
    return HierarchicalAggregator(tree)


class TestNormalMode:
    def test_failure_propagates_to_file_and_suite(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        _record(table, f"{LOGIN}::testLogin", Outcome.PASSED)
        _record(table, f"{LOGIN}::testLogout", Outcome.FAILED, "✗ testLogout")

        result = aggregator.aggregate([tree["unit"]], table)

        assert result.outcome_of(f"{LOGIN}::testLogin") is Outcome.PASSED
        assert result.outcome_of(f"{LOGIN}::testLogout") is Outcome.FAILED
        assert result.outcome_of(LOGIN) is Outcome.FAILED
        assert result.outcome_of("unit") is Outcome.FAILED
        assert "testLogout" in result.verdicts[LOGIN].diagnostic
        # A failing sibling means no defaults for the unreported ones.
        assert f"{LOGIN}::testRemember#0" not in result.verdicts
        # CartTest never ran: untouched.
        assert CART not in result.verdicts
        assert not result.early_abort
        assert result.has_failures

    def test_unmentioned_methods_default_to_passed(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree[LOGIN]))
        _record(table, f"{LOGIN}::testLogin", Outcome.PASSED)

        result = aggregator.aggregate([tree[LOGIN]], table)

        default = result.verdicts[f"{LOGIN}::testLogout"]
        assert default.outcome is Outcome.PASSED
        assert default.source is SourceOfTruth.DEFAULT
        assert default.diagnostic == DEFAULT_PASS_DIAGNOSTIC
        assert result.outcome_of(f"{LOGIN}::testRemember#0") is Outcome.PASSED
        assert result.outcome_of(f"{LOGIN}::testRemember#1") is Outcome.PASSED
        assert result.outcome_of(f"{LOGIN}::testRemember") is Outcome.PASSED
        assert result.outcome_of(LOGIN) is Outcome.PASSED
        # Ancestors above the target only ever learn about failures.
        assert "unit" not in result.verdicts
        assert not result.has_failures

    def test_nothing_executed_means_no_verdicts(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        result = aggregator.aggregate([tree["unit"]], table)
        assert result.verdicts == {}

    def test_incomplete_suite_stays_unset(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        _record(table, f"{LOGIN}::testLogin", Outcome.PASSED)

        result = aggregator.aggregate([tree["unit"]], table)

        assert result.outcome_of(LOGIN) is Outcome.PASSED
        assert CART not in result.verdicts
        assert "unit" not in result.verdicts

    def test_complete_suite_passes(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        _record(table, f"{LOGIN}::testLogin", Outcome.PASSED)
        _record(table, f"{CART}::testAdd", Outcome.PASSED)

        result = aggregator.aggregate([tree["unit"]], table)

        assert result.outcome_of(LOGIN) is Outcome.PASSED
        assert result.outcome_of(CART) is Outcome.PASSED
        assert result.outcome_of("unit") is Outcome.PASSED

    def test_skipped_methods_keep_file_unset(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree[CART]))
        _record(table, f"{CART}::testAdd", Outcome.PASSED)
        _record(table, f"{CART}::testRemove", Outcome.SKIPPED)

        result = aggregator.aggregate([tree[CART]], table)

        assert result.outcome_of(f"{CART}::testRemove") is Outcome.SKIPPED
        assert CART not in result.verdicts

    def test_failing_dataset_fails_its_method(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree[LOGIN]))
        _record(table, f"{LOGIN}::testRemember#0", Outcome.PASSED)
        _record(table, f"{LOGIN}::testRemember#1", Outcome.FAILED)

        result = aggregator.aggregate([tree[LOGIN]], table)

        method = result.verdicts[f"{LOGIN}::testRemember"]
        assert method.outcome is Outcome.FAILED
        assert method.source is SourceOfTruth.AGGREGATE
        assert result.outcome_of(LOGIN) is Outcome.FAILED

    def test_method_blamed_as_a_whole(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree[LOGIN]))
        _record(table, f"{LOGIN}::testRemember", Outcome.FAILED, "data provider threw")

        result = aggregator.aggregate([tree[LOGIN]], table)

        method = result.verdicts[f"{LOGIN}::testRemember"]
        assert method.outcome is Outcome.FAILED
        assert method.diagnostic == "data provider threw"
        assert result.outcome_of(LOGIN) is Outcome.FAILED
        assert "testRemember" in result.verdicts[LOGIN].diagnostic

    def test_method_target_failure_reaches_ancestors(self, tree, aggregator) -> None:
        target = tree[f"{LOGIN}::testLogin"]
        table = RunResultTable(iter_results_nodes(target))
        _record(table, target.id, Outcome.FAILED)

        result = aggregator.aggregate([target], table)

        assert result.outcome_of(target.id) is Outcome.FAILED
        assert result.outcome_of(LOGIN) is Outcome.FAILED
        assert result.outcome_of("unit") is Outcome.FAILED
        assert result.verdicts["unit"].diagnostic == "testLogin failed"

    def test_method_target_pass_leaves_ancestors_alone(self, tree, aggregator) -> None:
        target = tree[f"{LOGIN}::testLogin"]
        table = RunResultTable(iter_results_nodes(target))
        _record(table, target.id, Outcome.PASSED)

        result = aggregator.aggregate([target], table)

        assert set(result.verdicts) == {target.id}

    def test_failed_leaf_gets_fatal_location(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree[CART]))
        _record(table, f"{CART}::testAdd", Outcome.FAILED, "✗ testAdd")
        fatal = FatalErrorInfo(message="Call to undefined method", file="/app/src/Cart.php", line=7)

        result = aggregator.aggregate([tree[CART]], table, fatal)

        verdict = result.verdicts[f"{CART}::testAdd"]
        assert verdict.location == SourceLocation(file="/app/src/Cart.php", line=7)
        assert "Call to undefined method" in verdict.diagnostic
        assert not result.early_abort


class TestFatalErrors:
    def test_early_abort_marks_only_the_matching_file(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        fatal = FatalErrorInfo(message='Trait "X" not found', file="/app/tests/unit/LoginTest.php", line=3)

        result = aggregator.aggregate([tree["unit"]], table, fatal)

        assert result.early_abort
        for node in iter_results_nodes(tree[LOGIN]):
            verdict = result.verdicts[node.id]
            assert verdict.outcome is Outcome.FAILED
            assert verdict.source is SourceOfTruth.FATAL
            assert verdict.diagnostic.startswith(FATAL_ABORT_DIAGNOSTIC)
            assert verdict.location == SourceLocation(file="/app/tests/unit/LoginTest.php", line=3)
        assert result.outcome_of(LOGIN) is Outcome.FAILED
        assert result.outcome_of("unit") is Outcome.FAILED
        for node in iter_results_nodes(tree[CART]):
            assert node.id not in result.verdicts
        assert CART not in result.verdicts

    def test_early_abort_without_location_touches_nothing(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        result = aggregator.aggregate([tree["unit"]], table, FatalErrorInfo(message="Out of memory"))
        assert result.early_abort
        assert result.verdicts == {}

    def test_fatal_after_partial_progress(self) -> None:
        tree = TestTree.from_mapping(
            {
                "suites": [
                    {
                        "name": "unit",
                        "files": [
                            {
                                "name": "FooTest.php",
                                "path": "tests/unit/FooTest.php",
                                "methods": ["testA", "testB", "testC", "testD", "testE"],
                            },
                            {"name": "BarTest.php", "path": "tests/unit/BarTest.php", "methods": ["testX"]},
                        ],
                    }
                ]
            }
        )
        aggregator = HierarchicalAggregator(tree)
        table = RunResultTable(iter_results_nodes(tree["unit"]))
        _record(table, "unit:FooTest.php::testA", Outcome.FAILED)
        _record(table, "unit:FooTest.php::testB", Outcome.FAILED)
        fatal = FatalErrorInfo(message="Cannot redeclare foo()", file="tests/unit/FooTest.php", line=42)

        result = aggregator.aggregate([tree["unit"]], table, fatal)

        assert not result.early_abort
        assert result.outcome_of("unit:FooTest.php") is Outcome.FAILED
        assert result.verdicts["unit:FooTest.php"].location == SourceLocation(file="tests/unit/FooTest.php", line=42)
        assert result.outcome_of("unit:FooTest.php::testA") is Outcome.FAILED
        assert result.outcome_of("unit:FooTest.php::testB") is Outcome.FAILED
        for name in ("testC", "testD", "testE"):
            assert f"unit:FooTest.php::{name}" not in result.verdicts
        assert "unit:BarTest.php" not in result.verdicts
        assert "unit:BarTest.php::testX" not in result.verdicts

    def test_fatal_in_file_that_otherwise_passed(self, tree, aggregator) -> None:
        table = RunResultTable(iter_results_nodes(tree[LOGIN]))
        _record(table, f"{LOGIN}::testLogin", Outcome.PASSED)
        fatal = FatalErrorInfo(message="Segfault-ish", file="tests/unit/LoginTest.php", line=99)

        result = aggregator.aggregate([tree[LOGIN]], table, fatal)

        assert result.outcome_of(LOGIN) is Outcome.FAILED
        assert result.verdicts[LOGIN].source is SourceOfTruth.FATAL
        assert f"{LOGIN}::testLogout" not in result.verdicts
        assert result.outcome_of("unit") is Outcome.FAILED
