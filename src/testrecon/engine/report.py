# src/testrecon/engine/report.py

"""
Parses the runner's JUnit-style XML report and reconciles it with streaming results.

The report reflects the runner's own bookkeeping, so wherever it disagrees
with an outcome inferred from output patterns, the report wins. Losing the
report (missing, late, malformed) degrades to the streaming results; it never
raises to the caller.
"""

import asyncio
import time
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Iterator
from enum import Enum
from pathlib import Path

import structlog
from attrs import define, field

from testrecon.engine.name_index import CanonicalNameIndex
from testrecon.exceptions import ReportParseError
from testrecon.nodes import TestNode
from testrecon.state import Outcome, OutcomeEvent, RunResultTable, SourceOfTruth
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("engine.report")

DEFAULT_REPORT_WAIT_SECONDS = 0.5
DEFAULT_POLL_INTERVAL = 0.05


class ReportStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def outcome(self) -> Outcome:
        if self is ReportStatus.PASSED:
            return Outcome.PASSED
        if self is ReportStatus.SKIPPED:
            return Outcome.SKIPPED
        return Outcome.FAILED


@define(frozen=True, slots=True)
class ReportEntry:
    """One testcase from the report."""

    name: str
    status: ReportStatus
    classname: str | None = field(default=None)
    failure_detail: str | None = field(default=None)
    failure_type: str | None = field(default=None)
    time: float | None = field(default=None)


@define(slots=True)
class CorrectionSet:
    """What reconciliation changed in the run-result table."""

    report_found: bool = field(default=False)
    entries: int = field(default=0)
    filled: list[OutcomeEvent] = field(factory=list)
    corrected: list[OutcomeEvent] = field(factory=list)
    unmatched: list[str] = field(factory=list)

    @property
    def events(self) -> list[OutcomeEvent]:
        return [*self.filled, *self.corrected]

    def __len__(self) -> int:
        return len(self.filled) + len(self.corrected)


# --- Parsing ---


def _detail(element: ET.Element) -> tuple[str, str]:
    text = (element.text or "").strip()
    message = element.get("message", "")
    return (text or message), element.get("type", "Error")


def _parse_time(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _parse_testcase(testcase: ET.Element, suite_name: str | None) -> ReportEntry:
    status = ReportStatus.PASSED
    detail: str | None = None
    detail_type: str | None = None

    # Later checks override earlier ones: failure < error < skipped.
    failure = testcase.find("failure")
    if failure is not None:
        status = ReportStatus.FAILED
        detail, detail_type = _detail(failure)
    error = testcase.find("error")
    if error is not None:
        status = ReportStatus.ERROR
        detail, detail_type = _detail(error)
    if testcase.find("skipped") is not None:
        status = ReportStatus.SKIPPED

    return ReportEntry(
        name=testcase.get("name", ""),
        status=status,
        classname=testcase.get("classname") or testcase.get("class") or suite_name,
        failure_detail=detail,
        failure_type=detail_type,
        time=_parse_time(testcase.get("time")),
    )


def _iter_testcases(suite: ET.Element) -> Iterator[ReportEntry]:
    suite_name = suite.get("name")
    for child in suite:
        if child.tag == "testcase":
            if child.get("name"):
                yield _parse_testcase(child, suite_name)
        elif child.tag == "testsuite":
            # PHPUnit nests suites per class and per data provider.
            yield from _iter_testcases(child)


def parse_junit_report(xml_text: str) -> list[ReportEntry]:
    """Parses testsuites/testsuite/testcase XML into ReportEntry records."""
    if not xml_text or not xml_text.strip():
        raise ReportParseError("Report is empty")
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ReportParseError(f"Report is not well-formed XML: {e}", details=e) from e

    if root.tag == "testsuites":
        suites = root.findall("testsuite")
    elif root.tag == "testsuite":
        suites = [root]
    else:
        raise ReportParseError(f"Unexpected report root element <{root.tag}>")

    entries = [entry for suite in suites for entry in _iter_testcases(suite)]
    log.debug("Parsed report", suites=len(suites), testcases=len(entries))
    return entries


# --- Report availability ---


async def wait_for_report(
    report_path: Path,
    wait_seconds: float = DEFAULT_REPORT_WAIT_SECONDS,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    not_before: float | None = None,
) -> bool:
    """
    Polls until the report exists (and is newer than `not_before`), up to a bound.

    The runner may finish writing the report a few hundred milliseconds after
    it exits.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(wait_seconds, 0.0)
    while True:
        if _is_fresh(report_path, not_before):
            return True
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(poll_interval)


def _is_fresh(report_path: Path, not_before: float | None) -> bool:
    try:
        stat = report_path.stat()
    except OSError:
        return False
    return not_before is None or stat.st_mtime >= not_before


# --- Reconciliation ---


class ReportReconciler:
    """Patches a RunResultTable from the authoritative report."""

    def __init__(
        self,
        index: CanonicalNameIndex,
        table: RunResultTable,
        wait_seconds: float = DEFAULT_REPORT_WAIT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._index = index
        self._table = table
        self._wait_seconds = wait_seconds
        self._poll_interval = poll_interval

    async def reconcile(self, report_path: Path, not_before: float | None = None) -> CorrectionSet:
        """
        Waits for the report, parses it, and applies it to the table.

        Any failure leaves the table exactly as streaming left it.
        """
        if not await self.wait(report_path, not_before):
            return CorrectionSet()
        return await self.load(report_path)

    async def wait(self, report_path: Path, not_before: float | None = None) -> bool:
        """Polls for a fresh report within the configured bound."""
        started = time.monotonic()
        found = await wait_for_report(report_path, self._wait_seconds, self._poll_interval, not_before)
        if not found:
            log.info(
                "Report not found, using streaming results",
                report_path=str(report_path),
                waited=round(time.monotonic() - started, 3),
            )
        return found

    async def load(self, report_path: Path) -> CorrectionSet:
        """Reads and applies a report that is known to exist."""
        rlog = log.bind(report_path=str(report_path))
        try:
            xml_text = await asyncio.to_thread(report_path.read_text, encoding="utf-8")
            entries = parse_junit_report(xml_text)
        except (OSError, UnicodeDecodeError) as e:
            rlog.warning("Could not read report, using streaming results", error=str(e))
            return CorrectionSet()
        except ReportParseError as e:
            rlog.warning("Could not parse report, using streaming results", error=str(e))
            return CorrectionSet()

        corrections = self.apply(entries)
        rlog.info(
            "Reconciled report with streaming results",
            entries=corrections.entries,
            filled=len(corrections.filled),
            corrected=len(corrections.corrected),
            emoji_key="report",
        )
        return corrections

    def apply(self, entries: Iterable[ReportEntry]) -> CorrectionSet:
        """
        Applies parsed entries. Idempotent: applying the same entries again changes nothing.

        Entries resolving to a node already handled in this pass are ignored.
        """
        corrections = CorrectionSet(report_found=True)
        processed: set[str] = set()

        for entry in entries:
            corrections.entries += 1
            node = self._index.lookup(entry.name, qualifier=entry.classname)
            if node is None:
                corrections.unmatched.append(entry.name)
                log.debug("Report entry matched no declared test", name=entry.name, classname=entry.classname)
                continue
            if node.id in processed:
                continue
            processed.add(node.id)
            self._apply_entry(node, entry, corrections)

        return corrections

    def _apply_entry(self, node: TestNode, entry: ReportEntry, corrections: CorrectionSet) -> None:
        current = self._table.get(node.id)
        if current is None:
            return
        outcome = entry.status.outcome
        diagnostic = entry.failure_detail or ("Test failed" if outcome is Outcome.FAILED else "")

        if not current.outcome.is_terminal:
            self._table.record(node.id, outcome, SourceOfTruth.REPORT, diagnostic)
            corrections.filled.append(self._table[node.id].to_event())
            return

        if current.outcome is outcome:
            return

        old_outcome = current.outcome
        self._table.correct(node.id, outcome, diagnostic)
        corrections.corrected.append(self._table[node.id].to_event(corrected=True))
        log.info(
            "Correcting streaming outcome from report",
            node_id=node.id,
            streaming=old_outcome.name,
            report=outcome.name,
            emoji_key="correct",
        )

# 🔼⚙️
