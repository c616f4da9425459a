# src/testrecon/engine/classifier.py

"""
Classifies live runner output into per-test outcomes.

Output arrives as arbitrary byte chunks on two channels. Each channel keeps
its own decoder and carry-over buffer so that a line split across chunks, or
a multi-byte glyph split across chunks, is classified exactly as if it had
arrived whole.
"""

import codecs
import re
from collections.abc import Callable
from enum import Enum

import structlog
from attrs import define, field

from testrecon.engine.name_index import CanonicalNameIndex
from testrecon.nodes import TestNode
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("engine.classifier")

ANSI_ESCAPE_RE = re.compile(r"\x1B\[[0-9;?]*[A-Za-z]")

SUCCESS_GLYPHS = "✓✔"
FAILURE_GLYPHS = "✗✘✖"
STATUS_WORDS = "OK|FAILED|PASSED|ERROR"
PASSING_STATUSES = frozenset({"OK", "PASSED"})

GLYPH_RE = re.compile(rf"([{SUCCESS_GLYPHS}{FAILURE_GLYPHS}])\s+(\w+)(?:\s+\(([^)]+)\))?")
COLON_STATUS_RE = re.compile(rf"^(\w+):\s*({STATUS_WORDS})\b", re.IGNORECASE)
VERBOSE_STATUS_RE = re.compile(rf"^(\w+)\s+\(([^)]+)\)\s+\.\.\.\s+({STATUS_WORDS})\b", re.IGNORECASE)
TAP_RE = re.compile(r"^(not\s+)?ok\s+\d+\s+-\s+(\w+)", re.IGNORECASE)
DETAILED_FAILURE_RE = re.compile(r"Test\s+(\S+?):{1,2}(\w+)\b")


class Channel(Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


@define(frozen=True, slots=True)
class LineMatch:
    """What a recognizer pulled out of one line."""

    identifier: str
    passed: bool
    qualifier: str | None = field(default=None)


@define(frozen=True, slots=True)
class StreamOutcome:
    """A resolved streaming outcome for one node."""

    node: TestNode
    passed: bool
    raw_line: str
    channel: Channel = field(default=Channel.STDOUT)


# --- Recognizers: each returns a LineMatch or None ---


def match_glyph(line: str) -> LineMatch | None:
    """``✓ testLogin`` / ``✗ testLogout (LoginCest)``"""
    match = GLYPH_RE.search(line)
    if not match:
        return None
    glyph, identifier, qualifier = match.groups()
    return LineMatch(identifier, glyph in SUCCESS_GLYPHS, qualifier)


def match_colon_status(line: str) -> LineMatch | None:
    """``testLogin: OK``"""
    match = COLON_STATUS_RE.match(line)
    if not match:
        return None
    identifier, status = match.groups()
    return LineMatch(identifier, status.upper() in PASSING_STATUSES)


def match_verbose_status(line: str) -> LineMatch | None:
    """``testLogin (LoginTest) ... FAILED``"""
    match = VERBOSE_STATUS_RE.match(line)
    if not match:
        return None
    identifier, qualifier, status = match.groups()
    return LineMatch(identifier, status.upper() in PASSING_STATUSES, qualifier)


def match_tap(line: str) -> LineMatch | None:
    """``ok 1 - testLogin`` / ``not ok 2 - testLogout``"""
    match = TAP_RE.match(line)
    if not match:
        return None
    negation, identifier = match.groups()
    return LineMatch(identifier, negation is None)


def match_detailed_failure(line: str) -> LineMatch | None:
    """``Test  tests/unit/FooTest.php:testLogout`` from the failure listing."""
    match = DETAILED_FAILURE_RE.search(line)
    if not match:
        return None
    path, identifier = match.groups()
    return LineMatch(identifier, False, path)


# Precedence is fixed: first recognizer to match wins.
RECOGNIZERS: tuple[Callable[[str], LineMatch | None], ...] = (
    match_glyph,
    match_colon_status,
    match_verbose_status,
    match_tap,
    match_detailed_failure,
)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


def classify_line(line: str) -> LineMatch | None:
    """Runs the recognizers over one line, ignoring ANSI colour codes."""
    clean = strip_ansi(line).strip()
    if not clean:
        return None
    for recognizer in RECOGNIZERS:
        result = recognizer(clean)
        if result is not None:
            return result
    return None


class _ChannelBuffer:
    """Incremental decoder plus carry-over for one output channel."""

    __slots__ = ("decoder", "pending")

    def __init__(self) -> None:
        self.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.pending = ""

    def feed(self, chunk: bytes | str) -> tuple[str, list[str]]:
        """Returns the newly decoded text and the lines it completed."""
        text = chunk if isinstance(chunk, str) else self.decoder.decode(chunk)
        self.pending += text
        *lines, self.pending = self.pending.split("\n")
        return text, lines

    def drain(self) -> list[str]:
        self.pending += self.decoder.decode(b"", final=True)
        rest, self.pending = self.pending, ""
        return [rest] if rest else []


class StreamingOutcomeClassifier:
    """
    Turns output chunks into at most one StreamOutcome per node.

    The runner reprints progress and then a summary, so only the first
    mention of a node counts. Raw chunks are forwarded verbatim to
    `on_output` before classification, whatever the classification result.
    """

    def __init__(
        self,
        index: CanonicalNameIndex,
        on_outcome: Callable[[StreamOutcome], None],
        on_output: Callable[[str, Channel], None] | None = None,
    ):
        self._index = index
        self._on_outcome = on_outcome
        self._on_output = on_output
        self._buffers: dict[Channel, _ChannelBuffer] = {channel: _ChannelBuffer() for channel in Channel}
        self._seen: set[str] = set()
        self._transcript: dict[Channel, list[str]] = {channel: [] for channel in Channel}
        self.unmatched: set[str] = set()

    @property
    def seen_node_ids(self) -> frozenset[str]:
        return frozenset(self._seen)

    def combined_output(self) -> str:
        """Everything decoded so far, stdout then stderr."""
        return "\n".join("".join(self._transcript[channel]) for channel in Channel)

    def feed(self, chunk: bytes | str, channel: Channel = Channel.STDOUT) -> list[StreamOutcome]:
        """Consumes one chunk and returns the outcomes it completed."""
        text, lines = self._buffers[channel].feed(chunk)
        self._emit_output(text, channel)
        return self._classify_lines(lines, channel)

    def flush(self) -> list[StreamOutcome]:
        """Classifies trailing fragments once the process has exited."""
        outcomes = []
        for channel, buffer in self._buffers.items():
            outcomes.extend(self._classify_lines(buffer.drain(), channel))
        return outcomes

    def _emit_output(self, text: str, channel: Channel) -> None:
        if not text:
            return
        self._transcript[channel].append(text)
        if self._on_output is not None:
            self._on_output(text, channel)

    def _classify_lines(self, lines: list[str], channel: Channel) -> list[StreamOutcome]:
        outcomes = []
        for line in lines:
            outcome = self._classify(line.rstrip("\r"), channel)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def _classify(self, line: str, channel: Channel) -> StreamOutcome | None:
        match = classify_line(line)
        if match is None:
            return None
        node = self._index.lookup(match.identifier, qualifier=match.qualifier)
        if node is None:
            if match.identifier not in self.unmatched:
                self.unmatched.add(match.identifier)
                log.debug("Streaming identifier matched no declared test", identifier=match.identifier)
            return None
        if node.id in self._seen:
            return None
        self._seen.add(node.id)
        outcome = StreamOutcome(node=node, passed=match.passed, raw_line=line.strip(), channel=channel)
        self._on_outcome(outcome)
        return outcome

# 🔼⚙️
