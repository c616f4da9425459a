# src/testrecon/engine/fatal.py

"""
Detects unrecoverable runtime errors in runner output and extracts their location.
"""

import re
from collections.abc import Callable
from pathlib import PurePosixPath

import structlog
from attrs import define, field

from testrecon.nodes import SourceLocation
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("engine.fatal")

# <pre>PHP Fatal Error 'yii\base\ErrorException' with message 'Trait "X" not found' in /app/Foo.php:12
WRAPPED_FATAL_RE = re.compile(
    r"<pre>PHP Fatal (?:Error|error)[^']*'([^']*)'[^']*with message\s+'([^']*)'[^<]*?in\s+([^\s:]+):(\d+)",
    re.IGNORECASE,
)
# PHP Fatal error:  Trait "X" not found in /app/Foo.php on line 228
PLAIN_FATAL_RE = re.compile(
    r"(?:PHP )?Fatal error:\s+(.+?)\s+in\s+(\S+)\s+on line\s+(\d+)",
    re.IGNORECASE,
)
# PHP Fatal error: Allowed memory size exhausted
GENERIC_FATAL_RE = re.compile(r"(?:PHP )?Fatal (?:Error|error):?\s+(.+?)(?:\r?\n|$)", re.IGNORECASE)

FATAL_MARKERS = (
    re.compile(r"PHP Fatal Error", re.IGNORECASE),
    re.compile(r"Fatal error:", re.IGNORECASE),
    re.compile(r"<pre>PHP Fatal", re.IGNORECASE),
)


@define(frozen=True, slots=True)
class FatalErrorInfo:
    """An error that stopped the runner; not tied to any single test."""

    message: str
    file: str | None = field(default=None)
    line: int | None = field(default=None)

    @property
    def location(self) -> SourceLocation | None:
        if self.file is None:
            return None
        return SourceLocation(file=self.file, line=self.line)

    def matches_file(self, path: str | None) -> bool:
        """
        True when `path` names the same file as the error location.

        Runner paths are often absolute (or container paths) while declared
        paths are project-relative, so a trailing-segment match is enough.
        """
        if not path or not self.file:
            return False
        ours = PurePosixPath(self.file.replace("\\", "/")).parts
        theirs = PurePosixPath(path.replace("\\", "/")).parts
        if not ours or not theirs:
            return False
        shorter, longer = (ours, theirs) if len(ours) <= len(theirs) else (theirs, ours)
        return longer[-len(shorter) :] == shorter


def _wrapped(output: str) -> FatalErrorInfo | None:
    match = WRAPPED_FATAL_RE.search(output)
    if not match:
        return None
    error_class, message, file, line = match.groups()
    return FatalErrorInfo(message=f"{error_class}: {message}", file=file, line=int(line))


def _plain(output: str) -> FatalErrorInfo | None:
    match = PLAIN_FATAL_RE.search(output)
    if not match:
        return None
    message, file, line = match.groups()
    return FatalErrorInfo(message=message.strip(), file=file, line=int(line))


def _generic(output: str) -> FatalErrorInfo | None:
    match = GENERIC_FATAL_RE.search(output)
    if not match:
        return None
    return FatalErrorInfo(message=match.group(1).strip())


# Tried in order; first hit wins.
EXTRACTORS: tuple[Callable[[str], FatalErrorInfo | None], ...] = (_wrapped, _plain, _generic)


def has_fatal_error(output: str) -> bool:
    return any(marker.search(output) for marker in FATAL_MARKERS)


class FatalErrorExtractor:
    """Extracts a FatalErrorInfo from combined stdout/stderr, or None."""

    def extract(self, combined_output: str) -> FatalErrorInfo | None:
        if not combined_output or not has_fatal_error(combined_output):
            return None
        for extractor in EXTRACTORS:
            info = extractor(combined_output)
            if info is not None:
                log.info(
                    "Fatal error detected in runner output",
                    message=info.message,
                    file=info.file,
                    line=info.line,
                    emoji_key="fatal",
                )
                return info
        return None

# 🔼⚙️
