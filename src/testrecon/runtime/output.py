# src/testrecon/runtime/output.py

"""
Display cleanup for runner output.

The runner prints a progress line per test and then reprints results in a
summary. For display, progress indicators and repeated lines are dropped;
colour codes are kept on the lines that remain.
"""

from testrecon.engine.classifier import FAILURE_GLYPHS, SUCCESS_GLYPHS, strip_ansi

GLYPHS = SUCCESS_GLYPHS + FAILURE_GLYPHS


class OutputCleaner:
    """Stateful per run: duplicate detection spans chunks."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._pending = ""

    def clean(self, chunk: str) -> str:
        """Returns the displayable part of the complete lines in `chunk`."""
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return self._clean_lines(lines)

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return self._clean_lines([rest]) if rest else ""

    def _clean_lines(self, lines: list[str]) -> str:
        kept: list[str] = []
        for line in lines:
            plain = strip_ansi(line).strip()
            if not plain:
                kept.append("")
                continue
            if plain.startswith("-") and not any(glyph in plain for glyph in GLYPHS):
                continue
            normalized = " ".join(plain.split())
            if normalized in self._seen:
                continue
            self._seen.add(normalized)
            kept.append(line.rstrip())
        return "".join(f"{line}\n" for line in kept)

# 🔼⚙️
