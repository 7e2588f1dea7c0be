"""Rewrite buffer: byte-range deletion over an immutable original source.

All positions are offsets into the original source. Deleted stretches are
kept as sorted, merged intervals, so a span read from the program tree stays
meaningful no matter how many edits were applied before it.
"""
import bisect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..analyzer.model import Span

logger = logging.getLogger(__name__)


class DiagnosticLevel(Enum):
    NOTE = "note"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


@dataclass(frozen=True)
class Diagnostic:
    level: DiagnosticLevel
    message: str

    def __str__(self) -> str:
        return f"{self.level.value}: {self.message}"


class Diagnostics:
    """Collects diagnostics raised while rewriting."""

    def __init__(self):
        self.entries: List[Diagnostic] = []

    def report(self, level: DiagnosticLevel, message: str):
        self.entries.append(Diagnostic(level, message))
        if level in (DiagnosticLevel.ERROR, DiagnosticLevel.FATAL):
            logger.error("Rewrite %s", Diagnostic(level, message))
        else:
            logger.debug("Rewrite %s", Diagnostic(level, message))

    def has_error_occurred(self) -> bool:
        return any(entry.level == DiagnosticLevel.ERROR for entry in self.entries)

    def has_fatal_error_occurred(self) -> bool:
        return any(entry.level == DiagnosticLevel.FATAL for entry in self.entries)

    def errors(self) -> List[Diagnostic]:
        return [
            entry for entry in self.entries
            if entry.level in (DiagnosticLevel.ERROR, DiagnosticLevel.FATAL)
        ]


class RewriteBuffer:
    """Mutable view of one source buffer supporting span deletion."""

    def __init__(self, source: bytes):
        """Initialize buffer.

        Args:
            source: Original source bytes; never modified in place
        """
        self.source = source
        self.diagnostics = Diagnostics()
        # Disjoint, sorted, merged [start, end) intervals of deleted bytes
        self._starts: List[int] = []
        self._ends: List[int] = []
        self.edit_count = 0

    def __len__(self) -> int:
        return len(self.source)

    @property
    def modified(self) -> bool:
        return bool(self._starts)

    def _interval_index(self, offset: int) -> int:
        """Index of the last deleted interval starting at or before ``offset`` (-1 if none)."""
        return bisect.bisect_right(self._starts, offset) - 1

    def is_deleted(self, offset: int) -> bool:
        index = self._interval_index(offset)
        return index >= 0 and offset < self._ends[index]

    def measure(self, offset: int) -> int:
        """Apparent size of the rewritten text from the buffer start up to ``offset``.

        Returns:
            Number of surviving bytes before ``offset``, or -1 if the byte at
            ``offset`` has already been deleted or lies outside the buffer
        """
        if offset < 0 or offset > len(self.source):
            return -1
        if offset < len(self.source) and self.is_deleted(offset):
            return -1

        index = self._interval_index(offset)
        removed = 0
        for position in range(index + 1):
            removed += min(self._ends[position], offset) - self._starts[position]
        return offset - removed

    def remove(self, span: Span) -> bool:
        """Delete the bytes of ``span`` that are still live.

        Out-of-range or empty spans are reported as error diagnostics and
        leave the buffer untouched.

        Returns:
            True if the buffer changed
        """
        if span.start < 0 or span.end > len(self.source) or span.end < span.start:
            self.diagnostics.report(
                DiagnosticLevel.ERROR,
                f"cannot remove {span}: outside buffer of {len(self.source)} bytes",
            )
            return False
        if len(span) == 0:
            self.diagnostics.report(DiagnosticLevel.ERROR, f"cannot remove empty range {span}")
            return False

        start, end = span.start, span.end
        # Absorb every interval that overlaps or touches [start, end)
        first = bisect.bisect_left(self._ends, start)
        last = bisect.bisect_right(self._starts, end)
        if first < last:
            start = min(start, self._starts[first])
            end = max(end, self._ends[last - 1])
        self._starts[first:last] = [start]
        self._ends[first:last] = [end]
        self.edit_count += 1
        return True

    def rewritten_text(self, span: Optional[Span] = None) -> bytes:
        """Surviving bytes of ``span`` (or of the whole buffer)."""
        start = 0 if span is None else span.start
        end = len(self.source) if span is None else span.end

        pieces = []
        cursor = start
        for interval_start, interval_end in zip(self._starts, self._ends):
            if interval_end <= cursor:
                continue
            if interval_start >= end:
                break
            if interval_start > cursor:
                pieces.append(self.source[cursor:interval_start])
            cursor = max(cursor, interval_end)
        if cursor < end:
            pieces.append(self.source[cursor:end])
        return b"".join(pieces)

    def getvalue(self) -> bytes:
        return self.rewritten_text()
