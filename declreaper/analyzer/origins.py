"""Origin tracking for preprocessed sources.

Reduction inputs are usually preprocessed translation units in which
``# 12 "foo.h" 1`` style linemarkers (or ``#line 12 "foo.h"``) record which
file each stretch of text came from. Declarations that originate in included
material are never removal candidates.
"""
import bisect
import fnmatch
import re
from typing import Iterable, List, Optional, Tuple

# GNU linemarker or #line directive, with an optional quoted file name
LINEMARKER_PATTERN = re.compile(
    rb'^[ \t]*#[ \t]*(?:line[ \t]+)?(\d+)(?:[ \t]+"((?:[^"\\]|\\.)*)")?[^\r\n]*'
)


class SourceOrigins:
    """Map byte offsets of a source buffer to the file they originate from."""

    def __init__(self, source: bytes, protected_patterns: Optional[Iterable[str]] = None,
                 main_file: Optional[str] = None):
        """Scan the source for linemarkers.

        Args:
            source: Raw source bytes
            protected_patterns: fnmatch patterns of file names whose text is protected
            main_file: Name of the main file; defaults to the first marker's file
        """
        self.source = source
        self.protected_patterns = list(protected_patterns or [])
        # (line start offset, line end offset) of every marker line
        self.marker_lines: List[Tuple[int, int]] = []
        # Sorted region starts and the file each region belongs to
        self._region_starts: List[int] = []
        self._region_files: List[str] = []
        self.main_file = main_file
        self._scan()

    def _scan(self):
        offset = 0
        for line in self.source.splitlines(keepends=True):
            match = LINEMARKER_PATTERN.match(line)
            if match:
                self.marker_lines.append((offset, offset + match.end()))
                raw_name = match.group(2)
                if raw_name is not None:
                    file_name = raw_name.decode("utf-8", errors="replace")
                    if self.main_file is None:
                        self.main_file = file_name
                    # Region begins after the marker line itself
                    self._region_starts.append(offset + len(line))
                    self._region_files.append(file_name)
            offset += len(line)

    @property
    def has_markers(self) -> bool:
        return bool(self.marker_lines)

    def file_at(self, offset: int) -> Optional[str]:
        """Return the originating file of an offset, or None before any marker."""
        index = bisect.bisect_right(self._region_starts, offset) - 1
        if index < 0:
            return None
        return self._region_files[index]

    def is_included(self, offset: int) -> bool:
        file_name = self.file_at(offset)
        return file_name is not None and file_name != self.main_file

    def is_protected(self, offset: int) -> bool:
        """Return True if text at this offset must never be removed.

        Protected text is anything from an included file, plus anything from a
        file matching one of the configured protected patterns.
        """
        if self.is_included(offset):
            return True
        if not self.protected_patterns:
            return False
        file_name = self.file_at(offset)
        if file_name is None:
            return False
        return any(fnmatch.fnmatch(file_name, pattern) for pattern in self.protected_patterns)

    def masked_source(self) -> bytes:
        """Copy of the source with marker lines blanked out.

        Lengths are preserved byte for byte so spans computed on the masked
        copy are valid in the original.
        """
        if not self.marker_lines:
            return self.source
        masked = bytearray(self.source)
        for start, end in self.marker_lines:
            masked[start:end] = b" " * (end - start)
        return bytes(masked)
