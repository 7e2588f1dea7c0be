"""Error conditions reported to the instance-selection driver.

Span resolution problems never show up here: candidates absorb them by
skipping or shrinking. Only selection-range and internal rewrite conditions
escape to the caller.
"""


class SelectionRangeError(ValueError):
    """Requested ordinal(s) cannot be satisfied. Nothing was mutated."""

    def __init__(self, message: str, ordinal: int, end_ordinal: int = None, valid_count: int = 0):
        super().__init__(message)
        self.ordinal = ordinal
        self.end_ordinal = end_ordinal
        self.valid_count = valid_count


class InvalidCounterError(SelectionRangeError):
    """Ordinal below 1."""


class MaxInstanceError(SelectionRangeError):
    """Ordinal exceeds the number of valid candidates."""


class ToCounterTooSmallError(SelectionRangeError):
    """End ordinal of a range is smaller than its start."""


class InternalRewriteError(RuntimeError):
    """The rewrite buffer reported an error or fatal diagnostic.

    Edits already applied in the failed attempt are not rolled back; the
    caller is expected to discard the whole attempt.
    """

    def __init__(self, message: str, diagnostics=None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])
