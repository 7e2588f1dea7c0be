"""Selection and apply engine for the remove-unreferenced-decl pass.

Exposes the instance-selection protocol shared by every reduction pass:
``query_count()`` reports how many valid candidates exist, and
``select_and_apply(ordinal[, end_ordinal])`` re-validates and applies the
chosen one(s) against a rewrite buffer.
"""
import logging
from typing import Iterable, List, Optional

from ..analyzer.model import ProgramTree
from ..analyzer.propagator import LivenessPropagator, LivenessState
from ..analyzer.relations import RelationGraph
from ..errors import (
    InternalRewriteError,
    InvalidCounterError,
    MaxInstanceError,
    ToCounterTooSmallError,
)
from .candidates import Candidate, collect_candidates
from .rewriter import RewriteBuffer

logger = logging.getLogger(__name__)


class UnreferencedDeclPass:
    """Remove declarations that are unreferenced within the source code."""

    NAME = "remove-unreferenced-decl"

    def __init__(self, tree: ProgramTree, graph: RelationGraph, all_at_once: bool = False):
        """Initialize pass.

        Args:
            tree: Program tree produced by a front end
            graph: Frozen relation graph for the same tree
            all_at_once: Treat "remove everything dead" as a single candidate
        """
        self.tree = tree
        self.graph = graph
        self.all_at_once = all_at_once
        self.state: Optional[LivenessState] = None
        self._candidates: Optional[List[Candidate]] = None

    @classmethod
    def from_source(cls, source: bytes, language: str = "cpp", policy=None,
                    protected_patterns: Optional[Iterable[str]] = None,
                    all_at_once: bool = False) -> "UnreferencedDeclPass":
        """Parse ``source`` with the tree-sitter front end and build a pass for it."""
        from ..analyzer.extractor import analyze_source

        tree, graph = analyze_source(
            source, language=language, policy=policy, protected_patterns=protected_patterns
        )
        return cls(tree, graph, all_at_once=all_at_once)

    @property
    def candidates(self) -> List[Candidate]:
        """Candidates of this analysis, computed once on first access."""
        if self._candidates is None:
            self.state = LivenessPropagator(self.graph).run()
            self._candidates = collect_candidates(self.tree, self.state, self.all_at_once)
            logger.info("%s: %d candidate(s)", self.NAME, len(self._candidates))
        return self._candidates

    def query_count(self) -> int:
        """Number of valid candidates. Never mutates anything."""
        return len(self.candidates)

    def _validate_selection(self, ordinal: int, end_ordinal: Optional[int]):
        count = self.query_count()
        if ordinal < 1:
            raise InvalidCounterError(
                f"Invalid counter: {ordinal}", ordinal, end_ordinal, count
            )
        if end_ordinal is not None and end_ordinal < ordinal:
            raise ToCounterTooSmallError(
                f"to-counter {end_ordinal} is smaller than counter {ordinal}",
                ordinal, end_ordinal, count,
            )
        highest = ordinal if end_ordinal is None else end_ordinal
        if highest > count:
            raise MaxInstanceError(
                f"Instance {highest} requested but only {count} valid instance(s)",
                ordinal, end_ordinal, count,
            )

    def select_and_apply(self, buffer: RewriteBuffer, ordinal: int,
                         end_ordinal: Optional[int] = None) -> int:
        """Apply candidate ``ordinal`` (1-based), or the range ``ordinal..end_ordinal``.

        Ranges are applied from ``end_ordinal`` down to ``ordinal``. Every
        candidate is re-checked immediately before it is applied; candidates
        that fail the check are skipped.

        Args:
            buffer: Rewrite buffer over the same source as the tree
            ordinal: 1-based index of the (first) candidate
            end_ordinal: Optional inclusive upper end of a range

        Returns:
            Number of edits made

        Raises:
            SelectionRangeError: If the selection does not fit the valid count
            InternalRewriteError: If the buffer reported an error diagnostic
        """
        self._validate_selection(ordinal, end_ordinal)

        if end_ordinal is None:
            indices = [ordinal]
        else:
            indices = range(end_ordinal, ordinal - 1, -1)

        edits = 0
        for index in indices:
            candidate = self.candidates[index - 1]
            if not candidate.check(self.tree):
                logger.debug("Candidate %d no longer valid, skipped", index)
                continue
            edits += candidate.apply(self.tree, buffer)

        diagnostics = buffer.diagnostics
        if diagnostics.has_error_occurred() or diagnostics.has_fatal_error_occurred():
            raise InternalRewriteError(
                f"{self.NAME}: rewrite reported errors", diagnostics.errors()
            )
        return edits
