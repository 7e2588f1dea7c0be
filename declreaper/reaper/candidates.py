"""Removal candidates: single declarations and atomic groups of them."""
import logging
from typing import List

from ..analyzer.model import ProgramTree, is_prunable
from ..analyzer.propagator import LivenessState, unreferenced
from .rewriter import RewriteBuffer

logger = logging.getLogger(__name__)


class Candidate:
    """A prospective removal, re-validated right before it is applied."""

    def check(self, tree: ProgramTree) -> bool:
        raise NotImplementedError

    def apply(self, tree: ProgramTree, buffer: RewriteBuffer) -> int:
        """Apply the removal and return the number of edits made."""
        raise NotImplementedError

    def describe(self, tree: ProgramTree) -> str:
        raise NotImplementedError


class LeafCandidate(Candidate):
    """Removal of exactly one declaration.

    Only the handle is stored. The span is resolved from the tree every time
    it is needed.
    """

    def __init__(self, handle: int):
        self.handle = handle

    def __repr__(self) -> str:
        return f"LeafCandidate({self.handle})"

    def check(self, tree: ProgramTree) -> bool:
        span = tree.full_span(self.handle)
        if span is None:
            return False
        if tree.is_protected(span):
            return False
        return True

    def apply(self, tree: ProgramTree, buffer: RewriteBuffer) -> int:
        span = tree.full_span(self.handle)
        if span is None:
            logger.debug("Skipping %r: span no longer resolvable", self)
            return 0

        # An end that already reads as deleted means a previous edit consumed it
        if buffer.measure(span.start) < 0 or buffer.measure(span.end - 1) < 0:
            logger.debug("Skipping %r: %s overlaps an earlier removal", self, span)
            return 0

        logger.debug("Removing %s %s", tree.node(self.handle).describe(), span)
        return 1 if buffer.remove(span) else 0

    def describe(self, tree: ProgramTree) -> str:
        return tree.node(self.handle).describe()


class GroupCandidate(Candidate):
    """Ordered collection of candidates applied together as one reduction step."""

    def __init__(self, members: List[Candidate]):
        self.members: List[Candidate] = list(members)

    def __repr__(self) -> str:
        return f"GroupCandidate({self.members!r})"

    def __len__(self) -> int:
        return len(self.members)

    def check(self, tree: ProgramTree) -> bool:
        """Drop members that no longer validate; succeed if any remain."""
        self.members = [member for member in self.members if member.check(tree)]
        return bool(self.members)

    def apply(self, tree: ProgramTree, buffer: RewriteBuffer) -> int:
        edits = 0
        for member in self.members:
            edits += member.apply(tree, buffer)
        return edits

    def describe(self, tree: ProgramTree) -> str:
        return f"{len(self.members)} declarations"


def collect_candidates(tree: ProgramTree, state: LivenessState,
                       all_at_once: bool = False) -> List[Candidate]:
    """Turn the settled liveness state into removal candidates.

    Every unreferenced node of a prunable kind whose span validates becomes a
    LeafCandidate, in handle order. In all-at-once mode the list is collapsed
    into a single GroupCandidate.

    Args:
        tree: Program tree the state was computed for
        state: Liveness state at the fixpoint
        all_at_once: Collapse every candidate into one atomic group

    Returns:
        List of candidates (empty if nothing is removable)
    """
    prunable = [node.handle for node in tree if is_prunable(node.kind)]

    candidates: List[Candidate] = []
    for handle in unreferenced(state, prunable):
        leaf = LeafCandidate(handle)
        if leaf.check(tree):
            candidates.append(leaf)

    if all_at_once and candidates:
        return [GroupCandidate(candidates)]
    return candidates
