"""Fixpoint liveness propagation over the relation graph."""
import logging
from typing import Iterable, List

from .relations import RelationGraph

logger = logging.getLogger(__name__)


class LivenessState:
    """The two monotone liveness flags, indexed by node handle.

    Flags can only be raised. Every setter reports whether it changed
    anything, which is what the fixpoint loop keys off.
    """

    def __init__(self, node_count: int):
        self.referenced: List[bool] = [False] * node_count
        self.used: List[bool] = [False] * node_count

    @classmethod
    def seeded(cls, graph: RelationGraph) -> "LivenessState":
        state = cls(graph.node_count)
        for handle in graph.seeds_referenced:
            state.referenced[handle] = True
        for handle in graph.seeds_used:
            state.used[handle] = True
        return state

    def __len__(self) -> int:
        return len(self.referenced)

    def set_referenced(self, handle: int) -> bool:
        if self.referenced[handle]:
            return False
        self.referenced[handle] = True
        return True

    def set_used(self, handle: int) -> bool:
        if self.used[handle]:
            return False
        self.used[handle] = True
        return True

    def is_referenced(self, handle: int) -> bool:
        return self.referenced[handle]

    def is_used(self, handle: int) -> bool:
        return self.used[handle]


class LivenessPropagator:
    """Drive ``referenced``/``used`` to a fixpoint.

    Each pass closes every equivalence group (any member set means all
    members set), carries flags along reference edges from a declaration to
    the names it uses, and then pushes each child's flags up to its containment
    parents. Passes repeat until one changes nothing. All updates are
    monotone ORs, so the result does not depend on visiting order.
    """

    def __init__(self, graph: RelationGraph):
        """Initialize propagator.

        Args:
            graph: Frozen relation graph produced by RelationBuilder.freeze()
        """
        self.graph = graph
        self.passes = 0

    def run(self) -> LivenessState:
        """Seed the flags from the graph and propagate until nothing changes.

        Returns:
            LivenessState at the fixpoint
        """
        state = LivenessState.seeded(self.graph)
        self.passes = 0

        changed = True
        while changed:
            self.passes += 1
            # Every step runs on every pass; no short-circuit
            changed = self._close_groups(state)
            changed = self._follow_references(state) or changed
            changed = self._lift_containment(state) or changed

        logger.debug(
            "Liveness fixpoint after %d pass(es): %d/%d referenced, %d used",
            self.passes, sum(state.referenced), len(state), sum(state.used),
        )
        return state

    def _close_groups(self, state: LivenessState) -> bool:
        changed = False
        for group in self.graph.groups:
            members = group.members
            if len(members) < 2:
                continue

            if any(state.referenced[member] for member in members):
                for member in members:
                    changed = state.set_referenced(member) or changed

            if any(state.used[member] for member in members):
                for member in members:
                    changed = state.set_used(member) or changed
        return changed

    def _follow_references(self, state: LivenessState) -> bool:
        changed = False
        for site, target in self.graph.references:
            if state.referenced[site]:
                changed = state.set_referenced(target) or changed
            if state.used[site]:
                changed = state.set_used(target) or changed
        return changed

    def _lift_containment(self, state: LivenessState) -> bool:
        changed = False
        for child, parent in self.graph.containment.edges():
            if state.referenced[child]:
                changed = state.set_referenced(parent) or changed
            if state.used[child]:
                changed = state.set_used(parent) or changed
        return changed


def propagate(graph: RelationGraph) -> LivenessState:
    """Convenience wrapper: run a propagator over ``graph`` and return the state."""
    return LivenessPropagator(graph).run()


def unreferenced(state: LivenessState, handles: Iterable[int]) -> List[int]:
    """Handles among ``handles`` whose ``referenced`` flag is still clear."""
    return [handle for handle in handles if not state.referenced[handle]]
