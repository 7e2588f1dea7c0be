"""Relation graph construction for liveness propagation.

The builder is handed to the front end's single traversal. Relations are
reported locally at each node as they are discovered; anything that needs the
whole node set (name lookups, out-of-line scopes, specialization primaries,
using targets) is queued and resolved once in :meth:`RelationBuilder.freeze`.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import networkx as nx

from .model import DeclKind, ProgramTree, Span, is_prunable

logger = logging.getLogger(__name__)


class GroupSource(Enum):
    """Relation that put the members of an equivalence group together."""
    SPAN = "span"
    TEMPLATE = "template"
    REDECLARATION = "redeclaration"
    USING = "using"


@dataclass(frozen=True)
class EquivalenceGroup:
    """Nodes forced to share identical liveness."""
    source: GroupSource
    members: Tuple[int, ...]


@dataclass(frozen=True)
class Lookup:
    """A name observed at a source offset, waiting to be resolved."""
    name: str
    offset: int


@dataclass(frozen=True)
class RelationGraph:
    """Immutable snapshot handed from the builder to the propagator.

    ``containment`` is a frozen networkx DiGraph whose edges point from a
    child to each of its enclosing (lexical or semantic) parents.
    ``references`` holds (site, target) pairs: the target is referenced
    once the declaration that names it is.
    """
    node_count: int
    groups: Tuple[EquivalenceGroup, ...]
    containment: nx.DiGraph
    seeds_referenced: FrozenSet[int]
    seeds_used: FrozenSet[int]
    references: FrozenSet[Tuple[int, int]] = frozenset()

    def groups_of(self, source: GroupSource) -> List[EquivalenceGroup]:
        return [group for group in self.groups if group.source == source]


def _qualified_matches(candidate: Optional[str], wanted: str) -> bool:
    if not candidate:
        return False
    return candidate == wanted or candidate.endswith("::" + wanted)


class RelationBuilder:
    """Accumulate nodes, groups, containment edges and seeds during one traversal."""

    def __init__(self, tree: ProgramTree):
        """Initialize builder over a (possibly still growing) program tree.

        Args:
            tree: Program tree whose nodes are registered through this builder
        """
        self.tree = tree
        self._registered: Set[int] = set()
        self._span_buckets: Dict[Span, List[int]] = defaultdict(list)
        self._pairs: List[EquivalenceGroup] = []
        self._containment = nx.DiGraph()
        self._seeds_referenced: Set[int] = set()
        self._seeds_used: Set[int] = set()
        self._references: Set[Tuple[int, int]] = set()

        # Indexes for deferred resolution
        self._by_name: Dict[str, List[int]] = defaultdict(list)
        self._by_qualified: Dict[str, List[int]] = defaultdict(list)
        self._first_declaration: Dict[Tuple[DeclKind, str], int] = {}
        self._scopes: Set[int] = set()

        # Deferred requests
        self._lookups: List[Lookup] = []
        self._semantic_scopes: List[Tuple[int, str]] = []
        self._specializations: List[Tuple[int, str]] = []
        self._using_groups: List[Tuple[int, Tuple[int, ...], str]] = []
        self._frozen = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, handle: int):
        """Register a node: span bucket, containment edges, mandatory seeding.

        Raises:
            ValueError: If the node was already registered
        """
        if handle in self._registered:
            raise ValueError(f"Node {handle} registered twice")
        self._registered.add(handle)

        node = self.tree.node(handle)
        self._containment.add_node(handle)
        if node.span is not None:
            self._span_buckets[node.span].append(handle)
        for parent in self.tree.parents(handle):
            self._containment.add_edge(handle, parent)

        if node.name:
            self._by_name[node.name].append(handle)
        if node.qualified_name:
            self._by_qualified[node.qualified_name].append(handle)

        if self.tree.must_be_emitted(handle):
            self._seeds_referenced.add(handle)
            self._seeds_used.add(handle)

    def note_redeclaration(self, handle: int):
        """Link a node to the first earlier declaration of the same entity.

        Entities are identified by kind and qualified name, which links a
        prototype to its definition and an in-class member declaration to its
        out-of-line definition.
        """
        node = self.tree.node(handle)
        if not node.qualified_name or node.kind == DeclKind.OTHER:
            return
        key = (node.kind, node.qualified_name)
        previous = self._first_declaration.get(key)
        if previous is None:
            self._first_declaration[key] = handle
        elif previous != handle:
            self._pairs.append(EquivalenceGroup(GroupSource.REDECLARATION, (previous, handle)))

    def link_template(self, pattern: int, instance: int):
        """Link a template to its templated declaration (or an instantiation to its pattern)."""
        self._pairs.append(EquivalenceGroup(GroupSource.TEMPLATE, (pattern, instance)))

    def link_redeclaration(self, first: int, second: int):
        self._pairs.append(EquivalenceGroup(GroupSource.REDECLARATION, (first, second)))

    def link_using(self, using: int, shadows: Iterable[int], targets: Iterable[int] = ()):
        """Put a using-declaration, its shadows and their targets in one group."""
        members = (using,) + tuple(shadows) + tuple(targets)
        self._pairs.append(EquivalenceGroup(GroupSource.USING, members))

    def declare_scope(self, handle: int):
        """Mark a node (namespace or record) as able to own out-of-line members."""
        self._scopes.add(handle)

    def mark_referenced(self, handle: int):
        self._seeds_referenced.add(handle)

    def mark_used(self, handle: int):
        self._seeds_used.add(handle)

    # ------------------------------------------------------------------
    # Deferred requests
    # ------------------------------------------------------------------

    def lookup(self, name: str, offset: int):
        """Record a name lookup observed at a source offset."""
        self._lookups.append(Lookup(name, offset))

    def request_semantic_parent(self, handle: int, scope: str):
        """Attach a node to the record or namespace named by an out-of-line qualifier."""
        self._semantic_scopes.append((handle, scope))

    def request_primary(self, specialization: int, qualified_name: str):
        """Link an explicit or partial specialization to its primary template."""
        self._specializations.append((specialization, qualified_name))

    def request_using_targets(self, using: int, shadows: Iterable[int], target: str):
        """Group a using-declaration with its shadows and every declaration of ``target``."""
        self._using_groups.append((using, tuple(shadows), target))

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def freeze(self) -> RelationGraph:
        """Resolve deferred requests and hand off an immutable relation graph.

        Raises:
            RuntimeError: If called twice
        """
        if self._frozen:
            raise RuntimeError("RelationBuilder.freeze() called twice")
        self._frozen = True

        self._resolve_lookups()
        self._resolve_semantic_scopes()
        self._resolve_specializations()
        self._resolve_using_groups()

        groups: List[EquivalenceGroup] = []
        for members in self._span_buckets.values():
            if len(members) > 1:
                groups.append(EquivalenceGroup(GroupSource.SPAN, tuple(members)))
        groups.extend(self._pairs)

        graph = RelationGraph(
            node_count=len(self.tree),
            groups=tuple(groups),
            containment=nx.freeze(self._containment),
            seeds_referenced=frozenset(self._seeds_referenced),
            seeds_used=frozenset(self._seeds_used),
            references=frozenset(self._references),
        )
        logger.debug(
            "Relation graph: %d nodes, %d groups, %d containment edges, %d referenced seeds, %d references",
            graph.node_count, len(graph.groups), graph.containment.number_of_edges(),
            len(graph.seeds_referenced), len(graph.references),
        )
        return graph

    def _find_qualified(self, wanted: str) -> List[int]:
        exact = self._by_qualified.get(wanted)
        if exact:
            return list(exact)
        return [
            handle
            for qualified, handles in self._by_qualified.items()
            if _qualified_matches(qualified, wanted)
            for handle in handles
        ]

    def _resolve_lookups(self):
        """Seed lookup targets, or make them conditional on the declaration doing the lookup.

        A name used inside a prunable declaration only matters if that
        declaration survives, so it becomes a reference edge from the
        innermost enclosing prunable declaration to every target. Names used
        anywhere else (file scope, macro bodies, protected material) seed the
        targets directly.
        """
        owners = self._site_owners(lookup.offset for lookup in self._lookups)
        for lookup in self._lookups:
            owner = owners[lookup.offset]
            for handle in self._by_name.get(lookup.name, ()):
                if owner is None:
                    self._seeds_referenced.add(handle)
                elif owner != handle:
                    self._references.add((owner, handle))

    def _site_owners(self, offsets: Iterable[int]) -> Dict[int, Optional[int]]:
        """Map each offset to the innermost prunable declaration whose span contains it."""
        spans = sorted(
            (node.span.start, -node.span.end, node.handle)
            for node in self.tree
            if node.span is not None and is_prunable(node.kind)
        )
        owners: Dict[int, Optional[int]] = {}
        open_spans: List[Tuple[int, int, int]] = []
        index = 0
        for offset in sorted(set(offsets)):
            while index < len(spans) and spans[index][0] <= offset:
                open_spans.append(spans[index])
                index += 1
            while open_spans and -open_spans[-1][1] <= offset:
                open_spans.pop()
            if not open_spans or self.tree.is_protected(Span(offset, offset + 1)):
                owners[offset] = None
            else:
                owners[offset] = open_spans[-1][2]
        return owners

    def _resolve_semantic_scopes(self):
        for handle, scope in self._semantic_scopes:
            for parent in self._find_qualified(scope):
                if parent == handle or parent not in self._scopes:
                    continue
                self._containment.add_edge(handle, parent)

    def _resolve_specializations(self):
        specializations = {handle for handle, _ in self._specializations}
        for handle, qualified_name in self._specializations:
            kind = self.tree.node(handle).kind
            for primary in self._by_qualified.get(qualified_name, ()):
                if primary in specializations or self.tree.node(primary).kind != kind:
                    continue
                self._pairs.append(EquivalenceGroup(GroupSource.TEMPLATE, (primary, handle)))

    def _resolve_using_groups(self):
        for using, shadows, target in self._using_groups:
            excluded = {using, *shadows}
            targets = [handle for handle in self._find_qualified(target) if handle not in excluded]
            if not targets:
                logger.debug("Using-declaration %d: no target found for %s", using, target)
            self._pairs.append(EquivalenceGroup(GroupSource.USING, (using,) + shadows + tuple(targets)))
