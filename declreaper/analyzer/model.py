"""Declaration node model: handles, spans, kind tags and the program tree arena."""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .origins import SourceOrigins


class DeclKind(Enum):
    """Closed set of declaration kinds the engine distinguishes."""
    FUNCTION = "Function"
    TYPE_ALIAS = "TypeAlias"
    USING_ALIAS = "UsingAlias"
    RECORD_TYPE = "RecordType"
    OTHER = "Other"


@dataclass(frozen=True)
class KindCapability:
    """What the engine is allowed to do with a declaration kind."""
    prunable: bool
    needs_terminator: bool  # Fold a trailing ';' into the removable span


KIND_CAPABILITIES: Dict[DeclKind, KindCapability] = {
    DeclKind.FUNCTION: KindCapability(prunable=True, needs_terminator=False),
    DeclKind.TYPE_ALIAS: KindCapability(prunable=True, needs_terminator=False),
    DeclKind.USING_ALIAS: KindCapability(prunable=True, needs_terminator=False),
    DeclKind.RECORD_TYPE: KindCapability(prunable=True, needs_terminator=True),
    DeclKind.OTHER: KindCapability(prunable=False, needs_terminator=False),
}


def is_prunable(kind: DeclKind) -> bool:
    """Return True if declarations of this kind may ever become candidates."""
    return KIND_CAPABILITIES[kind].prunable


@dataclass(frozen=True)
class Span:
    """Half-open byte range [start, end) into one source buffer."""
    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def __str__(self) -> str:
        return f"[{self.start}:{self.end})"


@dataclass(frozen=True)
class DeclarationNode:
    """One declaration occurrence in the program tree.

    Nodes are never copied out of the arena: everything else in the engine
    refers to them by ``handle``. Liveness flags live in
    :class:`~declreaper.analyzer.propagator.LivenessState`, indexed by the
    same handle.
    """
    handle: int
    kind: DeclKind
    name: Optional[str] = None
    qualified_name: Optional[str] = None
    span: Optional[Span] = None  # None for nodes without standalone text
    lexical_parent: Optional[int] = None
    semantic_parent: Optional[int] = None
    mandatory: bool = False  # Required-output predicate result
    implicit: bool = False  # Synthesized, no source text of its own

    def describe(self) -> str:
        """Short human-readable label used in logs and tables."""
        label = self.qualified_name or self.name or "<anonymous>"
        return f"{self.kind.value} {label}"


class ProgramTree:
    """Arena of declaration nodes plus the source they were read from.

    This is the engine's view of the external parser: canonical identity
    (the handle), span lookup, kind, containment lookup and the
    ``must_be_emitted`` predicate. Front ends populate it through
    :meth:`add`; the core only reads it.
    """

    def __init__(self, source: bytes = b"", origins: Optional[SourceOrigins] = None,
                 must_be_emitted: Optional[Callable[[DeclarationNode], bool]] = None):
        """Initialize an empty tree.

        Args:
            source: Original source bytes the spans point into
            origins: Linemarker origin map used for the protected-material policy
            must_be_emitted: Optional override of the required-output predicate;
                             defaults to each node's ``mandatory`` flag
        """
        self.source = source
        self.origins = origins
        self._must_be_emitted = must_be_emitted
        self._nodes: List[DeclarationNode] = []

    def add(self, kind: DeclKind, name: Optional[str] = None, qualified_name: Optional[str] = None,
            span: Optional[Span] = None, lexical_parent: Optional[int] = None,
            semantic_parent: Optional[int] = None, mandatory: bool = False,
            implicit: bool = False) -> int:
        """Register a declaration and return its handle.

        Raises:
            ValueError: If a parent handle is unknown or the span is malformed
        """
        for parent in (lexical_parent, semantic_parent):
            if parent is not None and not 0 <= parent < len(self._nodes):
                raise ValueError(f"Unknown parent handle: {parent}")
        if span is not None and (span.start < 0 or span.end < span.start):
            raise ValueError(f"Malformed span: {span}")

        handle = len(self._nodes)
        self._nodes.append(DeclarationNode(
            handle=handle,
            kind=kind,
            name=name,
            qualified_name=qualified_name if qualified_name is not None else name,
            span=span,
            lexical_parent=lexical_parent,
            semantic_parent=semantic_parent,
            mandatory=mandatory,
            implicit=implicit,
        ))
        return handle

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[DeclarationNode]:
        return iter(self._nodes)

    def node(self, handle: int) -> DeclarationNode:
        return self._nodes[handle]

    def parents(self, handle: int) -> Tuple[int, ...]:
        """Lexical and semantic parents of a node, without duplicates."""
        node = self._nodes[handle]
        parents = []
        for parent in (node.lexical_parent, node.semantic_parent):
            if parent is not None and parent not in parents:
                parents.append(parent)
        return tuple(parents)

    def must_be_emitted(self, handle: int) -> bool:
        node = self._nodes[handle]
        if self._must_be_emitted is not None:
            return self._must_be_emitted(node)
        return node.mandatory

    def full_span(self, handle: int) -> Optional[Span]:
        """Resolve the complete removable span of a declaration.

        Looked up fresh on every call. Kinds whose capability requires it get
        the trailing ';' terminator (after optional whitespace) folded in.

        Returns:
            Span, or None if the node has no standalone text or the span
            falls outside the source buffer
        """
        node = self._nodes[handle]
        span = node.span
        if span is None:
            return None
        if self.source and span.end > len(self.source):
            return None

        if self.source and KIND_CAPABILITIES[node.kind].needs_terminator:
            cursor = span.end
            while cursor < len(self.source) and self.source[cursor] in b" \t\r\n\f\v":
                cursor += 1
            if cursor < len(self.source) and self.source[cursor] == ord(";"):
                span = Span(span.start, cursor + 1)

        return span

    def is_protected(self, span: Span) -> bool:
        """Return True if either end of the span comes from protected material."""
        if self.origins is None or len(span) == 0:
            return False
        return self.origins.is_protected(span.start) or self.origins.is_protected(span.end - 1)
