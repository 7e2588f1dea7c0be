"""Declaration extraction from parsed C/C++ syntax trees.

One recursive walk over the tree-sitter tree registers every declaration in a
:class:`ProgramTree` and reports its relations to a :class:`RelationBuilder`
(template pairs, redeclarations, using groups, out-of-line scopes). Every
identifier outside a declaring position becomes a name lookup, resolved when
the builder is frozen.
"""
import logging
import re
from dataclasses import dataclass, field, replace
from typing import ClassVar, Iterable, List, Optional, Set, Tuple

from tree_sitter import Node

from .model import DeclKind, ProgramTree, Span
from .origins import SourceOrigins
from .parser import LanguageParser
from .relations import RelationBuilder, RelationGraph

logger = logging.getLogger(__name__)

IDENTIFIER_TYPES = {'identifier', 'type_identifier', 'field_identifier', 'namespace_identifier'}

# Parents under which a record specifier is a statement of its own
STANDALONE_PARENTS = {
    'translation_unit',
    'declaration_list',
    'field_declaration_list',
    'template_declaration',
    'compound_statement',
    'linkage_specification',
    'preproc_if',
    'preproc_ifdef',
    'preproc_else',
    'preproc_elif',
    'preproc_elifdef',
}

# Declarator wrappers that only decorate the declared name
DECLARATOR_WRAPPERS = {
    'pointer_declarator',
    'reference_declarator',
    'array_declarator',
    'parenthesized_declarator',
    'attributed_declarator',
    'init_declarator',
    'function_declarator',
}

DECLARATOR_NOISE = {
    'type_qualifier',
    'attribute_declaration',
    'attribute_specifier',
    'ms_based_modifier',
    'ms_pointer_modifier',
    'ms_call_modifier',
}

SPECIFIER_TYPES = {
    'storage_class_specifier',
    'virtual',
    'virtual_function_specifier',
    'virtual_specifier',
    'function_specifier',
}
SPECIFIER_KEYWORDS = {'static', 'inline', 'virtual', 'extern'}

MACRO_IDENTIFIER = re.compile(rb'[A-Za-z_]\w*')

# Default for _add: take the span from the syntax node itself
_NODE_SPAN = object()


@dataclass
class EmissionPolicy:
    """Required-output predicate for declarations the compiler must emit.

    ``main`` is always required. Names listed in ``required_names`` (plain or
    qualified) are required whatever their kind. With ``retain_external``,
    every non-static, non-inline, non-template function definition outside a
    class body is required as well.
    """
    required_names: Set[str] = field(default_factory=set)
    retain_external: bool = False

    ENTRY_POINTS: ClassVar[Tuple[str, ...]] = ('main',)

    def must_emit(self, kind: DeclKind, name: Optional[str], qualified_name: Optional[str],
                  is_definition: bool = False, specifiers: Iterable[str] = (),
                  in_template: bool = False, in_record: bool = False) -> bool:
        if not name:
            return False
        if name in self.required_names or qualified_name in self.required_names:
            return True
        if kind != DeclKind.FUNCTION:
            return False
        if qualified_name in self.ENTRY_POINTS:
            return True
        if not (self.retain_external and is_definition):
            return False
        specifiers = set(specifiers)
        return not ('static' in specifiers or 'inline' in specifiers or in_template or in_record)


@dataclass(frozen=True)
class _Scope:
    """Traversal context handed down the recursion."""
    parent: Optional[int]
    names: Tuple[str, ...] = ()
    template: Optional[Tuple[int, Node]] = None  # Enclosing template_declaration (handle, node)
    in_record: bool = False
    in_template: bool = False

    def enter(self, parent: int, *names: str, in_record: bool = False) -> '_Scope':
        return replace(self, parent=parent, names=self.names + names,
                       template=None, in_record=in_record)


class DeclarationExtractor:
    """Build the program tree and relation graph for one C/C++ source buffer."""

    HANDLERS = {
        'function_definition': '_visit_function',
        'declaration': '_visit_declaration',
        'field_declaration': '_visit_declaration',
        'type_definition': '_visit_type_definition',
        'alias_declaration': '_visit_alias',
        'using_declaration': '_visit_using',
        'class_specifier': '_visit_record',
        'struct_specifier': '_visit_record',
        'union_specifier': '_visit_record',
        'enum_specifier': '_visit_enum',
        'template_declaration': '_visit_template',
        'template_instantiation': '_visit_instantiation',
        'namespace_definition': '_visit_namespace',
        'linkage_specification': '_visit_linkage',
        'preproc_arg': '_visit_macro_body',
    }

    def __init__(self, language: str = 'cpp', policy: Optional[EmissionPolicy] = None):
        """Initialize extractor.

        Args:
            language: One of 'c', 'cpp'
            policy: Required-output policy; defaults to keeping only ``main``

        Raises:
            ValueError: If language is not supported
        """
        self.language = language
        self.parser = LanguageParser(language)
        self.policy = policy or EmissionPolicy()

    def extract(self, source: bytes,
                origins: Optional[SourceOrigins] = None) -> Tuple[ProgramTree, RelationGraph]:
        """Parse ``source`` and extract its declarations.

        Linemarker lines are blanked before parsing so the grammar never sees
        them; offsets stay valid in the original bytes.

        Args:
            source: Raw source bytes
            origins: Origin map of the same bytes (built here if omitted)

        Returns:
            Tuple of (program tree, frozen relation graph)
        """
        origins = origins or SourceOrigins(source)
        self._source = origins.masked_source()
        self._declaring: Set[int] = set()
        self.tree = ProgramTree(source, origins)
        self.builder = RelationBuilder(self.tree)

        root = self.parser.parse_source(self._source).root_node
        if root.has_error:
            logger.warning("Input has syntax errors; extraction is best effort")

        unit = self.tree.add(DeclKind.OTHER, span=Span(root.start_byte, root.end_byte))
        self.builder.register(unit)
        self._visit_children(root, _Scope(parent=unit))

        graph = self.builder.freeze()
        logger.debug("Extracted %d declaration node(s)", len(self.tree))
        return self.tree, graph

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _visit(self, node: Node, scope: _Scope):
        handler = self.HANDLERS.get(node.type)
        if handler is not None:
            getattr(self, handler)(node, scope)
            return

        if node.type in IDENTIFIER_TYPES:
            if node.id not in self._declaring:
                self.builder.lookup(self._text(node), node.start_byte)
            return

        self._visit_children(node, scope)

    def _visit_children(self, node: Node, scope: _Scope):
        for child in node.children:
            self._visit(child, scope)

    def _visit_function(self, node: Node, scope: _Scope):
        declarator = node.child_by_field_name('declarator')
        if declarator is None:
            self._visit_children(node, scope)
            return
        self._register_function(node, declarator, scope, is_definition=True)

    def _visit_declaration(self, node: Node, scope: _Scope):
        declarators = node.children_by_field_name('declarator')
        if len(declarators) == 1 and self._is_function_declarator(declarators[0]):
            self._register_function(node, declarators[0], scope, is_definition=False)
            return
        if not declarators:
            self._visit_children(node, scope)
            return

        # Variables and fields are kept, but still own whatever they contain
        name = None
        for declarator in declarators:
            name_node, scope_nodes, _ = self._declarator_name(declarator)
            if name_node is None:
                continue
            self._mark_declaring(name_node, scope_nodes)
            name = name or self._name_text(name_node)
        handle = self._add(DeclKind.OTHER, node, scope, name, self._qualify(scope.names, name))
        self._visit_children(node, replace(scope, parent=handle, template=None))

    def _register_function(self, node: Node, declarator: Node, scope: _Scope, is_definition: bool):
        name_node, scope_nodes, specialized = self._declarator_name(declarator)
        if name_node is None:
            self._visit_children(node, scope)
            return

        self._mark_declaring(name_node, scope_nodes)
        name = self._name_text(name_node)
        outer = tuple(self._scope_text(scope_node) for scope_node in scope_nodes)
        qualified = self._qualify(scope.names + outer, name)
        specifiers = self._specifiers(node)
        mandatory = self.policy.must_emit(
            DeclKind.FUNCTION, name, qualified,
            is_definition=is_definition,
            specifiers=specifiers,
            in_template=scope.in_template,
            in_record=scope.in_record,
        )

        handle = self._add(DeclKind.FUNCTION, node, scope, name, qualified, mandatory)
        if outer:
            self.builder.request_semantic_parent(handle, '::'.join(scope.names + outer))
        if specialized:
            self.builder.request_primary(handle, qualified)
        else:
            self.builder.note_redeclaration(handle)
        # Destructors, virtuals and operators are used implicitly by the compiler
        if name_node.type in ('destructor_name', 'operator_name') or 'virtual' in specifiers:
            self.builder.mark_used(handle)

        self._visit_children(node, scope.enter(handle, *outer, name))

    def _visit_type_definition(self, node: Node, scope: _Scope):
        handles = []
        for declarator in node.children_by_field_name('declarator'):
            name_node, scope_nodes, _ = self._declarator_name(declarator)
            if name_node is None:
                continue
            self._mark_declaring(name_node, scope_nodes)
            name = self._name_text(name_node)
            qualified = self._qualify(scope.names, name)
            mandatory = self.policy.must_emit(DeclKind.TYPE_ALIAS, name, qualified)
            handle = self._add(DeclKind.TYPE_ALIAS, node, scope, name, qualified, mandatory)
            self.builder.note_redeclaration(handle)
            handles.append(handle)

        parent = handles[0] if handles else scope.parent
        self._visit_children(node, replace(scope, parent=parent, template=None))

    def _visit_alias(self, node: Node, scope: _Scope):
        name_node = node.child_by_field_name('name')
        if name_node is None:
            self._visit_children(node, scope)
            return

        self._mark_declaring(name_node, [])
        name = self._name_text(name_node)
        qualified = self._qualify(scope.names, name)
        mandatory = self.policy.must_emit(DeclKind.USING_ALIAS, name, qualified)
        handle = self._add(DeclKind.USING_ALIAS, node, scope, name, qualified, mandatory)
        self.builder.note_redeclaration(handle)
        self._visit_children(node, replace(scope, parent=handle, template=None))

    def _visit_using(self, node: Node, scope: _Scope):
        # using-directives and using-enum declarations introduce no shadow
        if any(child.type in ('namespace', 'enum') for child in node.children):
            handle = self._add(DeclKind.OTHER, node, scope, None, None)
            self._visit_children(node, replace(scope, parent=handle, template=None))
            return

        target = next(
            (child for child in node.named_children
             if child.type in ('identifier', 'qualified_identifier')),
            None,
        )
        name_node, scope_nodes, _ = self._declarator_name(target) if target else (None, [], False)
        if name_node is None:
            self._visit_children(node, scope)
            return

        self._mark_declaring(name_node, scope_nodes)
        name = self._name_text(name_node)
        target_name = self._qualify([self._scope_text(s) for s in scope_nodes], name)

        using = self._add(DeclKind.OTHER, node, scope, None, None)
        shadow = self.tree.add(
            DeclKind.OTHER,
            name=name,
            qualified_name=self._qualify(scope.names, name),
            lexical_parent=scope.parent,
            implicit=True,
        )
        self.builder.register(shadow)
        self.builder.request_using_targets(using, [shadow], target_name)
        self._visit_children(node, replace(scope, parent=using, template=None))

    def _visit_record(self, node: Node, scope: _Scope):
        name_node = node.child_by_field_name('name')
        body = node.child_by_field_name('body')
        span = self._standalone_span(node, scope)

        # Elaborated type references (`struct S *p`) are plain lookups
        if body is None and (name_node is None or span is None):
            self._visit_children(node, scope)
            return

        name = qualified = None
        outer: Tuple[str, ...] = ()
        specialized = False
        if name_node is not None:
            inner, scope_nodes, specialized = self._declarator_name(name_node)
            if inner is not None:
                self._mark_declaring(inner, scope_nodes)
                name = self._name_text(inner)
                outer = tuple(self._scope_text(scope_node) for scope_node in scope_nodes)
                qualified = self._qualify(scope.names + outer, name)

        mandatory = self.policy.must_emit(DeclKind.RECORD_TYPE, name, qualified)
        handle = self._add(DeclKind.RECORD_TYPE, node, scope, name, qualified, mandatory, span=span)
        self.builder.declare_scope(handle)
        if name is not None:
            if outer:
                self.builder.request_semantic_parent(handle, '::'.join(scope.names + outer))
            if specialized:
                self.builder.request_primary(handle, qualified)
            else:
                self.builder.note_redeclaration(handle)

        self._visit_children(node, scope.enter(handle, *outer, name or '', in_record=True))

    def _visit_enum(self, node: Node, scope: _Scope):
        name_node = node.child_by_field_name('name')
        body = node.child_by_field_name('body')
        if body is None:
            self._visit_children(node, scope)
            return

        name = None
        if name_node is not None:
            self._mark_declaring(name_node, [])
            name = self._name_text(name_node)
        for enumerator in body.named_children:
            enumerator_name = enumerator.child_by_field_name('name')
            if enumerator_name is not None:
                self._declaring.add(enumerator_name.id)

        handle = self._add(DeclKind.OTHER, node, scope, name, self._qualify(scope.names, name),
                           span=self._standalone_span(node, scope))
        self._visit_children(node, replace(scope, parent=handle, template=None))

    def _visit_template(self, node: Node, scope: _Scope):
        handle = self._add(DeclKind.OTHER, node, scope, None, None)
        self._visit_children(node, replace(
            scope, parent=handle, template=(handle, node), in_template=True,
        ))

    def _visit_instantiation(self, node: Node, scope: _Scope):
        handle = self._add(DeclKind.OTHER, node, scope, None, None)
        self._visit_children(node, replace(scope, parent=handle, template=None))

    def _visit_namespace(self, node: Node, scope: _Scope):
        name_node = node.child_by_field_name('name')
        parts: Tuple[str, ...] = ()
        if name_node is not None:
            self._mark_identifiers(name_node)
            parts = tuple(part for part in self._name_text(name_node).replace(' ', '').split('::') if part)

        name = parts[-1] if parts else None
        qualified = self._qualify(scope.names + parts[:-1], name)
        handle = self._add(DeclKind.OTHER, node, scope, name, qualified)
        self.builder.declare_scope(handle)
        self._visit_children(node, scope.enter(handle, *parts))

    def _visit_linkage(self, node: Node, scope: _Scope):
        handle = self._add(DeclKind.OTHER, node, scope, None, None)
        self._visit_children(node, replace(scope, parent=handle, template=None))

    def _visit_macro_body(self, node: Node, scope: _Scope):
        """Treat every identifier-like token in a macro body as a lookup."""
        for match in MACRO_IDENTIFIER.finditer(self._source, node.start_byte, node.end_byte):
            self.builder.lookup(match.group().decode('utf-8', errors='replace'),
                                match.start())

    # ------------------------------------------------------------------
    # Registration helpers
    # ------------------------------------------------------------------

    def _add(self, kind: DeclKind, node: Node, scope: _Scope, name: Optional[str],
             qualified: Optional[str], mandatory: bool = False,
             span=_NODE_SPAN) -> int:
        """Add a node to the tree, register it and link it to its template.

        Pass an explicit ``span`` (possibly None) for type specifiers, whose
        removable text depends on where they appear.
        """
        templated = self._is_templated(node, scope)
        if span is _NODE_SPAN:
            span = self._span_for(node, scope)

        handle = self.tree.add(
            kind,
            name=name,
            qualified_name=qualified,
            span=span,
            lexical_parent=scope.parent,
            mandatory=mandatory,
        )
        self.builder.register(handle)
        if templated:
            self.builder.link_template(scope.template[0], handle)
        return handle

    def _is_templated(self, node: Node, scope: _Scope) -> bool:
        return (
            scope.template is not None
            and node.parent is not None
            and node.parent.id == scope.template[1].id
        )

    def _span_for(self, node: Node, scope: _Scope) -> Span:
        """Removable span of a node; a templated declaration takes its template's span."""
        if self._is_templated(node, scope):
            template = scope.template[1]
            return Span(template.start_byte, template.end_byte)
        return Span(node.start_byte, node.end_byte)

    def _standalone_span(self, node: Node, scope: _Scope) -> Optional[Span]:
        """Span of a type specifier that stands on its own, or None if it is embedded."""
        parent = node.parent
        if parent is None:
            return None
        if self._is_templated(node, scope) or parent.type in STANDALONE_PARENTS:
            return self._span_for(node, scope)
        if (parent.type in ('declaration', 'field_declaration')
                and parent.child_by_field_name('declarator') is None):
            return Span(parent.start_byte, parent.end_byte)
        return None

    # ------------------------------------------------------------------
    # Name helpers
    # ------------------------------------------------------------------

    def _declarator_name(self, declarator: Node) -> Tuple[Optional[Node], List[Node], bool]:
        """Find the declared name inside a declarator chain.

        Returns:
            Tuple of (name node or None, qualifier scope nodes outermost first,
            whether the name carries template arguments)
        """
        scopes: List[Node] = []
        specialized = False
        current = declarator
        while current is not None:
            kind = current.type
            if kind in IDENTIFIER_TYPES or kind in ('destructor_name', 'operator_name'):
                return current, scopes, specialized
            if kind == 'qualified_identifier':
                qualifier = current.child_by_field_name('scope')
                if qualifier is not None:
                    scopes.append(qualifier)
                current = current.child_by_field_name('name')
            elif kind in ('template_function', 'template_type'):
                specialized = True
                current = current.child_by_field_name('name')
            elif kind in DECLARATOR_WRAPPERS:
                inner = current.child_by_field_name('declarator')
                if inner is None:
                    inner = next(
                        (child for child in current.named_children
                         if child.type not in DECLARATOR_NOISE),
                        None,
                    )
                current = inner
            else:
                return None, scopes, specialized
        return None, scopes, specialized

    def _is_function_declarator(self, declarator: Node) -> bool:
        current = declarator
        while current is not None and current.type in (
                'pointer_declarator', 'reference_declarator', 'attributed_declarator'):
            inner = current.child_by_field_name('declarator')
            if inner is None:
                inner = next(
                    (child for child in current.named_children
                     if child.type not in DECLARATOR_NOISE),
                    None,
                )
            current = inner
        if current is None or current.type != 'function_declarator':
            return False
        inner = current.child_by_field_name('declarator')
        # `int (*fp)(int)` declares a pointer variable, not a function
        return inner is not None and inner.type != 'parenthesized_declarator'

    def _mark_declaring(self, name_node: Node, scope_nodes: Iterable[Node]):
        if name_node.type == 'operator_name':
            self._declaring.add(name_node.id)
        else:
            self._mark_identifiers(name_node)
        for scope_node in scope_nodes:
            if scope_node.type == 'template_type':
                inner = scope_node.child_by_field_name('name')
                if inner is not None:
                    self._declaring.add(inner.id)
            else:
                self._mark_identifiers(scope_node)

    def _mark_identifiers(self, node: Node):
        if node.type in IDENTIFIER_TYPES:
            self._declaring.add(node.id)
        for child in node.children:
            self._mark_identifiers(child)

    def _specifiers(self, node: Node) -> Set[str]:
        """Storage class and function specifier keywords written before the declarator."""
        declarator = node.child_by_field_name('declarator')
        limit = declarator.start_byte if declarator is not None else node.end_byte
        words = set()
        for child in node.children:
            if child.start_byte >= limit:
                break
            if child.type in SPECIFIER_TYPES or child.type in SPECIFIER_KEYWORDS:
                words.add(self._text(child))
        return words

    def _scope_text(self, scope_node: Node) -> str:
        if scope_node.type == 'template_type':
            inner = scope_node.child_by_field_name('name')
            if inner is not None:
                return self._text(inner)
        return self._name_text(scope_node)

    def _name_text(self, node: Node) -> str:
        return ' '.join(self._text(node).split())

    def _text(self, node: Node) -> str:
        return self._source[node.start_byte:node.end_byte].decode('utf-8', errors='replace')

    @staticmethod
    def _qualify(names: Iterable[str], name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        return '::'.join([part for part in names if part] + [name])


def analyze_source(source: bytes, language: str = 'cpp', policy: Optional[EmissionPolicy] = None,
                   protected_patterns: Optional[Iterable[str]] = None
                   ) -> Tuple[ProgramTree, RelationGraph]:
    """Run the C/C++ front end over one source buffer.

    Args:
        source: Raw (typically preprocessed) source bytes
        language: One of 'c', 'cpp'
        policy: Required-output policy
        protected_patterns: fnmatch patterns of origin files whose text is protected

    Returns:
        Tuple of (program tree, frozen relation graph)
    """
    origins = SourceOrigins(source, protected_patterns)
    return DeclarationExtractor(language, policy).extract(source, origins)
