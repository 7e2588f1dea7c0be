"""Tests for relation graph construction and deferred resolution."""
import networkx as nx
import pytest

from declreaper.analyzer.model import DeclKind, ProgramTree, Span
from declreaper.analyzer.relations import GroupSource, RelationBuilder


def build(tree: ProgramTree) -> RelationBuilder:
    builder = RelationBuilder(tree)
    for node in tree:
        builder.register(node.handle)
    return builder


def span_of(source: bytes, text: bytes) -> Span:
    start = source.index(text)
    return Span(start, start + len(text))


def test_equal_spans_form_a_span_group():
    tree = ProgramTree(b"typedef int a_t, b_t;")
    unit = tree.add(DeclKind.OTHER)
    first = tree.add(DeclKind.TYPE_ALIAS, name="a_t", span=Span(0, 21), lexical_parent=unit)
    second = tree.add(DeclKind.TYPE_ALIAS, name="b_t", span=Span(0, 21), lexical_parent=unit)

    graph = build(tree).freeze()
    span_groups = graph.groups_of(GroupSource.SPAN)

    assert [group.members for group in span_groups] == [(first, second)]


def test_containment_edges_point_to_parents():
    tree = ProgramTree(b"")
    record = tree.add(DeclKind.RECORD_TYPE, name="S")
    method = tree.add(DeclKind.FUNCTION, name="f", lexical_parent=record)

    graph = build(tree).freeze()

    assert list(graph.containment.edges()) == [(method, record)]
    assert nx.is_frozen(graph.containment)


def test_mandatory_nodes_seed_both_flags():
    tree = ProgramTree(b"")
    entry = tree.add(DeclKind.FUNCTION, name="main", mandatory=True)
    tree.add(DeclKind.FUNCTION, name="f")

    graph = build(tree).freeze()

    assert graph.seeds_referenced == {entry}
    assert graph.seeds_used == {entry}


def test_redeclarations_pair_with_first_declaration():
    tree = ProgramTree(b"")
    prototype = tree.add(DeclKind.FUNCTION, name="f")
    definition = tree.add(DeclKind.FUNCTION, name="f")
    alias = tree.add(DeclKind.TYPE_ALIAS, name="f")
    builder = build(tree)
    for handle in (prototype, definition, alias):
        builder.note_redeclaration(handle)

    graph = builder.freeze()

    assert [group.members for group in graph.groups_of(GroupSource.REDECLARATION)] == [
        (prototype, definition)
    ]


def test_lookup_inside_a_declaration_becomes_a_reference_edge():
    source = b"int f() { return f(); }\nint g() { return f(); }\n"
    tree = ProgramTree(source)
    f = tree.add(DeclKind.FUNCTION, name="f", span=Span(0, source.index(b"\n")))
    g = tree.add(DeclKind.FUNCTION, name="g", span=Span(source.index(b"int g"), len(source) - 1))
    builder = build(tree)

    builder.lookup("f", source.index(b"f();"))
    graph = builder.freeze()
    assert graph.seeds_referenced == frozenset()
    assert graph.references == frozenset(), "a declaration naming itself is not an edge"

    builder = build(tree)
    builder.lookup("f", source.rindex(b"f();"))
    graph = builder.freeze()
    assert graph.seeds_referenced == frozenset()
    assert graph.references == {(g, f)}


def test_lookup_outside_prunable_declarations_seeds_directly():
    source = b"int f();\nint x = f();\n"
    tree = ProgramTree(source)
    unit = tree.add(DeclKind.OTHER, span=Span(0, len(source)))
    f = tree.add(DeclKind.FUNCTION, name="f", span=Span(0, 8), lexical_parent=unit)
    tree.add(DeclKind.OTHER, name="x", span=Span(9, len(source) - 1), lexical_parent=unit)
    builder = build(tree)
    builder.lookup("f", source.rindex(b"f();"))

    graph = builder.freeze()

    assert graph.seeds_referenced == {f}
    assert graph.references == frozenset()


def test_innermost_prunable_declaration_owns_the_lookup():
    source = b"struct S { int v; int get() { return v; } };"
    tree = ProgramTree(source)
    record = tree.add(DeclKind.RECORD_TYPE, name="S", span=Span(0, len(source) - 1))
    field = tree.add(DeclKind.OTHER, name="v", span=Span(11, 17), lexical_parent=record)
    method = tree.add(DeclKind.FUNCTION, name="get", qualified_name="S::get",
                      span=span_of(source, b"int get() { return v; }"), lexical_parent=record)
    builder = build(tree)
    builder.lookup("v", source.rindex(b"v;"))

    graph = builder.freeze()

    assert graph.references == {(method, field)}
    assert record not in graph.seeds_referenced


def test_lookup_from_another_declaration_of_the_same_entity_does_not_count():
    source = b"struct N;\nstruct N { struct N *next; };\n"
    tree = ProgramTree(source)
    forward = tree.add(DeclKind.RECORD_TYPE, name="N", span=Span(0, 8))
    definition = tree.add(DeclKind.RECORD_TYPE, name="N", span=Span(10, len(source) - 2))
    builder = build(tree)
    builder.note_redeclaration(forward)
    builder.note_redeclaration(definition)
    builder.lookup("N", source.index(b"N *next"))

    graph = builder.freeze()

    assert graph.seeds_referenced == frozenset()
    assert graph.references == {(definition, forward)}


def test_semantic_parent_resolves_to_declared_scope():
    tree = ProgramTree(b"")
    record = tree.add(DeclKind.RECORD_TYPE, name="A")
    variable = tree.add(DeclKind.OTHER, name="A", qualified_name="other::A")
    definition = tree.add(DeclKind.FUNCTION, name="run", qualified_name="A::run")
    builder = build(tree)
    builder.declare_scope(record)
    builder.request_semantic_parent(definition, "A")

    graph = builder.freeze()

    assert graph.containment.has_edge(definition, record)
    assert not graph.containment.has_edge(definition, variable)


def test_specialization_links_to_primary_of_same_kind():
    tree = ProgramTree(b"")
    primary = tree.add(DeclKind.FUNCTION, name="f")
    other_kind = tree.add(DeclKind.RECORD_TYPE, name="f")
    specialization = tree.add(DeclKind.FUNCTION, name="f")
    builder = build(tree)
    builder.request_primary(specialization, "f")

    graph = builder.freeze()

    assert [group.members for group in graph.groups_of(GroupSource.TEMPLATE)] == [
        (primary, specialization)
    ]
    assert other_kind not in graph.groups_of(GroupSource.TEMPLATE)[0].members


def test_using_group_collects_targets_by_qualified_name():
    tree = ProgramTree(b"")
    target = tree.add(DeclKind.FUNCTION, name="g", qualified_name="lib::g")
    using = tree.add(DeclKind.OTHER)
    shadow = tree.add(DeclKind.OTHER, name="g", implicit=True)
    builder = build(tree)
    builder.request_using_targets(using, [shadow], "lib::g")

    graph = builder.freeze()

    assert [group.members for group in graph.groups_of(GroupSource.USING)] == [
        (using, shadow, target)
    ]


def test_register_twice_and_freeze_twice_are_errors():
    tree = ProgramTree(b"")
    handle = tree.add(DeclKind.FUNCTION, name="f")
    builder = build(tree)

    with pytest.raises(ValueError):
        builder.register(handle)

    builder.freeze()
    with pytest.raises(RuntimeError):
        builder.freeze()
