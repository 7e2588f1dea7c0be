"""Tests for the tree-sitter C/C++ front end, end to end through the pass."""
import pytest

from declreaper.analyzer.extractor import DeclarationExtractor, EmissionPolicy, analyze_source
from declreaper.analyzer.model import DeclKind
from declreaper.analyzer.parser import LanguageParser
from declreaper.analyzer.relations import GroupSource
from declreaper.reaper.engine import UnreferencedDeclPass
from declreaper.reaper.rewriter import RewriteBuffer


def reduce_all(source: bytes, language: str = 'cpp', **kwargs):
    """Return (candidate qualified names, source with every candidate removed)."""
    reduction = UnreferencedDeclPass.from_source(source, language=language, **kwargs)
    names = [reduction.tree.node(c.handle).qualified_name for c in reduction.candidates]
    buffer = RewriteBuffer(source)
    if names:
        reduction.select_and_apply(buffer, 1, len(names))
    return names, buffer.getvalue()


def handles_named(tree, qualified_name):
    return [node.handle for node in tree if node.qualified_name == qualified_name]


def test_unused_static_function_is_removed():
    source = b"""static int helper(int x) { return x + 1; }
static int unused(int x) { return x * 2; }
int main(void) { return helper(1); }
"""
    names, result = reduce_all(source, 'c')

    assert names == ['unused']
    assert b'unused' not in result
    assert b'helper' in result


def test_typedefs_and_structs():
    source = b"""typedef int used_t;
typedef int dead_t;
struct Dead { int x; };
struct Live { int y; };
int main(void) { used_t a = 0; struct Live l; l.y = a; return l.y; }
"""
    names, result = reduce_all(source, 'c')

    assert names == ['dead_t', 'Dead']
    assert b'dead_t' not in result
    assert b'struct Dead' not in result
    assert b'struct Live { int y; };' in result


def test_record_removal_takes_its_semicolon():
    source = b"struct Gone { int x; } ;\nint main(void) { return 0; }\n"
    names, result = reduce_all(source, 'c')

    assert names == ['Gone']
    assert result == b"\nint main(void) { return 0; }\n"


def test_recursion_does_not_keep_a_function_alive():
    source = b"""static int rec(int n) { return n ? rec(n - 1) : 0; }
int main(void) { return 0; }
"""
    names, _ = reduce_all(source, 'c')

    assert names == ['rec']


def test_dead_function_reading_its_own_local_is_removed():
    source = b"static int dead(void) { int x = 1; return x; }\nint main(void) { return 0; }\n"
    names, result = reduce_all(source, 'c')

    assert names == ['dead']
    assert b'dead' not in result


def test_dead_function_with_a_loop_counter_is_removed():
    source = b"static void dead(int n) { for (int i = 0; i < n; i++) {} }\nint main(void) { return 0; }\n"
    names, _ = reduce_all(source, 'c')

    assert names == ['dead']


def test_dead_struct_whose_method_reads_a_field_is_removed():
    source = b"struct Dead { int v; int get() { return v; } };\nint main() { return 0; }\n"
    names, result = reduce_all(source)

    assert names == ['Dead', 'Dead::get']
    assert result == b"\nint main() { return 0; }\n"


def test_live_struct_keeps_the_fields_its_methods_read():
    source = b"struct Live { int v; int get() { return v; } };\nint main() { Live l; return l.get(); }\n"
    names, _ = reduce_all(source)

    assert names == []


def test_callees_of_a_dead_function_are_removable_too():
    source = b"""static int helper(void) { return 1; }
static int dead(void) { return helper(); }
int main(void) { return 0; }
"""
    names, result = reduce_all(source, 'c')

    assert names == ['helper', 'dead']
    assert result == b"\n\nint main(void) { return 0; }\n"


def test_self_referential_struct_and_its_forward_declaration():
    source = b"""struct Node;
struct Node { struct Node *next; };
int main(void) { return 0; }
"""
    names, result = reduce_all(source, 'c')

    assert names == ['Node', 'Node']
    assert b'Node' not in result


def test_typedef_declarators_share_liveness():
    source = b"typedef int a_t, b_t;\nint main(void) { a_t x = 0; return x; }\n"
    names, _ = reduce_all(source, 'c')

    assert names == []


def test_macro_bodies_count_as_references():
    source = b"""static int used_by_macro(void) { return 1; }
#define CALL() used_by_macro()
int main(void) { return CALL(); }
"""
    names, _ = reduce_all(source, 'c')

    assert names == []


def test_out_of_line_members_follow_their_class():
    source = b"""struct Widget {
  int value();
};
int Widget::value() { return 1; }
struct Unused {
  void run();
};
void Unused::run() {}
int main() { Widget w; return w.value(); }
"""
    names, result = reduce_all(source)

    assert names == ['Unused', 'Unused::run', 'Unused::run']
    assert b'Unused' not in result
    assert b'int Widget::value() { return 1; }' in result


def test_unused_function_template_is_removed_with_its_header():
    source = b"""template <typename T>
T twice(T x) { return x + x; }
template <typename T>
T thrice(T x) { return x + x + x; }
int main() { return twice<int>(2); }
"""
    names, result = reduce_all(source)

    assert names == ['thrice']
    assert b'thrice' not in result
    assert result.count(b'template <typename T>') == 1


def test_specialization_is_grouped_with_primary():
    source = b"""template <typename T> struct Box { T v; };
template <> struct Box<int> { int v; };
int main() { return 0; }
"""
    tree, graph = analyze_source(source)
    primary, specialization = [
        node.handle for node in tree
        if node.kind == DeclKind.RECORD_TYPE and node.name == 'Box'
    ]

    template_groups = [set(group.members) for group in graph.groups_of(GroupSource.TEMPLATE)]
    assert {primary, specialization} in template_groups


def test_using_declaration_groups_shadow_with_target():
    source = b"""namespace lib {
int helper() { return 1; }
int other() { return 2; }
}
using lib::helper;
int main() { return helper(); }
"""
    tree, graph = analyze_source(source)
    using_groups = graph.groups_of(GroupSource.USING)

    assert len(using_groups) == 1
    members = using_groups[0].members
    assert handles_named(tree, 'lib::helper')[0] in members
    assert any(tree.node(member).implicit for member in members)

    names, _ = reduce_all(source)
    assert names == ['lib::other']


def test_kinds_and_qualified_names():
    source = b"""namespace ns {
typedef int Int;
using Alias = long;
struct Rec { int field; };
void func();
}
"""
    tree, _ = analyze_source(source)
    kinds = {node.qualified_name: node.kind for node in tree if node.qualified_name}

    assert kinds['ns'] == DeclKind.OTHER
    assert kinds['ns::Int'] == DeclKind.TYPE_ALIAS
    assert kinds['ns::Alias'] == DeclKind.USING_ALIAS
    assert kinds['ns::Rec'] == DeclKind.RECORD_TYPE
    assert kinds['ns::Rec::field'] == DeclKind.OTHER
    assert kinds['ns::func'] == DeclKind.FUNCTION


def test_embedded_record_has_no_span_of_its_own():
    source = b"typedef struct { int v; } Anon;\n"
    tree, _ = analyze_source(source, language='c')

    records = [node for node in tree if node.kind == DeclKind.RECORD_TYPE]
    assert len(records) == 1
    assert records[0].span is None
    alias = handles_named(tree, 'Anon')[0]
    assert records[0].lexical_parent == alias


def test_special_members_are_marked_used():
    source = b"""struct R {
  ~R() {}
  virtual void v() {}
  int operator+(int) { return 0; }
  void plain() {}
};
"""
    reduction = UnreferencedDeclPass.from_source(source)
    reduction.query_count()
    tree, state = reduction.tree, reduction.state

    assert state.is_used(handles_named(tree, 'R::~R')[0])
    assert state.is_used(handles_named(tree, 'R::v')[0])
    assert state.is_used(handles_named(tree, 'R::operator+')[0])
    assert not state.is_used(handles_named(tree, 'R::plain')[0])
    # used never protects anything
    assert not state.is_referenced(handles_named(tree, 'R')[0])


def test_included_text_is_never_a_candidate():
    source = b"""# 1 "main.cpp"
# 1 "header.h" 1
static int from_header() { return 0; }
# 2 "main.cpp" 2
static int local_dead() { return 0; }
int main() { return 0; }
"""
    names, result = reduce_all(source)

    assert names == ['local_dead']
    assert b'from_header' in result
    assert b'# 1 "header.h" 1' in result


def test_protected_patterns_extend_to_main_file():
    source = b"""# 1 "main.cpp"
static int local_dead() { return 0; }
int main() { return 0; }
"""
    names, _ = reduce_all(source, protected_patterns=['main.cpp'])

    assert names == []


def test_retain_external_keeps_visible_definitions():
    source = b"""int api(void) { return 0; }
static int hidden(void) { return 0; }
int main(void) { return 0; }
"""
    names, _ = reduce_all(source, 'c')
    assert names == ['api', 'hidden']

    names, _ = reduce_all(source, 'c', policy=EmissionPolicy(retain_external=True))
    assert names == ['hidden']


def test_required_names_are_kept():
    source = b"static int keepme(void) { return 0; }\nint main(void) { return 0; }\n"
    names, _ = reduce_all(source, 'c', policy=EmissionPolicy(required_names={'keepme'}))

    assert names == []


def test_syntax_errors_do_not_abort_extraction():
    source = b"int main( { return 0; }\nstatic void dead(void) {}\n"
    tree, graph = DeclarationExtractor('c').extract(source)

    assert len(tree) >= 1
    assert graph.node_count == len(tree)


def test_language_is_chosen_by_extension():
    assert LanguageParser.language_for('case.c') == 'c'
    assert LanguageParser.language_for('case.ii') == 'cpp'
    assert LanguageParser.language_for('CASE.CPP') == 'cpp'
    assert LanguageParser.language_for('case.rs') is None

    with pytest.raises(ValueError):
        LanguageParser('rust')
