"""
Tests for the widget view lexer and parser.
"""

import pytest
import sys
import threading
from pathlib import Path

# Add scripts directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from view_lexer import Delimiter, LexerError, TokenType, render_tokens, tokenize
from view_ast import (
    Widget, WidgetPath, ToolkitWidget, ComposedWidget, ContainerMarker,
    ToSelf, ToForeign, FireOnly, CallAndReturn, PairedReturn,
)
from view_parser import (
    NameIndex, ParseError, Parser, macro_body, parse, parse_file, parse_tokens,
)


def texts(exprs) -> list:
    """Render a list of captured expressions for assertions."""
    return [expr.text for expr in exprs]


def props(widget: Widget) -> dict:
    return {k: v.text for k, v in widget.properties.items()}


# =============================================================================
# Lexer
# =============================================================================

class TestLexer:
    """Test token tree construction."""

    def test_path_tokens(self):
        tokens = tokenize("gtk::Button")
        assert [t.type for t in tokens] == [TokenType.IDENT, TokenType.PUNCT, TokenType.IDENT]
        assert [t.value for t in tokens] == ["gtk", "::", "Button"]

    def test_groups_are_nested(self):
        tokens = tokenize("f(x, [y]) { z }")
        assert len(tokens) == 3
        paren = tokens[1]
        assert paren.is_group(Delimiter.PAREN)
        assert [t.value for t in paren.children[:2]] == ["x", ","]
        assert paren.children[2].is_group(Delimiter.BRACKET)
        assert tokens[2].is_group(Delimiter.BRACE)
        assert tokens[2].children[0].is_ident("z")

    def test_positions_are_one_based(self):
        tokens = tokenize("a\n  b")
        assert (tokens[0].line, tokens[0].column) == (1, 1)
        assert (tokens[1].line, tokens[1].column) == (2, 3)
        assert (tokens[1].start, tokens[1].end) == (4, 5)

    def test_multi_char_punctuation(self):
        tokens = tokenize("=> :: -> .. @ #")
        assert [t.value for t in tokens] == ["=>", "::", "->", "..", "@", "#"]

    def test_literals(self):
        tokens = tokenize("""42 1.5 "text" 'c' '\\n' 'static b"raw" r"a\\b" """)
        assert [t.type for t in tokens] == [
            TokenType.NUMBER, TokenType.NUMBER, TokenType.STRING, TokenType.CHAR,
            TokenType.CHAR, TokenType.LIFETIME, TokenType.STRING, TokenType.STRING,
        ]

    def test_range_is_not_a_float(self):
        tokens = tokenize("1..2")
        assert [t.value for t in tokens] == ["1", "..", "2"]

    def test_comments_are_skipped(self):
        tokens = tokenize("a // line\n/* block\n comment */ b")
        assert [t.value for t in tokens] == ["a", "b"]
        assert tokens[1].line == 3

    def test_string_value_unescapes(self):
        assert tokenize(r'"a\"b\n"')[0].string_value() == 'a"b\n'

    def test_raw_string_value_keeps_backslashes(self):
        assert tokenize(r'r"a\n"')[0].string_value() == "a\\n"

    def test_unclosed_group(self):
        with pytest.raises(LexerError, match="Unclosed"):
            tokenize("gtk::Window { (")

    def test_mismatched_group(self):
        with pytest.raises(LexerError, match="Mismatched"):
            tokenize("( ]")

    def test_unexpected_closer(self):
        with pytest.raises(LexerError, match="Unexpected closing"):
            tokenize("a }")

    def test_unterminated_string(self):
        with pytest.raises(LexerError, match="Unterminated string"):
            tokenize('"abc')

    def test_unexpected_character(self):
        with pytest.raises(LexerError) as exc:
            tokenize("a é")
        assert exc.value.line == 1
        assert exc.value.column == 3


class TestRenderTokens:
    """Test rendering of captured token spans."""

    def test_adjacent_tokens_join(self):
        assert render_tokens(tokenize("Msg(x)")) == "Msg(x)"

    def test_whitespace_collapses_to_one_space(self):
        assert render_tokens(tokenize("a   +\n\tb")) == "a + b"

    def test_comment_counts_as_separation(self):
        assert render_tokens(tokenize("a/* c */b")) == "a b"

    def test_string_keeps_quotes(self):
        assert render_tokens(tokenize('"Hi"')) == '"Hi"'

    def test_nested_group_text(self):
        assert render_tokens(tokenize("f(a, g([1, 2]))")) == "f(a, g([1, 2]))"


# =============================================================================
# Widgets
# =============================================================================

class TestRoundTrip:
    """Parse the canonical window-with-button view."""

    SOURCE = 'gtk::Window { gtk::Button { label: "Hi", clicked => Quit } }'

    def test_window_with_button(self):
        window = parse(self.SOURCE)

        assert window.name == "window1"
        assert isinstance(window.widget, ToolkitWidget)
        assert str(window.typ) == "gtk::Window"
        assert len(window.children) == 1

        button = window.children[0]
        assert button.name == "button1"
        assert isinstance(button.widget, ToolkitWidget)
        assert props(button) == {"label": '"Hi"'}
        assert button.children == []

        event = button.widget.events["clicked"]
        assert event.params == ["_"]
        assert event.model_ident is None
        assert isinstance(event.value, ToSelf)
        assert isinstance(event.value.effect, FireOnly)
        assert event.value.effect.expr.text == "Quit"

    def test_positions(self):
        window = parse(self.SOURCE)
        button = window.children[0]
        assert (window.line, window.column) == (1, 1)
        assert (button.line, button.column) == (1, 15)
        assert button.properties["label"].column == 36


class TestSingleWidget:
    """Test init parameters, properties and children of one declaration."""

    def test_init_parameters_and_property(self):
        widget = parse("gtk::Grid(p1, p2) { prop: v }")
        assert texts(widget.init_parameters) == ["p1", "p2"]
        assert props(widget) == {"prop": "v"}
        assert widget.children == []

    def test_composed_init_parameters_and_property(self):
        widget = parse("Counter(p1, p2) { prop: v }")
        assert isinstance(widget.widget, ComposedWidget)
        assert texts(widget.init_parameters) == ["p1", "p2"]
        assert props(widget) == {"prop": "v"}

    def test_empty_init_parameters(self):
        widget = parse("gtk::Grid() { }")
        assert widget.init_parameters == []

    def test_trailing_comma_in_init_parameters(self):
        widget = parse("gtk::Grid(a, b,) { }")
        assert texts(widget.init_parameters) == ["a", "b"]

    def test_complex_init_parameter(self):
        widget = parse("gtk::Grid(Orientation::Vertical, model.items.len() + 1) { }")
        assert texts(widget.init_parameters) == ["Orientation::Vertical", "model.items.len() + 1"]

    def test_property_value_is_verbatim(self):
        widget = parse("gtk::Label { text: &format!(\"{}\", model.count), visible: !model.hidden }")
        assert props(widget) == {
            "text": '&format!("{}", model.count)',
            "visible": "!model.hidden",
        }

    def test_trailing_comma_after_entries(self):
        widget = parse("gtk::Label { text: a, visible: b, }")
        assert props(widget) == {"text": "a", "visible": "b"}

    def test_children_keep_declaration_order(self):
        widget = parse("gtk::Box { gtk::Label { }, gtk::Entry { }, gtk::Button { } }")
        assert [child.name for child in widget.children] == ["label1", "entry1", "button1"]

    def test_duplicate_property_last_wins(self):
        """Repeated properties are not rejected: the last value silently wins."""
        widget = parse("gtk::Label { text: first, text: second }")
        assert props(widget) == {"text": "second"}


class TestWidgetKinds:
    """Toolkit vs composed disambiguation."""

    @pytest.mark.parametrize("source", [
        "gtk::Window { }",
        "relm::Widget { }",
        "widget { }",
        "gtk::button { }",
    ])
    def test_toolkit(self, source):
        assert isinstance(parse(source).widget, ToolkitWidget)

    @pytest.mark.parametrize("source", [
        "Counter",
        "Counter { }",
        "Counter(5)",
        "Counter<i32> { }",
    ])
    def test_composed(self, source):
        assert isinstance(parse(source).widget, ComposedWidget)

    def test_multi_segment_path_with_capitalised_tail(self):
        widget = parse("relm::Counter { }")
        assert widget.typ.is_multi_segment
        assert not widget.typ.last_segment_lowercase
        assert widget.is_toolkit
        assert not parse("Counter { }").typ.is_multi_segment

    def test_composed_name_is_prefixed(self):
        assert parse("Counter").name == "_counter1"

    def test_composed_without_body(self):
        widget = parse("Counter(1, 2)")
        assert texts(widget.init_parameters) == ["1", "2"]
        assert widget.children == []
        assert widget.widget.events == {}

    def test_toolkit_requires_body(self):
        with pytest.raises(ParseError, match="Expected `\\{` after `gtk::Window`"):
            parse("gtk::Window")

    def test_composed_children_without_attributes(self):
        widget = parse("gtk::Box { Counter { }, Counter(5), Text }")
        assert [child.name for child in widget.children] == ["_counter1", "_counter2", "_text1"]
        assert all(child.is_composed for child in widget.children)

    def test_toolkit_child_inside_composed(self):
        widget = parse("Counter { gtk::Label { text: x } }")
        assert widget.children[0].name == "label1"
        assert widget.children[0].is_toolkit

    def test_generic_widget(self):
        widget = parse("gtk::Box { Counter<i32, i64>(1, 2) { value: 3 } }")
        child = widget.children[0]
        assert child.is_composed
        assert child.typ.segments == ["Counter"]
        assert child.typ.generics == "<i32, i64>"
        assert str(child.typ) == "Counter<i32, i64>"
        assert texts(child.init_parameters) == ["1", "2"]
        assert props(child) == {"value": "3"}
        assert child.name == "_counter1"


class TestNames:
    """Generated widget names."""

    def test_siblings_get_increasing_suffix(self):
        widget = parse("gtk::Box { gtk::Button { }, gtk::Button { } }")
        assert [child.name for child in widget.children] == ["button1", "button2"]

    def test_counter_is_keyed_by_lowercase_last_segment(self):
        widget = parse("gtk::Box { gtk::Button { }, other::Button { } }")
        assert [child.name for child in widget.children] == ["button1", "button2"]

    def test_generics_are_not_part_of_the_name(self):
        assert parse("Counter<i32>").name == "_counter1"

    def test_fresh_session_per_parse(self):
        assert parse("gtk::Window { }").name == "window1"
        assert parse("gtk::Window { }").name == "window1"

    def test_shared_index_continues(self):
        names = NameIndex()
        assert parse("gtk::Window { }", names).name == "window1"
        assert parse("gtk::Window { }", names).name == "window2"
        names.reset()
        assert parse("gtk::Window { }", names).name == "window1"

    def test_next_name(self):
        names = NameIndex()
        path = WidgetPath(["gtk", "Label"])
        assert names.next_name(path) == "label1"
        assert names.next_name(path) == "label2"

    def test_next_name_is_thread_safe(self):
        names = NameIndex()
        path = WidgetPath(["Button"])
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(200):
                name = names.next_name(path)
                with lock:
                    results.append(name)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 1600
        assert len(set(results)) == 1600


class TestAttributes:
    """#[name], #[container] and #[parent]."""

    def test_name_overrides_and_sets_save(self):
        widget = parse('gtk::Box { #[name="label"] gtk::Label { } }')
        label = widget.children[0]
        assert label.name == "label"
        assert label.widget.save is True

    def test_unnamed_toolkit_widget_is_not_saved(self):
        widget = parse("gtk::Box { gtk::Label { } }")
        assert widget.children[0].widget.save is False

    def test_override_still_advances_counter(self):
        widget = parse('gtk::Box { #[name="first"] gtk::Label { }, gtk::Label { } }')
        assert [child.name for child in widget.children] == ["first", "label2"]

    def test_name_on_composed_widget(self):
        widget = parse('gtk::Box { #[name="counter"] Counter { } }')
        assert widget.children[0].name == "counter"

    def test_container_without_type(self):
        widget = parse("gtk::Box { #[container] gtk::Box { } }")
        assert widget.children[0].container == ContainerMarker(None)
        assert widget.container is None

    def test_container_with_type(self):
        widget = parse('gtk::Box { #[container="gtk::Grid"] gtk::Box { } }')
        assert widget.children[0].container == ContainerMarker("gtk::Grid")

    def test_parent(self):
        parser = Parser(tokenize('gtk::Box { #[parent="other"] gtk::Label { } }'))
        widget = parser.parse()
        assert widget.children[0].parent_id == "other"
        assert parser.parent_ids == {"label1": "other"}

    def test_multiple_attributes(self):
        widget = parse('gtk::Box { #[name="inner"] #[container] #[parent="root"] gtk::Box { } }')
        child = widget.children[0]
        assert child.name == "inner"
        assert child.container == ContainerMarker(None)
        assert child.parent_id == "root"

    def test_attribute_on_root(self):
        widget = parse('#[name="main"] gtk::Window { }')
        assert widget.name == "main"

    def test_unknown_attribute_is_ignored(self):
        widget = parse('gtk::Box { #[style="x"] gtk::Label { } }')
        assert widget.children[0].name == "label1"

    def test_attribute_needs_identifier(self):
        with pytest.raises(ParseError, match="Expected attribute name but found `123`"):
            parse("gtk::Box { #[123] gtk::Label { } }")

    def test_attribute_needs_brackets(self):
        with pytest.raises(ParseError, match="Expected `\\[` after `#`"):
            parse("gtk::Box { # gtk::Label { } }")


class TestChildProperties:
    """Child placement attributes."""

    def test_child_properties_are_separate(self):
        widget = parse("widget { pack: { expand: true } }")
        assert {k: v.text for k, v in widget.child_properties.items()} == {"expand": "true"}
        assert widget.properties == {}

    def test_several_child_properties(self):
        widget = parse("gtk::Label { child: { expand: true, padding: 5, }, text: x }")
        assert {k: v.text for k, v in widget.child_properties.items()} == {
            "expand": "true",
            "padding": "5",
        }
        assert props(widget) == {"text": "x"}

    def test_child_property_collision_last_wins(self):
        widget = parse("gtk::Label { child: { padding: 1 }, child: { padding: 2 } }")
        assert widget.child_properties["padding"].text == "2"

    def test_child_property_needs_colon(self):
        with pytest.raises(ParseError, match="Expected `:` after child property `expand`"):
            parse("gtk::Label { child: { expand true } }")


# =============================================================================
# Events
# =============================================================================

class TestEvents:
    """Event grammar."""

    def test_default_parameter_toolkit(self):
        widget = parse("gtk::Button { clicked => Msg }")
        assert widget.widget.events["clicked"].params == ["_"]

    def test_default_parameter_composed(self):
        widget = parse("Counter { clicked => Msg }")
        assert widget.widget.events["clicked"][0].params == []

    def test_explicit_parameters(self):
        widget = parse("gtk::Window { delete_event(_, event) => Quit }")
        assert widget.widget.events["delete_event"].params == ["_", "event"]

    def test_empty_parameter_list(self):
        widget = parse("gtk::Button { clicked() => Msg }")
        assert widget.widget.events["clicked"].params == []

    def test_parameters_must_be_identifiers(self):
        with pytest.raises(ParseError, match="Expected identifier in event parameters"):
            parse("gtk::Button { clicked(1) => Msg }")

    def test_parameters_need_commas(self):
        with pytest.raises(ParseError, match="Expected `,` between event parameters but found `b`"):
            parse("gtk::Button { clicked(a b) => Msg }")

    def test_parameters_trailing_comma(self):
        widget = parse("gtk::Button { clicked(a, b,) => Msg }")
        assert widget.widget.events["clicked"].params == ["a", "b"]

    def test_parameters_lone_comma(self):
        with pytest.raises(ParseError, match="Expected identifier in event parameters but found `,`"):
            parse("gtk::Button { clicked(,) => Msg }")

    def test_with_model(self):
        widget = parse("gtk::Entry { changed(entry) with model => Change(model.id) }")
        event = widget.widget.events["changed"]
        assert event.params == ["entry"]
        assert event.model_ident == "model"
        assert event.value.effect.expr.text == "Change(model.id)"

    def test_with_needs_identifier(self):
        with pytest.raises(ParseError, match="Expected `=>` in event `changed` but found `with`"):
            parse("gtk::Entry { changed(e) with => Msg }")

    def test_missing_arrow(self):
        with pytest.raises(ParseError, match="Expected `=>` in event `clicked` but found `Msg`"):
            parse("gtk::Button { clicked(x) Msg }")

    def test_foreign_dispatch(self):
        widget = parse("gtk::Entry { changed => other@Msg(x) }")
        value = widget.widget.events["changed"].value
        assert isinstance(value, ToForeign)
        assert value.target == "other"
        assert (value.line, value.column) == (1, 25)
        assert isinstance(value.effect, FireOnly)
        assert value.effect.expr.text == "Msg(x)"

    def test_call_and_return(self):
        widget = parse("gtk::Window { key_press_event(_, key) => return Key(key.clone()) }")
        effect = widget.widget.events["key_press_event"].value.effect
        assert isinstance(effect, CallAndReturn)
        assert effect.expr.text == "Key(key.clone())"

    def test_paired_return(self):
        widget = parse("gtk::Window { key_press => (Inhibit(false), Propagate) }")
        effect = widget.widget.events["key_press"].value.effect
        assert isinstance(effect, PairedReturn)
        assert effect.send_expr.text == "Inhibit(false)"
        assert effect.return_expr.text == "Propagate"

    def test_paired_return_to_foreign_widget(self):
        widget = parse("gtk::Window { delete_event => win@(Quit, Inhibit(false)) }")
        value = widget.widget.events["delete_event"].value
        assert isinstance(value, ToForeign)
        assert value.target == "win"
        assert isinstance(value.effect, PairedReturn)

    def test_paired_return_needs_two_expressions(self):
        with pytest.raises(ParseError, match="Expected `,` between message and return value"):
            parse("gtk::Window { key_press => (Quit) }")

    def test_missing_message(self):
        with pytest.raises(ParseError, match="Expected message expression after `=>`"):
            parse("gtk::Button { clicked => , }")

    def test_toolkit_last_binding_wins(self):
        widget = parse("gtk::Button { clicked => First, clicked => Second }")
        assert widget.widget.events["clicked"].value.effect.expr.text == "Second"

    def test_composed_bindings_accumulate(self):
        widget = parse("Counter { Increment => Changed, Increment => label@Refresh }")
        events = widget.widget.events["Increment"]
        assert len(events) == 2
        assert isinstance(events[0].value, ToSelf)
        assert isinstance(events[1].value, ToForeign)

    def test_composed_message_with_parameters(self):
        widget = parse("Counter { Change(text) => label@SetText(text) }")
        assert widget.children == []
        event = widget.widget.events["Change"][0]
        assert event.params == ["text"]
        assert event.value.target == "label"
        assert event.value.effect.expr.text == "SetText(text)"

    def test_iter_events(self):
        widget = parse("Counter { A => X, B => Y, A => Z }")
        assert [(signal, e.value.effect.expr.text) for signal, e in widget.iter_events()] == [
            ("A", "X"), ("A", "Z"), ("B", "Y"),
        ]


# =============================================================================
# Errors
# =============================================================================

class TestErrors:
    """Malformed input aborts with a positioned message."""

    def test_identifier_without_entry_shape(self):
        with pytest.raises(ParseError) as exc:
            parse("widget { foo }")
        assert "`foo`" in str(exc.value)
        assert "Expected `:`, `(` or `=>`" in str(exc.value)

    def test_identifier_followed_by_other_token(self):
        with pytest.raises(ParseError) as exc:
            parse("gtk::Box {\n    text 5\n}")
        assert "after `text` but found `5`" in str(exc.value)
        assert (exc.value.line, exc.value.column) == (2, 10)

    def test_composed_entry_error(self):
        with pytest.raises(ParseError, match="Expected `:`, `=>` or `\\(` after `foo`"):
            parse("Counter { foo }")

    def test_missing_property_value(self):
        with pytest.raises(ParseError, match="Expected value for `text` but found `,`"):
            parse("gtk::Label { text: , visible: true }")

    def test_not_a_widget(self):
        with pytest.raises(ParseError, match="Expected qualified name but found `42`"):
            parse("42")

    def test_empty_input(self):
        with pytest.raises(ParseError, match="end of input") as exc:
            parse("")
        assert (exc.value.line, exc.value.column) == (1, 1)
        assert str(exc.value).startswith("Line 1, column 1:")

    def test_trailing_tokens_after_root(self):
        with pytest.raises(ParseError, match="Unexpected `gtk` after the root widget"):
            parse("gtk::Window { } gtk::Button { }")

    def test_trailing_comma_after_root(self):
        assert parse("gtk::Window { },").name == "window1"

    def test_generics_only_on_last_segment(self):
        with pytest.raises(ParseError, match="Expected qualified name"):
            parse("gtk<T>::Button { }")

    def test_lexer_errors_propagate(self):
        with pytest.raises(LexerError):
            parse("gtk::Window { ")


# =============================================================================
# File indirection and macros
# =============================================================================

class TestMacroBody:

    def test_plain_macro(self):
        body = macro_body(tokenize("view! { gtk::Window { } }"))
        assert [t.value for t in body[:3]] == ["gtk", "::", "Window"]

    def test_qualified_macro_with_semicolon(self):
        body = macro_body(tokenize("relm::view! ( Counter );"))
        assert len(body) == 1
        assert body[0].is_ident("Counter")

    @pytest.mark.parametrize("source", [
        "gtk::Window { }",
        "view! { } extra",
        "view { }",
        "",
    ])
    def test_not_a_macro(self, source):
        assert macro_body(tokenize(source)) is None


class TestFileIndirection:
    """A leading string literal names a file holding the view."""

    def test_loads_view_from_file(self, tmp_path):
        (tmp_path / "window.view").write_text('view! {\n    gtk::Window { title: "From file" }\n}\n')
        widget = parse('"window.view"', base_dir=tmp_path)
        assert widget.name == "window1"
        assert props(widget) == {"title": '"From file"'}
        assert widget.line == 2

    def test_relative_to_subdirectory(self, tmp_path):
        (tmp_path / "views").mkdir()
        (tmp_path / "views" / "counter.view").write_text("view! { Counter }")
        widget = parse('"views/counter.view"', base_dir=tmp_path)
        assert widget.name == "_counter1"

    def test_shares_name_index(self, tmp_path):
        (tmp_path / "window.view").write_text("view! { gtk::Window { } }")
        names = NameIndex()
        parse("gtk::Window { }", names)
        assert parse('"window.view"', names, base_dir=tmp_path).name == "window2"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParseError, match="Cannot read view file"):
            parse('"missing.view"', base_dir=tmp_path)

    def test_not_a_macro_invocation(self, tmp_path):
        (tmp_path / "bare.view").write_text("gtk::Window { }")
        with pytest.raises(ParseError, match="Expected a single macro invocation"):
            parse('"bare.view"', base_dir=tmp_path)

    def test_lexer_error_in_file(self, tmp_path):
        (tmp_path / "broken.view").write_text("view! { gtk::Window { }")
        with pytest.raises(ParseError, match="broken.view"):
            parse('"broken.view"', base_dir=tmp_path)

    def test_parse_error_in_file_body(self, tmp_path):
        (tmp_path / "bad.view").write_text("view! { gtk::Window { foo } }")
        with pytest.raises(ParseError, match="after `foo`"):
            parse('"bad.view"', base_dir=tmp_path)

    def test_tokens_after_path(self, tmp_path):
        with pytest.raises(ParseError, match="after view file path"):
            parse('"window.view" gtk::Window { }', base_dir=tmp_path)

    def test_parse_file(self, tmp_path):
        path = tmp_path / "main.view"
        path.write_text("view! { gtk::Window { gtk::Label { } } }")
        widget = parse_file(path)
        assert widget.children[0].name == "label1"

    def test_parse_tokens(self):
        widget = parse_tokens(tokenize("gtk::Window { }"))
        assert widget.name == "window1"
