"""
Parser for the widget view DSL.

Parses a stream of token trees into a Widget tree. Groups arrive already
nested from the lexer, so every grammar decision is a lookahead over a
handful of tokens in the current group.
"""

import threading
from enum import Enum, auto
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from view_lexer import Delimiter, LexerError, Token, TokenType, render_tokens, tokenize
from view_ast import (
    Widget, WidgetPath, ToolkitWidget, ComposedWidget, ContainerMarker,
    Event, ToSelf, ToForeign, FireOnly, CallAndReturn, PairedReturn,
    Effect, Expr,
)


# Attributes with an effect on the parsed widget; others are accepted and ignored
ATTR_NAME = 'name'
ATTR_CONTAINER = 'container'
ATTR_PARENT = 'parent'


class ParseError(Exception):
    """Raised when parser encounters invalid syntax."""
    def __init__(self, message: str, token: Optional[Token] = None, line: int = 0, column: int = 0):
        self.token = token
        if token is not None:
            line, column = token.line, token.column
        self.line = line
        self.column = column
        super().__init__(f"Line {line}, column {column}: {message}")


class DefaultParam(Enum):
    """Event parameters used when the view does not list any."""
    NO_PARAM = auto()    # Composed widgets: messages carry their own payload
    ONE_PARAM = auto()   # Toolkit signals: one discarded `_` parameter


def _describe(token: Optional[Token]) -> str:
    if token is None:
        return "end of input"
    return f"`{token.text}`"


class NameIndex:
    """Counter table for generated widget names.

    One index is shared by every view expanded in a session so that names
    stay unique across them. Access is locked; sessions may share an index
    across threads.
    """

    def __init__(self):
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    def next_name(self, path: WidgetPath) -> str:
        base = path.last_segment.lower()
        with self._lock:
            index = self._counters.get(base, 0) + 1
            self._counters[base] = index
        return f"{base}{index}"

    def reset(self):
        with self._lock:
            self._counters.clear()


class TokenCursor:
    """Read position in one token sequence: the top level or a group's contents."""

    def __init__(self, tokens: List[Token], end_line: int = 0, end_column: int = 0):
        self.tokens = tokens
        self.pos = 0
        if not end_line:
            # Empty input still reports a real position
            end_line, end_column = (tokens[-1].line, tokens[-1].column) if tokens else (1, 1)
        self.end_line = end_line
        self.end_column = end_column

    @classmethod
    def of_group(cls, group: Token) -> 'TokenCursor':
        return cls(group.children, group.line, group.column)

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def peek(self, offset: int = 0) -> Optional[Token]:
        pos = self.pos + offset
        if pos >= len(self.tokens):
            return None
        return self.tokens[pos]

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise self.error("Unexpected end of input")
        self.pos += 1
        return token

    def check_punct(self, value: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token is not None and token.is_punct(value)

    def check_ident(self, value: Optional[str] = None, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token is not None and token.is_ident(value)

    def check_group(self, delimiter: Optional[Delimiter] = None, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token is not None and token.is_group(delimiter)

    def match_punct(self, value: str) -> bool:
        if self.check_punct(value):
            self.pos += 1
            return True
        return False

    def expect_punct(self, value: str, context: str) -> Token:
        if self.check_punct(value):
            return self.advance()
        raise self.error(f"Expected `{value}` {context} but found {_describe(self.peek())}")

    def error(self, message: str, token: Optional[Token] = None) -> ParseError:
        if token is None:
            token = self.peek()
        if token is None:
            return ParseError(message, line=self.end_line, column=self.end_column)
        return ParseError(message, token)


class Parser:
    """Recursive descent parser for the widget view DSL."""

    def __init__(self, tokens: List[Token], names: Optional[NameIndex] = None, base_dir=None):
        self.tokens = tokens
        self.names = names if names is not None else NameIndex()
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        # Widget name -> id of the widget it asked to be reparented under
        self.parent_ids: Dict[str, str] = {}

    def parse(self) -> Widget:
        """Parse the token stream into a Widget tree."""
        tokens = self.tokens
        if tokens and tokens[0].type == TokenType.STRING:
            if len(tokens) > 1:
                raise ParseError(f"Unexpected {_describe(tokens[1])} after view file path", tokens[1])
            tokens = self._load_view_file(tokens[0])

        cursor = TokenCursor(tokens)
        widget, _ = self._parse_child(cursor)
        cursor.match_punct(',')
        if not cursor.at_end():
            raise cursor.error(f"Unexpected {_describe(cursor.peek())} after the root widget")
        return widget

    # =========================================================================
    # File indirection
    # =========================================================================

    def _load_view_file(self, token: Token) -> List[Token]:
        path = self.base_dir / token.string_value()
        try:
            return load_view_tokens(path)
        except ParseError as e:
            raise ParseError(f"In view file {path}: {e}", token) from e

    # =========================================================================
    # Widgets
    # =========================================================================

    def _parse_attributes(self, cursor: TokenCursor) -> Dict[str, Optional[str]]:
        """Parse: ( # [ ident ( = "string" )? ] )*"""
        attributes = {}
        while cursor.check_punct('#'):
            cursor.advance()
            if not cursor.check_group(Delimiter.BRACKET):
                raise cursor.error(f"Expected `[` after `#` but found {_describe(cursor.peek())}")
            group = cursor.advance()
            inner = group.children
            if not inner or not inner[0].is_ident():
                found = inner[0] if inner else None
                raise ParseError(f"Expected attribute name but found {_describe(found)}", found or group)

            value = None
            if len(inner) >= 3 and inner[1].is_punct('=') and inner[2].type == TokenType.STRING:
                value = inner[2].string_value()
            attributes[inner[0].value] = value
        return attributes

    def _parse_child(self, cursor: TokenCursor) -> Tuple[Widget, Optional[str]]:
        """Parse one widget declaration with its leading attributes.

        Returns the widget and the parent id requested by `#[parent="..."]`.
        """
        attributes = self._parse_attributes(cursor)
        name = attributes.get(ATTR_NAME)

        scanned = self._scan_name(cursor)
        if scanned is None:
            raise cursor.error(f"Expected qualified name but found {_describe(cursor.peek())}")
        path, length = scanned
        toolkit = path.is_multi_segment or path.last_segment_lowercase
        cursor.pos += length

        if toolkit:
            widget = self._parse_toolkit_widget(cursor, path, save=name is not None)
        else:
            widget = self._parse_composed_widget(cursor, path)

        if name is not None:
            widget.name = name
        if ATTR_CONTAINER in attributes:
            widget.container = ContainerMarker(attributes[ATTR_CONTAINER])
        parent_id = attributes.get(ATTR_PARENT)
        if parent_id is not None:
            widget.parent_id = parent_id
            self.parent_ids[widget.name] = parent_id
        return widget, parent_id

    def _parse_toolkit_widget(self, cursor: TokenCursor, path: WidgetPath, save: bool) -> Widget:
        """Parse: ( exprs )? { entries }"""
        kind = ToolkitWidget(save=save)
        widget = Widget(
            name=self.names.next_name(path), typ=path, widget=kind,
            init_parameters=self._parse_init_parameters(cursor),
            line=path.line, column=path.column,
        )

        if not cursor.check_group(Delimiter.BRACE):
            raise cursor.error(f"Expected `{{` after `{path}` but found {_describe(cursor.peek())}")
        body = TokenCursor.of_group(cursor.advance())

        while not body.at_end():
            if body.check_punct('#') or self._try_parse_name(body) is not None:
                child, _ = self._parse_child(body)
                widget.children.append(child)
            else:
                ident = self._parse_ident(body)
                if body.check_punct(':'):
                    self._parse_value_or_child_properties(body, ident.value, widget)
                elif body.check_group(Delimiter.PAREN) or body.check_punct('=>'):
                    # One handler per toolkit signal: the last binding wins
                    kind.events[ident.value] = self._parse_event(body, DefaultParam.ONE_PARAM, ident)
                else:
                    raise body.error(
                        f"Expected `:`, `(` or `=>` after `{ident.value}` "
                        f"but found {_describe(body.peek())}"
                    )
            body.match_punct(',')

        return widget

    def _parse_composed_widget(self, cursor: TokenCursor, path: WidgetPath) -> Widget:
        """Parse: ( exprs )? ( { entries } )?"""
        kind = ComposedWidget()
        # Composed widgets are kept alive by the generated struct but never read back
        widget = Widget(
            name='_' + self.names.next_name(path), typ=path, widget=kind,
            init_parameters=self._parse_init_parameters(cursor),
            line=path.line, column=path.column,
        )

        if not cursor.check_group(Delimiter.BRACE):
            return widget
        body = TokenCursor.of_group(cursor.advance())

        while not body.at_end():
            if body.check_punct('#') or self._is_braced_child(body):
                child, _ = self._parse_child(body)
                widget.children.append(child)
            else:
                ident = self._parse_ident(body)
                if body.check_punct(':'):
                    self._parse_value_or_child_properties(body, ident.value, widget)
                elif body.check_group(Delimiter.PAREN) or body.check_punct('=>'):
                    event = self._parse_event(body, DefaultParam.NO_PARAM, ident)
                    kind.events.setdefault(ident.value, []).append(event)
                else:
                    raise body.error(
                        f"Expected `:`, `=>` or `(` after `{ident.value}` "
                        f"but found {_describe(body.peek())}"
                    )
            body.match_punct(',')

        return widget

    def _parse_init_parameters(self, cursor: TokenCursor) -> List[Expr]:
        if cursor.check_group(Delimiter.PAREN):
            return self._parse_comma_list(cursor.advance())
        return []

    # =========================================================================
    # Qualified names
    # =========================================================================

    def _scan_name(self, cursor: TokenCursor) -> Optional[Tuple[WidgetPath, int]]:
        """Look ahead for a qualified name followed by a group, a comma or the end.

        Returns the path and the number of tokens it spans, without consuming.
        """
        scanned = []
        angle_level = 0
        while True:
            token = cursor.peek(len(scanned))
            if token is None:
                break
            if token.is_punct('<'):
                angle_level += 1
            elif token.is_punct('>'):
                angle_level -= 1
            elif token.is_punct(','):
                if angle_level == 0:
                    break
            elif not (token.is_ident() or token.is_punct('::')):
                break
            scanned.append(token)

        path = self._build_path(scanned)
        if path is None:
            return None
        follow = cursor.peek(len(scanned))
        if follow is not None and not (follow.is_group() or follow.is_punct(',')):
            return None
        return path, len(scanned)

    def _try_parse_name(self, cursor: TokenCursor) -> Optional[Tuple[WidgetPath, int]]:
        """Qualified name that can start a nested widget: `gtk::Button`, `Counter`.

        A lowercase last segment is a property or signal name, never a widget.
        """
        scanned = self._scan_name(cursor)
        if scanned is None or scanned[0].last_segment_lowercase:
            return None
        return scanned

    def _is_braced_child(self, cursor: TokenCursor) -> bool:
        # In composed bodies `Change(text) => ...` is an event, so a child
        # needs its brace body right after the name.
        scanned = self._try_parse_name(cursor)
        return scanned is not None and cursor.check_group(Delimiter.BRACE, scanned[1])

    def _build_path(self, tokens: List[Token]) -> Optional[WidgetPath]:
        """Build Ident ( :: Ident )* ( < ... > )? or return None."""
        if not tokens or not tokens[0].is_ident():
            return None

        segments = []
        generics = None
        i = 0
        while i < len(tokens):
            if generics is not None or not tokens[i].is_ident():
                return None
            segments.append(tokens[i].value)
            i += 1
            if i < len(tokens) and tokens[i].is_punct('<'):
                close = self._matching_angle(tokens, i)
                if close is None:
                    return None
                generics = render_tokens(tokens[i:close + 1])
                i = close + 1
            if i < len(tokens):
                if not tokens[i].is_punct('::') or i + 1 == len(tokens):
                    return None
                i += 1

        return WidgetPath(segments, generics, tokens[0].line, tokens[0].column)

    def _matching_angle(self, tokens: List[Token], start: int) -> Optional[int]:
        depth = 0
        for i in range(start, len(tokens)):
            if tokens[i].is_punct('<'):
                depth += 1
            elif tokens[i].is_punct('>'):
                depth -= 1
                if depth == 0:
                    return i
        return None

    # =========================================================================
    # Properties and values
    # =========================================================================

    def _parse_ident(self, cursor: TokenCursor) -> Token:
        if not cursor.check_ident():
            raise cursor.error(f"Expected identifier but found {_describe(cursor.peek())}")
        return cursor.advance()

    def _parse_value(self, cursor: TokenCursor, what: str) -> Expr:
        """Capture tokens up to the next comma as an opaque expression."""
        tokens = []
        while not cursor.at_end() and not cursor.check_punct(','):
            tokens.append(cursor.advance())
        if not tokens:
            raise cursor.error(f"Expected {what} but found {_describe(cursor.peek())}")
        return Expr.from_tokens(tokens)

    def _parse_comma_list(self, group: Token) -> List[Expr]:
        values = []
        cursor = TokenCursor.of_group(group)
        while not cursor.at_end():
            values.append(self._parse_value(cursor, "expression"))
            cursor.match_punct(',')
        return values

    def _parse_value_or_child_properties(self, cursor: TokenCursor, ident: str, widget: Widget):
        """Parse: : expr | : { ident : expr, ... }"""
        cursor.expect_punct(':', f"after `{ident}`")
        if cursor.check_group(Delimiter.BRACE):
            widget.child_properties.update(self._parse_child_properties(cursor.advance()))
        else:
            # TODO: decide whether a repeated property should be a parse error
            widget.properties[ident] = self._parse_value(cursor, f"value for `{ident}`")

    def _parse_child_properties(self, group: Token) -> Dict[str, Expr]:
        properties = {}
        cursor = TokenCursor.of_group(group)
        while not cursor.at_end():
            ident = self._parse_ident(cursor)
            cursor.expect_punct(':', f"after child property `{ident.value}`")
            properties[ident.value] = self._parse_value(cursor, f"value for child property `{ident.value}`")
            cursor.match_punct(',')
        return properties

    # =========================================================================
    # Events
    # =========================================================================

    def _parse_event(self, cursor: TokenCursor, default_param: DefaultParam, signal: Token) -> Event:
        """Parse: ( params )? ( with ident )? => ( ident @ )? effect"""
        params = ['_'] if default_param == DefaultParam.ONE_PARAM else []
        if cursor.check_group(Delimiter.PAREN):
            params = self._parse_ident_list(cursor.advance())

        model_ident = None
        if cursor.check_ident('with') and cursor.check_ident(offset=1):
            cursor.advance()
            model_ident = cursor.advance().value

        cursor.expect_punct('=>', f"in event `{signal.value}`")

        # Message sent to another widget
        if cursor.check_ident() and cursor.check_punct('@', 1):
            target = cursor.advance()
            cursor.advance()
            value = ToForeign(target.value, self._parse_effect(cursor), target.line, target.column)
        # Message sent to the same widget
        else:
            value = ToSelf(self._parse_effect(cursor))

        return Event(params, value, model_ident, signal.line, signal.column)

    def _parse_ident_list(self, group: Token) -> List[str]:
        """Parse: ( ident ( , ident )* ,? )?"""
        cursor = TokenCursor.of_group(group)
        idents = []
        while not cursor.at_end():
            if not cursor.check_ident():
                raise cursor.error(f"Expected identifier in event parameters but found {_describe(cursor.peek())}")
            idents.append(cursor.advance().value)
            if not cursor.at_end():
                cursor.expect_punct(',', "between event parameters")
        return idents

    def _parse_effect(self, cursor: TokenCursor) -> Effect:
        """Parse: return expr | ( expr , expr ) | expr"""
        if cursor.check_ident('return'):
            cursor.advance()
            return CallAndReturn(self._parse_value(cursor, "expression after `return`"))

        if cursor.check_group(Delimiter.PAREN):
            inner = TokenCursor.of_group(cursor.advance())
            send_expr = self._parse_value(inner, "message expression")
            inner.expect_punct(',', "between message and return value")
            return_expr = self._parse_value(inner, "return value")
            return PairedReturn(send_expr, return_expr)

        return FireOnly(self._parse_value(cursor, "message expression after `=>`"))


# =============================================================================
# Entry points
# =============================================================================

def macro_body(tokens: List[Token]) -> Optional[List[Token]]:
    """Return the body of `path! { ... }` (optionally followed by `;`), or None."""
    cursor = TokenCursor(tokens)
    if not cursor.check_ident():
        return None
    cursor.advance()
    while cursor.check_punct('::') and cursor.check_ident(offset=1):
        cursor.pos += 2
    if not cursor.match_punct('!') or not cursor.check_group():
        return None
    group = cursor.advance()
    cursor.match_punct(';')
    if not cursor.at_end():
        return None
    return group.children


def load_view_tokens(path) -> List[Token]:
    """Read a file holding a single view macro invocation and return its body tokens."""
    path = Path(path)
    try:
        source = path.read_text()
    except OSError as e:
        raise ParseError(f"Cannot read view file: {e}", line=1, column=1) from e

    try:
        tokens = tokenize(source)
    except LexerError as e:
        raise ParseError(e.message, line=e.line, column=e.column) from e

    body = macro_body(tokens)
    if body is None:
        found = tokens[0] if tokens else None
        raise ParseError(
            f"Expected a single macro invocation like `view! {{ ... }}` but found {_describe(found)}",
            found, line=1, column=1
        )
    return body


def parse_tokens(tokens: List[Token], names: Optional[NameIndex] = None, base_dir=None) -> Widget:
    """Parse a token tree stream into a Widget tree."""
    return Parser(tokens, names, base_dir).parse()


def parse(source: str, names: Optional[NameIndex] = None, base_dir=None) -> Widget:
    """Parse view source code into a Widget tree."""
    return parse_tokens(tokenize(source), names, base_dir)


def parse_file(path, names: Optional[NameIndex] = None) -> Widget:
    """Parse a file holding a view macro invocation."""
    path = Path(path)
    return parse_tokens(load_view_tokens(path), names, base_dir=path.parent)
