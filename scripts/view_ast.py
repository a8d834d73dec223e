"""
AST node definitions for the widget view DSL.

The parser produces a tree of Widget nodes. Property values and event
payloads are kept as opaque expressions: verbatim token spans that the
code generator splices into its output.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from view_lexer import Token, render_tokens


# =============================================================================
# Opaque expressions and paths
# =============================================================================

@dataclass
class Expr:
    """Verbatim token span captured from the view source."""
    tokens: List[Token] = field(default_factory=list, repr=False)
    line: int = 0
    column: int = 0

    @classmethod
    def from_tokens(cls, tokens: List[Token]) -> 'Expr':
        first = tokens[0] if tokens else None
        return cls(
            list(tokens),
            line=first.line if first else 0,
            column=first.column if first else 0,
        )

    @property
    def text(self) -> str:
        return render_tokens(self.tokens)

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"Expr({self.text!r})"


@dataclass
class WidgetPath:
    """Qualified widget type: gtk::Button, Counter<i32, i64>."""
    segments: List[str]
    generics: Optional[str] = None  # Rendered "<...>" of the last segment
    line: int = 0
    column: int = 0

    @property
    def last_segment(self) -> str:
        return self.segments[-1]

    @property
    def is_multi_segment(self) -> bool:
        return len(self.segments) > 1

    @property
    def last_segment_lowercase(self) -> bool:
        return self.last_segment[0].islower()

    def __str__(self):
        return '::'.join(self.segments) + (self.generics or '')


# =============================================================================
# Event effects
# =============================================================================

@dataclass
class FireOnly:
    """Send the message, return nothing from the signal handler: `=> Msg`."""
    expr: Expr


@dataclass
class CallAndReturn:
    """Send the message and return its value from the handler: `=> return expr`."""
    expr: Expr


@dataclass
class PairedReturn:
    """Send one expression, return another: `=> (Msg, Inhibit(false))`."""
    send_expr: Expr
    return_expr: Expr


# Union type for all effects
Effect = Union[FireOnly, CallAndReturn, PairedReturn]


@dataclass
class ToSelf:
    """Message dispatched to the widget declaring the view."""
    effect: Effect


@dataclass
class ToForeign:
    """Message dispatched to another widget: `=> target@Msg`."""
    target: str
    effect: Effect
    line: int = 0  # Position of the target identifier
    column: int = 0


# Union type for all event values
EventValue = Union[ToSelf, ToForeign]


@dataclass
class Event:
    """Signal binding: `signal(params) with model => value`."""
    params: List[str]
    value: EventValue
    model_ident: Optional[str] = None
    line: int = 0
    column: int = 0


# =============================================================================
# Widgets
# =============================================================================

@dataclass
class ToolkitWidget:
    """Widget backed by an external toolkit type; one handler per signal."""
    events: Dict[str, Event] = field(default_factory=dict)
    save: bool = False  # Keep as an addressable field in generated code


@dataclass
class ComposedWidget:
    """Locally composed widget; a message may fan out to several handlers."""
    events: Dict[str, List[Event]] = field(default_factory=dict)


# Union type for both widget kinds
WidgetKind = Union[ToolkitWidget, ComposedWidget]


@dataclass
class ContainerMarker:
    """#[container] or #[container="ExpectedType"]."""
    child_type: Optional[str] = None


@dataclass
class Widget:
    name: str
    typ: WidgetPath
    widget: WidgetKind
    children: List['Widget'] = field(default_factory=list)
    properties: Dict[str, Expr] = field(default_factory=dict)
    child_properties: Dict[str, Expr] = field(default_factory=dict)
    init_parameters: List[Expr] = field(default_factory=list)
    container: Optional[ContainerMarker] = None
    parent_id: Optional[str] = None
    line: int = 0
    column: int = 0

    @property
    def is_toolkit(self) -> bool:
        return isinstance(self.widget, ToolkitWidget)

    @property
    def is_composed(self) -> bool:
        return isinstance(self.widget, ComposedWidget)

    def iter_tree(self):
        """Yield this widget and all its descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.iter_tree()

    def iter_events(self):
        """Yield (signal, Event) pairs in declaration order."""
        if isinstance(self.widget, ToolkitWidget):
            yield from self.widget.events.items()
        elif isinstance(self.widget, ComposedWidget):
            for signal, events in self.widget.events.items():
                for event in events:
                    yield signal, event
        else:
            raise TypeError(f"Unknown widget kind: {self.widget!r}")
