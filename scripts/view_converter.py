#!/usr/bin/env python3
"""
View converter utilities.

Provides:
- load_view(): Load a view file (bare view or view macro), return the Widget tree
- view_source_path(): File a view was parsed from, following file indirection
- widget_to_dict(): Convert a Widget tree to plain dicts for YAML/JSON output
- parent_table() / resolve_parents(): Apply #[parent="..."] reparenting

Usage:
    python view_converter.py <view file> [--format yaml|json] [--resolve-parents]
"""

import argparse
import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from view_ast import (
    Widget, ToolkitWidget, ComposedWidget, Event, ToSelf, ToForeign,
    FireOnly, CallAndReturn, PairedReturn,
)
from view_lexer import LexerError, Token, TokenType, tokenize
from view_parser import NameIndex, ParseError, macro_body, parse_tokens


# =============================================================================
# Loading
# =============================================================================

def _view_tokens(path: Path) -> List[Token]:
    tokens = tokenize(path.read_text())
    body = macro_body(tokens)
    return body if body is not None else tokens


def load_view(path, names: Optional[NameIndex] = None) -> Widget:
    """
    Load a view file.

    The file may hold either a bare view (`gtk::Window { ... }`) or a single
    view macro invocation (`view! { ... }`).
    """
    path = Path(path)
    return parse_tokens(_view_tokens(path), names, base_dir=path.parent)


def view_source_path(path) -> Path:
    """File the widgets of a view were parsed from.

    A view written as `view! { "other.view" }` is read from the named file,
    so its positions refer to that file rather than to `path`.
    """
    path = Path(path)
    tokens = _view_tokens(path)
    if len(tokens) == 1 and tokens[0].type == TokenType.STRING:
        return path.parent / tokens[0].string_value()
    return path


# =============================================================================
# Dict conversion
# =============================================================================

def effect_to_dict(effect) -> Dict[str, Any]:
    if isinstance(effect, FireOnly):
        return {'kind': 'fire', 'message': effect.expr.text}
    elif isinstance(effect, CallAndReturn):
        return {'kind': 'call_return', 'message': effect.expr.text}
    elif isinstance(effect, PairedReturn):
        return {
            'kind': 'return',
            'message': effect.send_expr.text,
            'return': effect.return_expr.text,
        }
    raise TypeError(f"Unknown effect: {effect!r}")


def event_to_dict(event: Event) -> Dict[str, Any]:
    result = {'params': list(event.params)}
    if event.model_ident:
        result['with'] = event.model_ident

    if isinstance(event.value, ToSelf):
        result['effect'] = effect_to_dict(event.value.effect)
    elif isinstance(event.value, ToForeign):
        result['target'] = event.value.target
        result['effect'] = effect_to_dict(event.value.effect)
    else:
        raise TypeError(f"Unknown event value: {event.value!r}")
    return result


def widget_to_dict(widget: Widget) -> Dict[str, Any]:
    """Convert a Widget tree to the dict format used for dumps."""
    result = {
        'name': widget.name,
        'type': str(widget.typ),
    }

    if isinstance(widget.widget, ToolkitWidget):
        result['kind'] = 'toolkit'
        if widget.widget.save:
            result['save'] = True
        events = {
            signal: event_to_dict(event)
            for signal, event in widget.widget.events.items()
        }
    elif isinstance(widget.widget, ComposedWidget):
        result['kind'] = 'composed'
        events = {
            signal: [event_to_dict(event) for event in handlers]
            for signal, handlers in widget.widget.events.items()
        }
    else:
        raise TypeError(f"Unknown widget kind: {widget.widget!r}")

    if widget.init_parameters:
        result['init'] = [param.text for param in widget.init_parameters]
    if widget.properties:
        result['properties'] = {k: v.text for k, v in widget.properties.items()}
    if widget.child_properties:
        result['child_properties'] = {k: v.text for k, v in widget.child_properties.items()}
    if events:
        result['events'] = events
    if widget.container is not None:
        result['container'] = widget.container.child_type or True
    if widget.parent_id is not None:
        result['parent'] = widget.parent_id
    if widget.children:
        result['children'] = [widget_to_dict(child) for child in widget.children]

    return result


# =============================================================================
# Parent resolution
# =============================================================================

def parent_table(root: Widget) -> Dict[str, str]:
    """Map widget name -> requested parent id for every reparented widget."""
    return {
        widget.name: widget.parent_id
        for widget in root.iter_tree()
        if widget.parent_id is not None
    }


def resolve_parents(root: Widget) -> Widget:
    """
    Move every widget carrying a parent id under the widget of that name.

    Returns a new tree; the parsed tree is left untouched. Moved widgets are
    appended after the target's own children, in declaration order.

    Raises:
        ValueError: a parent id names no widget, or the move would make a
            widget its own ancestor (always the case for the root)
    """
    root = copy.deepcopy(root)
    by_name = {widget.name: widget for widget in root.iter_tree()}

    # Every widget lies inside the root's subtree, so a known id is a cycle too
    if root.parent_id is not None:
        if root.parent_id not in by_name:
            raise ValueError(f"Widget '{root.name}' has unknown parent '{root.parent_id}'")
        raise ValueError(f"Root widget '{root.name}' cannot be reparented")

    moves: List[tuple] = []  # (structural parent, widget)
    for parent in root.iter_tree():
        for child in parent.children:
            if child.parent_id is not None:
                moves.append((parent, child))

    for structural_parent, widget in moves:
        target = by_name.get(widget.parent_id)
        if target is None:
            raise ValueError(f"Widget '{widget.name}' has unknown parent '{widget.parent_id}'")
        if any(node is target for node in widget.iter_tree()):
            raise ValueError(f"Widget '{widget.name}' cannot be reparented under its own subtree")
        structural_parent.children = [c for c in structural_parent.children if c is not widget]
        target.children.append(widget)

    return root


# =============================================================================
# CLI
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description="Dump the parsed widget tree of a view file."
    )
    parser.add_argument("file", help="View file to convert")
    parser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Output format (default: yaml)"
    )
    parser.add_argument(
        "--resolve-parents",
        action="store_true",
        help="Apply #[parent=...] reparenting before dumping"
    )

    args = parser.parse_args()

    path = Path(args.file)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)

    try:
        widget = load_view(path)
        if args.resolve_parents:
            widget = resolve_parents(widget)
    except (LexerError, ParseError, ValueError) as e:
        print(f"{path}: error: {e}", file=sys.stderr)
        sys.exit(1)

    data = widget_to_dict(widget)
    if args.format == "json":
        print(json.dumps(data, indent=2))
    else:
        print(yaml.safe_dump(data, sort_keys=False), end="")


if __name__ == "__main__":
    main()
