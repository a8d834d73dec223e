"""
Semantic validation for widget view ASTs.

These checks run after parsing but before code generation to catch
errors that the grammar can't express: dangling widget references,
duplicate names and placement attributes the containers do not know.
"""

import difflib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from view_ast import Widget, ToForeign


# Child placement attributes understood by box containers
BOX_CHILD_PROPERTIES = {"expand", "fill", "pack_type", "padding", "position"}


@dataclass
class Fix:
    """Single-word replacement that resolves a diagnostic."""
    old_text: str
    new_text: str
    line: int = 0


@dataclass
class ValidationError:
    """A validation error with location info."""
    message: str
    line: int = 0
    column: int = 0
    severity: str = "error"  # "error" or "warning"
    fix: Optional[Fix] = None

    def __str__(self):
        loc = f"line {self.line}" if self.line else "unknown location"
        return f"[{self.severity}] {loc}: {self.message}"


@dataclass
class ValidationResult:
    """Result of validation."""
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    @property
    def fixes(self) -> List[Fix]:
        return [d.fix for d in self.errors + self.warnings if d.fix is not None]

    @property
    def fixable_count(self) -> int:
        return len(self.fixes)

    def add_error(self, message: str, line: int = 0, column: int = 0, fix: Optional[Fix] = None):
        self.errors.append(ValidationError(message, line, column, "error", fix))

    def add_warning(self, message: str, line: int = 0, column: int = 0, fix: Optional[Fix] = None):
        self.warnings.append(ValidationError(message, line, column, "warning", fix))

    def merge(self, other: 'ValidationResult'):
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def __str__(self):
        lines = []
        for err in self.errors:
            lines.append(str(err))
        for warn in self.warnings:
            lines.append(str(warn))
        return "\n".join(lines)


def get_obvious_fix(name: str, candidates, line: int) -> Optional[Fix]:
    """Suggest a replacement only when exactly one close match exists."""
    matches = difflib.get_close_matches(name, sorted(candidates), n=2, cutoff=0.8)
    if len(matches) == 1:
        return Fix(old_text=name, new_text=matches[0], line=line)
    return None


def _did_you_mean(fix: Optional[Fix]) -> str:
    return f" (did you mean '{fix.new_text}'?)" if fix else ""


# =============================================================================
# Main Validation Entry Points
# =============================================================================

def validate_widget(root: Widget) -> ValidationResult:
    """Run all validations on a parsed view."""
    result = ValidationResult()

    widgets: Dict[str, Widget] = {}
    for widget in root.iter_tree():
        if widget.name in widgets:
            result.add_error(f"Duplicate widget name '{widget.name}'", widget.line, widget.column)
        else:
            widgets[widget.name] = widget

    if root.parent_id in widgets and root.parent_id != root.name:
        result.add_error(f"Root widget '{root.name}' cannot be reparented", root.line, root.column)

    for widget in root.iter_tree():
        result.merge(validate_parent(widget, widgets))
        result.merge(validate_events(widget, widgets))
        result.merge(validate_child_properties(widget))
        if widget.container is not None and widget.is_composed:
            result.add_warning(
                f"Container marker on composed widget '{widget.name}' has no effect",
                widget.line, widget.column
            )

    return result


def validate_and_report(root: Widget, raise_on_error: bool = True) -> ValidationResult:
    """
    Validate a view and optionally raise on errors.

    Args:
        root: The parsed view
        raise_on_error: If True, raise ValueError on validation errors

    Returns:
        ValidationResult with all errors and warnings
    """
    result = validate_widget(root)

    if result.has_errors and raise_on_error:
        raise ValueError(f"View validation failed:\n{result}")

    return result


# =============================================================================
# Individual checks
# =============================================================================

def validate_parent(widget: Widget, widgets: Dict[str, Widget]) -> ValidationResult:
    """Check that #[parent="..."] names another widget of the view."""
    result = ValidationResult()
    if widget.parent_id is None:
        return result

    if widget.parent_id == widget.name:
        result.add_error(f"Widget '{widget.name}' cannot be its own parent", widget.line, widget.column)
    elif widget.parent_id not in widgets:
        # The attribute sits on its own line above the widget, so no Fix
        suggestion = get_obvious_fix(widget.parent_id, widgets, widget.line)
        result.add_error(
            f"Widget '{widget.name}' has unknown parent '{widget.parent_id}'{_did_you_mean(suggestion)}",
            widget.line, widget.column
        )
    return result


def validate_events(widget: Widget, widgets: Dict[str, Widget]) -> ValidationResult:
    """Check that messages sent with `target@Msg` reach a composed widget."""
    result = ValidationResult()
    for signal, event in widget.iter_events():
        if not isinstance(event.value, ToForeign):
            continue
        target = event.value.target
        if target not in widgets:
            # The target may sit on a later line than the signal
            line, column = event.value.line or event.line, event.value.column or event.column
            fix = get_obvious_fix(target, widgets, line)
            result.add_error(
                f"Event '{signal}' of '{widget.name}' targets unknown widget '{target}'{_did_you_mean(fix)}",
                line, column, fix
            )
        elif widgets[target].is_toolkit:
            result.add_warning(
                f"Event '{signal}' of '{widget.name}' targets toolkit widget '{target}', "
                f"which does not receive messages",
                event.line, event.column
            )
    return result


def validate_child_properties(widget: Widget) -> ValidationResult:
    """Warn about child placement attributes containers do not understand."""
    result = ValidationResult()
    for name, expr in widget.child_properties.items():
        if name in BOX_CHILD_PROPERTIES:
            continue
        fix = get_obvious_fix(name, BOX_CHILD_PROPERTIES, expr.line)
        result.add_warning(
            f"Unknown child property '{name}' on '{widget.name}'{_did_you_mean(fix)}",
            expr.line, expr.column, fix
        )
    return result
