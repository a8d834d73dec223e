#!/usr/bin/env python3
"""
Lint widget view files for errors and warnings.

Usage:
    python view_lint.py <file> [file2 ...]
    python view_lint.py --fix FILE  # Auto-fix obvious typos in FILE
"""

import argparse
import re
import sys
from pathlib import Path

from view_converter import load_view, view_source_path
from view_lexer import LexerError
from view_parser import ParseError
from view_validate import validate_widget, Fix


def get_backup_path(path: Path) -> Path:
    """Backup written before fixes are applied: .filename.bak"""
    return path.parent / f".{path.name}.bak"


def apply_fixes(source: str, fixes: list[Fix]) -> str:
    """Apply fixes to source code.

    Fixes are applied by finding and replacing the old_text with new_text
    on the specified line.
    """
    lines = source.split('\n')

    fixes_by_line: dict[int, list[Fix]] = {}
    for fix in fixes:
        if fix.line > 0 and fix.line <= len(lines):
            fixes_by_line.setdefault(fix.line, []).append(fix)

    for line_num, line_fixes in fixes_by_line.items():
        line_idx = line_num - 1  # Convert to 0-indexed
        line = lines[line_idx]

        for fix in line_fixes:
            # Word boundaries: don't replace "counter1" inside "counter10"
            pattern = r'\b' + re.escape(fix.old_text) + r'\b'
            line = re.sub(pattern, fix.new_text, line, count=1)

        lines[line_idx] = line

    return '\n'.join(lines)


def lint_file(path: Path, apply_fix: bool = False) -> tuple[int, int, int]:
    """Lint a single file. Returns (error_count, warning_count, fix_count)."""
    try:
        with open(path) as f:
            source = f.read()
    except FileNotFoundError:
        print(f"{path}: file not found")
        return 1, 0, 0

    try:
        widget = load_view(path)
    except (LexerError, ParseError) as e:
        print(f"{path}: parse error: {e}")
        return 1, 0, 0

    # Diagnostics of an included view carry the included file's lines
    source_path = view_source_path(path)
    if source_path != path:
        source = source_path.read_text()

    result = validate_widget(widget)
    fixes = result.fixes

    if apply_fix and fixes:
        fixed_source = apply_fixes(source, fixes)
        if fixed_source != source:
            bak_path = get_backup_path(source_path)
            bak_path.write_text(source)
            with open(source_path, 'w') as f:
                f.write(fixed_source)

            print(f"{source_path}: applied {len(fixes)} fix(es)")
            print(f"  Pre-fix backup: {bak_path}")

            # Re-lint to show remaining issues
            return lint_file(path, apply_fix=False)

    for error in result.errors:
        loc = f":{error.line}" if error.line else ""
        fix_marker = " [fixable]" if error.fix else ""
        print(f"{source_path}{loc}: error: {error.message}{fix_marker}")

    for warning in result.warnings:
        loc = f":{warning.line}" if warning.line else ""
        fix_marker = " [fixable]" if warning.fix else ""
        print(f"{source_path}{loc}: warning: {warning.message}{fix_marker}")

    return len(result.errors), len(result.warnings), result.fixable_count


def main():
    parser = argparse.ArgumentParser(
        description="Lint widget view files for errors and warnings."
    )
    parser.add_argument(
        "files",
        nargs="*",
        help="Files to lint"
    )
    parser.add_argument(
        "--fix",
        action="store_true",
        help="Auto-fix obvious typos (widget names with a single close match)"
    )

    args = parser.parse_args()

    if not args.files:
        parser.print_help()
        sys.exit(1)

    files = [Path(f) for f in args.files]

    total_errors = 0
    total_warnings = 0
    total_fixable = 0

    for path in files:
        errors, warnings, fixable = lint_file(path, apply_fix=args.fix)
        total_errors += errors
        total_warnings += warnings
        total_fixable += fixable

    if total_errors or total_warnings:
        print(f"\n{total_errors} error(s), {total_warnings} warning(s)")

        if total_fixable > 0 and not args.fix:
            if len(files) == 1:
                print(f"\n{total_fixable} issue(s) can be auto-fixed. Run:")
                print(f"  python {sys.argv[0]} --fix {files[0]}")
            else:
                print(f"\n{total_fixable} issue(s) can be auto-fixed. Run with --fix to apply.")

    sys.exit(1 if total_errors else 0)


if __name__ == "__main__":
    main()
