#!/usr/bin/env python3
"""
Parser fuzzer for the widget view DSL.

Generates random and mutated views to find bugs like:
- Crashes (exceptions other than lexer or parse errors)
- Hangs (infinite loops)
- Tokenizer mismatches (the hand lexer and the Lark grammar both accept
  an input but produce different token trees)

Usage:
    python scripts/fuzz_view_parser.py [--duration MINUTES] [--seed SEED]

Findings are saved to scripts/fuzz_findings/
"""

import argparse
import hashlib
import random
import signal
import string
import sys
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

# Add scripts directory to path
sys.path.insert(0, str(Path(__file__).parent))

from lark.exceptions import UnexpectedInput

import view_lexer
import view_peg_lexer
from view_lexer import LexerError
from view_parser import ParseError, parse_tokens

# Expected rejections - these are normal
EXPECTED_ERRORS = (
    LexerError,
    ParseError,
)

# Directory for saving findings
FINDINGS_DIR = Path(__file__).parent / "fuzz_findings"


class FuzzTimeout(Exception):
    pass


class TokenMismatch(Exception):
    pass


@contextmanager
def timeout(seconds):
    """Context manager for timeout on Unix systems."""
    def handler(signum, frame):
        raise FuzzTimeout(f"Timed out after {seconds} seconds")

    if hasattr(signal, 'SIGALRM'):
        old_handler = signal.signal(signal.SIGALRM, handler)
        signal.alarm(seconds)
        try:
            yield
        finally:
            signal.alarm(0)
            signal.signal(signal.SIGALRM, old_handler)
    else:
        # Windows fallback - no timeout
        yield


class Fuzzer:
    """View parser fuzzer."""

    # Token pools for generation
    KEYWORDS = ["with", "return", "name", "container", "parent", "view", "self", "model"]

    OPERATORS = ["::", "=>", "->", "@", ":", ",", "#", "!", "&", "<", ">", "=", ".", "..", ";"]
    BRACKETS = ["(", ")", "[", "]", "{", "}"]

    WIDGET_TYPES = [
        "gtk::Window", "gtk::Box", "gtk::Button", "gtk::Label", "gtk::Entry",
        "Counter", "Text", "Clock", "Label", "Counter<i32>",
    ]
    PROPERTIES = ["label", "text", "orientation", "spacing", "visible", "title"]
    SIGNALS = ["clicked", "changed", "delete_event", "activate", "key_press_event"]
    IDENTIFIERS = ["x", "y", "foo", "bar", "Quit", "Increment", "Change", "Msg", "model"]

    # Seed corpus - known valid inputs
    SEED_CORPUS = [
        'gtk::Window { }',
        'gtk::Window { gtk::Button { label: "Hi", clicked => Quit } }',
        'gtk::Window { title: "Demo", gtk::Box { orientation: Vertical } }',
        'gtk::Button { clicked(_) => Increment }',
        'gtk::Entry { changed(entry) => Change(entry.text().unwrap()) }',
        'gtk::Entry { changed(entry) with model => Change(model.id) }',
        'gtk::Window { delete_event(_, _) => (Quit, Inhibit(false)) }',
        'gtk::Window { key_press_event(_, key) => return (Key(key.clone()), Inhibit(false)) }',
        'gtk::Button { clicked => counter@Increment }',
        'gtk::Box { Counter { Increment => Changed } }',
        'gtk::Box { Counter(5), Text }',
        'gtk::Box { Counter<i32>(1, 2) { value: 3 } }',
        'gtk::Box { #[name="label"] gtk::Label { text: &model.text } }',
        'gtk::Box { #[container] gtk::Box { } }',
        'gtk::Box { #[container="gtk::Grid"] gtk::Grid { } }',
        'gtk::Box { #[parent="other"] gtk::Label { } }',
        'gtk::Box { gtk::Label { child: { expand: true, padding: 5 } } }',
        'gtk::Box { relm::Widget { } }',
        'Counter',
        'Counter { Change(text) => label@SetText(text) }',
        "gtk::Label { text: 'x', lifetime: &'static str }",
        'gtk::Label { text: 1..2, width: 1.5e3 }',
        'gtk::Box { /* comment */ gtk::Label { } // trailing\n }',
    ]

    def __init__(self, seed=None):
        self.rng = random.Random(seed)
        self.stats = {
            "iterations": 0,
            "parse_ok": 0,
            "parse_error": 0,
            "crashes": 0,
            "timeouts": 0,
            "mismatches": 0,
            "disagreements": 0,
            "unique_findings": set(),
        }
        self.start_time = None

        # Create findings directory
        FINDINGS_DIR.mkdir(exist_ok=True)

    def random_identifier(self) -> str:
        """Generate a random identifier."""
        if self.rng.random() < 0.7:
            return self.rng.choice(self.IDENTIFIERS)
        length = self.rng.randint(1, 20)
        first = self.rng.choice(string.ascii_letters + "_")
        rest = "".join(self.rng.choices(string.ascii_letters + string.digits + "_", k=length-1))
        return first + rest

    def random_literal(self) -> str:
        """Generate a random literal."""
        choice = self.rng.randint(0, 4)
        if choice == 0:
            return str(self.rng.randint(-1000, 1000))
        elif choice == 1:
            return f"{self.rng.uniform(-100, 100):.2f}"
        elif choice == 2:
            return self.rng.choice(["'a'", "'\\n'", "'static", "b'x'"])
        elif choice == 3:
            return self.rng.choice(['""', '"test"', 'r"raw\\"', 'b"bytes"', '"a\\"b"'])
        return self.rng.choice(["true", "false", "None"])

    def random_expr(self, depth=0) -> str:
        """Generate a random opaque expression."""
        if depth > 4 or self.rng.random() < 0.4:
            if self.rng.random() < 0.5:
                return self.random_identifier()
            return self.random_literal()

        choice = self.rng.randint(0, 4)
        if choice == 0:
            args = ", ".join(self.random_expr(depth+1) for _ in range(self.rng.randint(0, 3)))
            return f"{self.random_identifier()}({args})"
        elif choice == 1:
            return f"{self.random_expr(depth+1)}.{self.random_identifier()}()"
        elif choice == 2:
            return f"&{self.random_expr(depth+1)}"
        elif choice == 3:
            return f"{self.random_identifier()}::{self.random_identifier()}"
        return f"[{self.random_expr(depth+1)}; 2]"

    def random_event(self) -> str:
        """Generate a random event binding."""
        signal_name = self.rng.choice(self.SIGNALS + self.IDENTIFIERS)
        params = ""
        if self.rng.random() < 0.5:
            params = "(" + ", ".join(self.rng.choice(["_", "x", "y"]) for _ in range(self.rng.randint(0, 3))) + ")"
        with_model = " with model" if self.rng.random() < 0.2 else ""
        target = f"{self.random_identifier()}@" if self.rng.random() < 0.2 else ""

        choice = self.rng.randint(0, 2)
        if choice == 0:
            effect = self.random_expr()
        elif choice == 1:
            effect = f"return {self.random_expr()}"
        else:
            effect = f"({self.random_expr()}, {self.random_expr()})"
        return f"{signal_name}{params}{with_model} => {target}{effect}"

    def random_widget(self, depth=0) -> str:
        """Generate a random widget declaration."""
        attrs = ""
        if self.rng.random() < 0.2:
            attrs = self.rng.choice([
                f'#[name="{self.random_identifier()}"] ',
                '#[container] ',
                f'#[parent="{self.random_identifier()}"] ',
            ])
        typ = self.rng.choice(self.WIDGET_TYPES)
        init = ""
        if self.rng.random() < 0.2:
            init = "(" + ", ".join(self.random_expr() for _ in range(self.rng.randint(0, 2))) + ")"

        entries = []
        for _ in range(self.rng.randint(0, 4)):
            choice = self.rng.randint(0, 3)
            if choice == 0:
                entries.append(f"{self.rng.choice(self.PROPERTIES)}: {self.random_expr()}")
            elif choice == 1:
                entries.append(self.random_event())
            elif choice == 2 and depth < 3:
                entries.append(self.random_widget(depth + 1))
            else:
                entries.append("child: { expand: true, padding: 3 }")
        return f"{attrs}{typ}{init} {{ {', '.join(entries)} }}"

    def generate_random(self) -> str:
        """Generate a random view."""
        return self.random_widget()

    def mutate(self, input_str: str) -> str:
        """Mutate an input string."""
        mutations = [
            self._mutate_insert_random,
            self._mutate_delete_chunk,
            self._mutate_repeat_chunk,
            self._mutate_insert_special,
            self._mutate_drop_closer,
            self._mutate_swap_path_separator,
            self._mutate_swap_arrow,
            self._mutate_drop_dispatch,
            self._mutate_unwrap_group,
            self._mutate_duplicate_group,
        ]

        mutation = self.rng.choice(mutations)
        return mutation(input_str)

    def _mutate_insert_random(self, s: str) -> str:
        """Insert random tokens."""
        pos = self.rng.randint(0, len(s))
        chars = self.rng.choice([
            self.rng.choice(self.KEYWORDS),
            self.rng.choice(self.OPERATORS),
            self.rng.choice(self.BRACKETS),
            self.random_identifier(),
            self.random_literal(),
            " " * self.rng.randint(1, 5),
            "\n",
        ])
        return s[:pos] + chars + s[pos:]

    def _mutate_delete_chunk(self, s: str) -> str:
        """Delete a random chunk."""
        if len(s) < 2:
            return s
        start = self.rng.randint(0, len(s) - 1)
        end = self.rng.randint(start + 1, min(start + 20, len(s)))
        return s[:start] + s[end:]

    def _mutate_repeat_chunk(self, s: str) -> str:
        """Repeat a chunk."""
        if len(s) < 2:
            return s * 2
        start = self.rng.randint(0, len(s) - 1)
        end = self.rng.randint(start + 1, min(start + 10, len(s)))
        chunk = s[start:end]
        return s[:end] + chunk * self.rng.randint(1, 5) + s[end:]

    def _mutate_insert_special(self, s: str) -> str:
        """Insert characters the lexers treat specially."""
        pos = self.rng.randint(0, len(s))
        special = self.rng.choice([
            "\x00",
            "\r\n",
            "α",
            "\\",
            '"',
            "'" * 3,
            "/*",
            "*/",
            "//",
            "<<>>",
            "'a",
            "r#",
        ])
        return s[:pos] + special + s[pos:]

    def _replace_one(self, s: str, old: str, choices) -> str:
        positions = [i for i in range(len(s)) if s.startswith(old, i)]
        if not positions:
            return s
        pos = self.rng.choice(positions)
        return s[:pos] + self.rng.choice(choices) + s[pos + len(old):]

    def _mutate_drop_closer(self, s: str) -> str:
        """Delete one closing delimiter, leaving its group unterminated."""
        positions = [i for i, c in enumerate(s) if c in ")]}"]
        if not positions:
            return s
        pos = self.rng.choice(positions)
        return s[:pos] + s[pos + 1:]

    def _mutate_swap_path_separator(self, s: str) -> str:
        """Turn a `::` path separator into `:` (a property) or `: :`."""
        return self._replace_one(s, "::", [":", ": :", ":::"])

    def _mutate_swap_arrow(self, s: str) -> str:
        """Break up or replace an event arrow."""
        return self._replace_one(s, "=>", ["->", "=", "= >", ">=", "=>=>"])

    def _mutate_drop_dispatch(self, s: str) -> str:
        """Remove the `@` of a foreign message, or double it."""
        return self._replace_one(s, "@", ["", "@@", " @ "])

    def _groups(self, s: str) -> list:
        try:
            tokens = view_lexer.tokenize(s)
        except LexerError:
            return []
        groups = []
        stack = list(tokens)
        while stack:
            token = stack.pop()
            if token.is_group():
                groups.append(token)
                stack.extend(token.children)
        return groups

    def _mutate_unwrap_group(self, s: str) -> str:
        """Remove the delimiters of one group, splicing its contents into the parent."""
        groups = self._groups(s)
        if not groups:
            return s
        group = self.rng.choice(groups)
        return s[:group.start] + s[group.start + 1:group.end - 1] + s[group.end:]

    def _mutate_duplicate_group(self, s: str) -> str:
        """Repeat one group right after itself, with or without a comma."""
        groups = self._groups(s)
        if not groups:
            return s
        group = self.rng.choice(groups)
        text = s[group.start:group.end]
        return s[:group.end] + self.rng.choice(["", " ", ", "]) + text + s[group.end:]

    def save_finding(self, input_str: str, error: Exception, category: str):
        """Save an interesting finding to disk."""
        hash_val = hashlib.md5(input_str.encode('utf-8', errors='replace')).hexdigest()[:8]
        key = f"{category}_{hash_val}"

        if key in self.stats["unique_findings"]:
            return

        self.stats["unique_findings"].add(key)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = FINDINGS_DIR / f"{category}_{timestamp}_{hash_val}.txt"

        with open(filename, 'w') as f:
            f.write(f"Category: {category}\n")
            f.write(f"Error: {type(error).__name__}: {error}\n")
            f.write(f"Timestamp: {timestamp}\n")
            f.write(f"Input length: {len(input_str)}\n")
            f.write("\n--- Input ---\n")
            f.write(input_str)
            # Hand lexer rendering, to see how the input was split into tokens
            try:
                rendered = view_lexer.render_tokens(view_lexer.tokenize(input_str))
            except LexerError as e:
                rendered = f"(rejected: {e})"
            f.write("\n\n--- Tokens ---\n")
            f.write(rendered)
            if category == "crash":
                f.write("\n\n--- Traceback ---\n")
                f.write(traceback.format_exc())

        print(f"\n[!] Saved finding: {filename}")

    def compare_tokenizers(self, input_str: str):
        """Run both tokenizers; raise TokenMismatch if both accept but disagree.

        Returns the hand lexer's tokens, or None when it rejected the input.
        """
        try:
            tokens = view_lexer.tokenize(input_str)
        except LexerError:
            tokens = None
        try:
            peg_tokens = view_peg_lexer.tokenize(input_str)
        except UnexpectedInput:
            peg_tokens = None

        if tokens is None or peg_tokens is None:
            if (tokens is None) != (peg_tokens is None):
                self.stats["disagreements"] += 1
            return tokens

        if tokens != peg_tokens:
            raise TokenMismatch(f"lexer: {tokens!r}\nlark:  {peg_tokens!r}")
        return tokens

    def test_input(self, input_str: str) -> bool:
        """Test a single input. Returns True if interesting (crash/timeout/mismatch)."""
        try:
            with timeout(5):  # 5 second timeout
                tokens = self.compare_tokenizers(input_str)
                if tokens is None:
                    self.stats["parse_error"] += 1
                    return False
                parse_tokens(tokens)
            self.stats["parse_ok"] += 1
            return False
        except EXPECTED_ERRORS:
            # Normal parse rejection
            self.stats["parse_error"] += 1
            return False
        except FuzzTimeout as e:
            self.stats["timeouts"] += 1
            self.save_finding(input_str, e, "timeout")
            return True
        except TokenMismatch as e:
            self.stats["mismatches"] += 1
            self.save_finding(input_str, e, "mismatch")
            return True
        except Exception as e:
            # Unexpected crash!
            self.stats["crashes"] += 1
            self.save_finding(input_str, e, "crash")
            return True

    def run(self, duration_minutes: float = None):
        """Run the fuzzer."""
        self.start_time = time.time()
        end_time = self.start_time + (duration_minutes * 60) if duration_minutes else None

        print(f"Starting fuzzer (seed corpus: {len(self.SEED_CORPUS)} inputs)")
        print(f"Duration: {'unlimited' if not duration_minutes else f'{duration_minutes} minutes'}")
        print(f"Findings directory: {FINDINGS_DIR}")
        print("-" * 60)

        corpus = list(self.SEED_CORPUS)

        try:
            while True:
                self.stats["iterations"] += 1

                # Check time limit
                if end_time and time.time() > end_time:
                    break

                # Choose strategy
                strategy = self.rng.random()

                if strategy < 0.3:
                    input_str = self.generate_random()
                elif strategy < 0.7:
                    base = self.rng.choice(corpus)
                    input_str = self.mutate(base)
                    # Sometimes apply multiple mutations
                    for _ in range(self.rng.randint(0, 3)):
                        input_str = self.mutate(input_str)
                else:
                    input_str = self.rng.choice(corpus)

                interesting = self.test_input(input_str)

                if interesting or (self.rng.random() < 0.01 and len(input_str) < 1000):
                    corpus.append(input_str)
                    if len(corpus) > 1000:
                        corpus.pop(self.rng.randint(len(self.SEED_CORPUS), len(corpus) - 1))

                # Progress report
                if self.stats["iterations"] % 1000 == 0:
                    self.print_stats()

        except KeyboardInterrupt:
            print("\n\nInterrupted by user")

        print("\n" + "=" * 60)
        print("Final Statistics:")
        self.print_stats()

    def print_stats(self):
        """Print current statistics."""
        elapsed = time.time() - self.start_time
        rate = self.stats["iterations"] / elapsed if elapsed > 0 else 0

        print(f"[{elapsed:.1f}s] "
              f"iterations={self.stats['iterations']} "
              f"({rate:.0f}/s) | "
              f"ok={self.stats['parse_ok']} "
              f"reject={self.stats['parse_error']} | "
              f"crashes={self.stats['crashes']} "
              f"timeouts={self.stats['timeouts']} "
              f"mismatches={self.stats['mismatches']} "
              f"disagree={self.stats['disagreements']} "
              f"unique={len(self.stats['unique_findings'])}")


def main():
    parser = argparse.ArgumentParser(description="Fuzz the widget view parser")
    parser.add_argument("--duration", type=float, default=None,
                        help="Duration in minutes (default: run forever)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducibility")
    args = parser.parse_args()

    seed = args.seed if args.seed is not None else int(time.time())
    print(f"Random seed: {seed}")

    fuzzer = Fuzzer(seed=seed)
    fuzzer.run(duration_minutes=args.duration)


if __name__ == "__main__":
    main()
