"""
Lexer for the widget view DSL.

Tokenizes the input into a stream of token trees for the parser. Delimited
groups are nested tokens, so the parser never has to balance brackets itself.
"""

import string
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional


class TokenType(Enum):
    IDENT = auto()
    PUNCT = auto()

    # Literals
    STRING = auto()
    CHAR = auto()
    NUMBER = auto()
    LIFETIME = auto()

    # Delimited group: ( ), [ ], { }
    GROUP = auto()


class Delimiter(Enum):
    PAREN = '('
    BRACKET = '['
    BRACE = '{'

    @property
    def close(self) -> str:
        return PAIRS[self.value]


PAIRS = {'(': ')', '[': ']', '{': '}'}
CLOSERS = set(PAIRS.values())

# Longest first, so '::' wins over ':' and '=>' over '='
MULTI_CHAR_PUNCT = [
    '::', '=>', '->', '==', '!=', '<=', '>=', '&&', '||', '..',
    '+=', '-=', '*=', '/=',
]

SINGLE_CHAR_PUNCT = set('#!@&*.;?$%^|~+-/=<>,:')

DIGITS = set(string.digits)
IDENT_START = set(string.ascii_letters + '_')
IDENT_CHARS = IDENT_START | DIGITS


@dataclass
class Token:
    type: TokenType
    value: str
    line: int = 0
    column: int = 0
    start: int = 0
    end: int = 0
    delimiter: Optional[Delimiter] = None
    children: List['Token'] = field(default_factory=list)

    def __repr__(self):
        if self.type == TokenType.GROUP:
            return (f"Token(GROUP, {self.delimiter.value}{self.delimiter.close}, "
                    f"{len(self.children)} children, {self.line}:{self.column})")
        return f"Token({self.type.name}, {self.value!r}, {self.line}:{self.column})"

    def is_punct(self, value: str) -> bool:
        return self.type == TokenType.PUNCT and self.value == value

    def is_ident(self, value: Optional[str] = None) -> bool:
        if self.type != TokenType.IDENT:
            return False
        return value is None or self.value == value

    def is_group(self, delimiter: Optional[Delimiter] = None) -> bool:
        if self.type != TokenType.GROUP:
            return False
        return delimiter is None or self.delimiter == delimiter

    @property
    def text(self) -> str:
        """Source-like rendering of this token (groups included)."""
        if self.type == TokenType.GROUP:
            return self.delimiter.value + render_tokens(self.children) + self.delimiter.close
        return self.value

    def string_value(self) -> str:
        """Decode a STRING token into its Python string value."""
        if self.type != TokenType.STRING:
            raise ValueError(f"Not a string literal: {self.text}")
        raw = self.value
        prefix = raw[:raw.index('"')]
        body = raw[len(prefix) + 1:-1]
        if 'r' in prefix:
            return body
        return _unescape(body)


class LexerError(Exception):
    """Raised when lexer encounters invalid input."""
    def __init__(self, message: str, line: int, column: int):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(f"Line {line}, column {column}: {message}")


ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '"': '"', "'": "'", '\\': '\\'}


def _unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        char = body[i]
        if char == '\\' and i + 1 < len(body):
            out.append(ESCAPES.get(body[i + 1], body[i + 1]))
            i += 2
        else:
            out.append(char)
            i += 1
    return ''.join(out)


def render_tokens(tokens: List[Token]) -> str:
    """Render a token span as text.

    Tokens that touched in the source are joined directly, anything
    separated by whitespace or comments gets exactly one space.
    """
    parts = []
    previous = None
    for token in tokens:
        if previous is not None and token.start != previous.end:
            parts.append(' ')
        parts.append(token.text)
        previous = token
    return ''.join(parts)


class Lexer:
    """Tokenizer for the widget view DSL."""

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source and return the list of top-level token trees."""
        while not self._at_end():
            self._scan_token()
        return self._build_groups()

    def _at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        pos = self.pos + offset
        if pos >= len(self.source):
            return '\0'
        return self.source[pos]

    def _advance(self) -> str:
        char = self.source[self.pos]
        self.pos += 1
        if char == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return char

    def _add_token(self, token_type: TokenType, start: int, line: int, column: int):
        value = self.source[start:self.pos]
        self.tokens.append(Token(token_type, value, line, column, start, self.pos))

    def _skip_whitespace(self):
        while not self._at_end():
            char = self._peek()
            if char in ' \t\r\n':
                self._advance()
            elif char == '/' and self._peek(1) == '/':
                while not self._at_end() and self._peek() != '\n':
                    self._advance()
            elif char == '/' and self._peek(1) == '*':
                self._skip_block_comment()
            else:
                break

    def _skip_block_comment(self):
        line, column = self.line, self.column
        self._advance()
        self._advance()
        while not (self._peek() == '*' and self._peek(1) == '/'):
            if self._at_end():
                raise LexerError("Unterminated block comment", line, column)
            self._advance()
        self._advance()
        self._advance()

    def _scan_token(self):
        self._skip_whitespace()

        if self._at_end():
            return

        start = self.pos
        start_line = self.line
        start_column = self.column
        char = self._advance()

        # Delimiters are paired up afterwards by _build_groups
        if char in PAIRS or char in CLOSERS:
            self._add_token(TokenType.PUNCT, start, start_line, start_column)
            return

        # Strings, including b"..." and r"..."
        if char == '"':
            self._scan_string(start, start_line, start_column)
            return
        if char in 'br' and self._peek() == '"':
            self._advance()
            self._scan_string(start, start_line, start_column)
            return
        if char == 'b' and self._peek() == 'r' and self._peek(1) == '"':
            self._advance()
            self._advance()
            self._scan_string(start, start_line, start_column)
            return

        if char == "'":
            self._scan_quote(start, start_line, start_column)
            return

        if char in DIGITS:
            self._scan_number(start, start_line, start_column)
            return

        if char in IDENT_START:
            while not self._at_end() and self._peek() in IDENT_CHARS:
                self._advance()
            self._add_token(TokenType.IDENT, start, start_line, start_column)
            return

        for punct in MULTI_CHAR_PUNCT:
            if self.source.startswith(punct, start):
                for _ in range(len(punct) - 1):
                    self._advance()
                self._add_token(TokenType.PUNCT, start, start_line, start_column)
                return

        if char in SINGLE_CHAR_PUNCT:
            self._add_token(TokenType.PUNCT, start, start_line, start_column)
            return

        raise LexerError(f"Unexpected character: {char!r}", start_line, start_column)

    def _scan_string(self, start: int, start_line: int, start_column: int):
        raw = 'r' in self.source[start:self.pos - 1]
        while not self._at_end() and self._peek() != '"':
            if self._peek() == '\\' and not raw:
                self._advance()
                if self._at_end():
                    raise LexerError("Unterminated string escape", start_line, start_column)
            self._advance()

        if self._at_end():
            raise LexerError("Unterminated string", start_line, start_column)

        self._advance()  # Closing "
        self._add_token(TokenType.STRING, start, start_line, start_column)

    def _scan_quote(self, start: int, start_line: int, start_column: int):
        # 'x' and '\n' are chars, 'a without a closing quote is a lifetime
        if self._peek() == '\\':
            self._advance()
            if self._at_end():
                raise LexerError("Unterminated character literal", start_line, start_column)
            self._advance()
            if self._peek() != "'":
                raise LexerError("Unterminated character literal", start_line, start_column)
            self._advance()
            self._add_token(TokenType.CHAR, start, start_line, start_column)
            return

        if not self._at_end() and self._peek() != "'" and self._peek(1) == "'":
            self._advance()
            self._advance()
            self._add_token(TokenType.CHAR, start, start_line, start_column)
            return

        if self._peek() in IDENT_START:
            while not self._at_end() and self._peek() in IDENT_CHARS:
                self._advance()
            self._add_token(TokenType.LIFETIME, start, start_line, start_column)
            return

        raise LexerError("Unterminated character literal", start_line, start_column)

    def _scan_number(self, start: int, start_line: int, start_column: int):
        self._scan_word_chars()
        if self._peek() == '.' and self._peek(1) in DIGITS:
            self._advance()
            self._scan_word_chars()
        self._add_token(TokenType.NUMBER, start, start_line, start_column)

    def _scan_word_chars(self):
        while not self._at_end() and self._peek() in IDENT_CHARS:
            self._advance()

    def _build_groups(self) -> List[Token]:
        """Fold the flat token list into nested GROUP tokens."""
        root: List[Token] = []
        stack = []  # (open token, enclosing list)
        current = root
        for token in self.tokens:
            if token.type == TokenType.PUNCT and token.value in PAIRS:
                group = Token(TokenType.GROUP, token.value, token.line, token.column,
                              token.start, token.end, Delimiter(token.value))
                current.append(group)
                stack.append((group, current))
                current = group.children
            elif token.type == TokenType.PUNCT and token.value in CLOSERS:
                if not stack:
                    raise LexerError(f"Unexpected closing {token.value!r}", token.line, token.column)
                group, enclosing = stack.pop()
                if group.delimiter.close != token.value:
                    raise LexerError(
                        f"Mismatched closing {token.value!r}, expected {group.delimiter.close!r}",
                        token.line, token.column
                    )
                group.end = token.end
                current = enclosing
            else:
                current.append(token)

        if stack:
            group, _ = stack[-1]
            raise LexerError(f"Unclosed {group.delimiter.value!r}", group.line, group.column)
        return root


def tokenize(source: str) -> List[Token]:
    """Convenience function to tokenize source code."""
    lexer = Lexer(source)
    return lexer.tokenize()
