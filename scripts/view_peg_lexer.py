"""
Lark-based tokenizer for the widget view DSL.

Uses a formal grammar for token trees and Lark's LALR parser to produce the
same Token objects as the hand-written lexer in view_lexer.py.
"""

from typing import List

from lark import Lark, Transformer, v_args

from view_lexer import Delimiter, Token, TokenType


# Terminal priorities stand in for longest-match: Lark tries higher
# priorities first, so b"x" is a string and 'a' is a char, not a lifetime.
GRAMMAR = r"""
start: _tree*

_tree: group
     | atom

group: LPAR _tree* RPAR      -> paren
     | LSQB _tree* RSQB      -> bracket
     | LBRACE _tree* RBRACE  -> brace

atom: STRING
    | CHAR
    | LIFETIME
    | NUMBER
    | IDENT
    | PUNCT

LPAR: "("
RPAR: ")"
LSQB: "["
RSQB: "]"
LBRACE: "{"
RBRACE: "}"

STRING.3: /b?r"[^"]*"/ | /b?"(\\(.|\n)|[^"\\])*"/
CHAR.3: /'(\\(.|\n)|[^'\\])'/
LIFETIME.2: /'[A-Za-z_][A-Za-z0-9_]*/
NUMBER.2: /[0-9][0-9A-Za-z_]*(\.[0-9][0-9A-Za-z_]*)?/
IDENT.1: /[A-Za-z_][A-Za-z0-9_]*/
PUNCT.1: /::|=>|->|==|!=|<=|>=|&&|\|\||\.\.|\+=|-=|\*=|\/=|[#!@&*.;?$%^|~+\-\/=<>,:]/

LINE_COMMENT.4: /\/\/[^\n]*/
BLOCK_COMMENT.4: /\/\*(.|\n)*?\*\//
WS: /[ \t\r\n]+/

%ignore WS
%ignore LINE_COMMENT
%ignore BLOCK_COMMENT
"""

TOKEN_TYPES = {
    'STRING': TokenType.STRING,
    'CHAR': TokenType.CHAR,
    'LIFETIME': TokenType.LIFETIME,
    'NUMBER': TokenType.NUMBER,
    'IDENT': TokenType.IDENT,
    'PUNCT': TokenType.PUNCT,
}


@v_args(inline=True)
class TokenTreeTransformer(Transformer):
    """Transform the Lark parse tree into view_lexer Token trees."""

    def start(self, *trees):
        return list(trees)

    def atom(self, tok):
        return Token(
            TOKEN_TYPES[tok.type], str(tok),
            tok.line, tok.column, tok.start_pos, tok.end_pos
        )

    def paren(self, open_tok, *rest):
        return self._group(Delimiter.PAREN, open_tok, rest)

    def bracket(self, open_tok, *rest):
        return self._group(Delimiter.BRACKET, open_tok, rest)

    def brace(self, open_tok, *rest):
        return self._group(Delimiter.BRACE, open_tok, rest)

    def _group(self, delimiter, open_tok, rest):
        *children, close_tok = rest
        return Token(
            TokenType.GROUP, delimiter.value,
            open_tok.line, open_tok.column, open_tok.start_pos, close_tok.end_pos,
            delimiter, list(children)
        )


# Create parser instance
_parser = None


def get_parser():
    """Get or create the Lark parser instance."""
    global _parser
    if _parser is None:
        _parser = Lark(
            GRAMMAR,
            parser='lalr',
            lexer='basic',
        )
    return _parser


def tokenize(source: str) -> List[Token]:
    """Tokenize view source into token trees using the Lark grammar."""
    tree = get_parser().parse(source)
    return TokenTreeTransformer().transform(tree)
