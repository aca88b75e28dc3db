import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

import ply.lex as lex

from rustic.errors import LexError, LexErrorKind, SourceLocation

logger = logging.getLogger(__name__)

I64_MAX = 2 ** 63 - 1

_INT_RE = re.compile(r'\d+')
_FLOAT_RE = re.compile(r'\d+(?:\.\d+)?(?:[eE][+-]?\d+)?')

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"'}


class TokenKind(Enum):
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    LITERAL = "literal"
    OPERATOR = "operator"
    PUNCTUATION = "punctuation"
    EOF = "end-of-input"


@dataclass(frozen=True)
class Token:
    """A single lexeme; `type` is the grammar terminal name used by the parser"""
    kind: TokenKind
    type: str
    lexeme: str
    position: SourceLocation
    value: Any = None

    def __str__(self) -> str:
        if self.kind is TokenKind.EOF:
            return "end of input"
        return f"'{self.lexeme}'"


class Lexer:
    # A string containing ignored characters (spaces, tabs and carriage returns)
    t_ignore = ' \t\r'

    # Keywords
    reserved = {
        'import': 'IMPORT',
        'as': 'AS',
        'struct': 'STRUCT',
        'fn': 'FN',
        'let': 'LET',
        'return': 'RETURN',
        'if': 'IF',
        'else': 'ELSE',
        'while': 'WHILE',
        'true': 'TRUE',
        'false': 'FALSE',
        'move': 'MOVE',
    }

    operators = [
        'PLUS', 'MINUS', 'TIMES', 'DIVIDE', 'MOD',
        'EQEQ', 'NOTEQ', 'LT', 'LE', 'GT', 'GE',
        'ANDAND', 'OROR', 'NOT', 'EQUALS', 'ARROW',
    ]

    punctuation = [
        'LPAREN', 'RPAREN', 'LBRACE', 'RBRACE',
        'COMMA', 'DOT', 'COLON', 'SEMI',
    ]

    # List of token names
    tokens = [
        'IDENTIFIER', 'INT_LITERAL', 'FLOAT_LITERAL', 'STRING_LITERAL',
    ] + operators + punctuation + list(reserved.values())

    # Regular expression rules for simple tokens
    t_PLUS = r'\+'
    t_MINUS = r'-'
    t_TIMES = r'\*'
    t_DIVIDE = r'/'
    t_MOD = r'%'
    t_EQEQ = r'=='
    t_NOTEQ = r'!='
    t_LE = r'<='
    t_GE = r'>='
    t_LT = r'<'
    t_GT = r'>'
    t_ANDAND = r'&&'
    t_OROR = r'\|\|'
    t_NOT = r'!'
    t_EQUALS = r'='
    t_ARROW = r'->'
    t_LPAREN = r'\('
    t_RPAREN = r'\)'
    t_LBRACE = r'\{'
    t_RBRACE = r'\}'
    t_COMMA = r','
    t_DOT = r'\.'
    t_COLON = r':'
    t_SEMI = r';'

    # Define a rule so we can track line numbers
    def t_newline(self, t):
        r'\n+'
        t.lexer.lineno += len(t.value)
        self.line_start = t.lexpos + len(t.value)

    # Comments
    def t_COMMENT(self, t):
        r'(?://|\#).*'
        pass

    def t_IDENTIFIER(self, t):
        r'[A-Za-z_][A-Za-z0-9_]*'
        t.type = self.reserved.get(t.value, 'IDENTIFIER')
        return t

    def t_NUMBER(self, t):
        r'\d+(?:\.\d+)?(?:[eE][+-]?\d+)?[A-Za-z0-9_.]*'
        if _INT_RE.fullmatch(t.value):
            value = int(t.value)
            # 2**63 is only valid right under unary minus; the parser checks that
            if value > I64_MAX + 1:
                self._fail(LexErrorKind.MALFORMED_NUMBER, t.lexpos,
                           f"Integer literal '{t.value}' does not fit in 64 bits")
            t.type = 'INT_LITERAL'
        elif _FLOAT_RE.fullmatch(t.value):
            t.type = 'FLOAT_LITERAL'
        else:
            self._fail(LexErrorKind.MALFORMED_NUMBER, t.lexpos,
                       f"Malformed number literal '{t.value}'")
        return t

    def t_STRING_LITERAL(self, t):
        r'"(?:[^"\\\n]|\\.)*"'
        return t

    def t_unterminated_string(self, t):
        r'"(?:[^"\\\n]|\\.)*'
        self._fail(LexErrorKind.UNTERMINATED_STRING, t.lexpos, "Unterminated string literal")

    # Error handling rule
    def t_error(self, t):
        self._fail(LexErrorKind.INVALID_CHARACTER, t.lexpos,
                   f"Invalid character '{t.value[0]}'")

    # Build the lexer
    def __init__(self):
        self.lexer = lex.lex(module=self)
        self.source = ""
        self.file_path = "<string>"
        self.line_start = 0
        self._byte_mark = (0, 0)

    def _location(self, lexpos: int) -> SourceLocation:
        return SourceLocation(
            file=self.file_path,
            line=self.lexer.lineno,
            column=lexpos - self.line_start + 1,
            offset=self._byte_offset(lexpos),
        )

    def _byte_offset(self, lexpos: int) -> int:
        # tokens arrive in increasing order, so encode only the new slice
        pos, count = self._byte_mark
        if lexpos < pos:
            pos, count = 0, 0
        count += len(self.source[pos:lexpos].encode('utf-8'))
        self._byte_mark = (lexpos, count)
        return count

    def _fail(self, kind: LexErrorKind, lexpos: int, message: str):
        raise LexError(message=message, location=self._location(lexpos), kind=kind)

    def _decode_string(self, lexeme: str, lexpos: int) -> str:
        chars = []
        i = 1
        while i < len(lexeme) - 1:
            c = lexeme[i]
            if c == '\\':
                escaped = lexeme[i + 1]
                if escaped not in _ESCAPES:
                    self._fail(LexErrorKind.INVALID_CHARACTER, lexpos + i,
                               f"Invalid escape sequence '\\{escaped}'")
                chars.append(_ESCAPES[escaped])
                i += 2
            else:
                chars.append(c)
                i += 1
        return ''.join(chars)

    def _classify(self, tok) -> Token:
        location = self._location(tok.lexpos)
        if tok.type == 'IDENTIFIER':
            return Token(TokenKind.IDENTIFIER, tok.type, tok.value, location, tok.value)
        if tok.type in ('TRUE', 'FALSE'):
            return Token(TokenKind.LITERAL, tok.type, tok.value, location, tok.type == 'TRUE')
        if tok.type in self.reserved.values():
            return Token(TokenKind.KEYWORD, tok.type, tok.value, location)
        if tok.type == 'INT_LITERAL':
            return Token(TokenKind.LITERAL, tok.type, tok.value, location, int(tok.value))
        if tok.type == 'FLOAT_LITERAL':
            return Token(TokenKind.LITERAL, tok.type, tok.value, location, float(tok.value))
        if tok.type == 'STRING_LITERAL':
            value = self._decode_string(tok.value, tok.lexpos)
            return Token(TokenKind.LITERAL, tok.type, tok.value, location, value)
        if tok.type in self.operators:
            return Token(TokenKind.OPERATOR, tok.type, tok.value, location)
        return Token(TokenKind.PUNCTUATION, tok.type, tok.value, location)

    def tokenize(self, source: str, file_path: str = "<string>") -> Iterator[Token]:
        """Lazily produce the tokens of `source`, ending with a single EOF token.

        Raises LexError on the first malformed lexeme.
        """
        self.source = source
        self.file_path = file_path
        self.line_start = 0
        self.lexer.lineno = 1
        self._byte_mark = (0, 0)
        self.lexer.input(source)
        logger.debug(f"Tokenizing {file_path} ({len(source)} chars)")
        while True:
            tok = self.lexer.token()
            if tok is None:
                break
            yield self._classify(tok)
        yield Token(TokenKind.EOF, 'EOF', '', self._location(len(source)))


_DISPLAY = {
    'IDENTIFIER': 'identifier',
    'INT_LITERAL': 'integer literal',
    'FLOAT_LITERAL': 'float literal',
    'STRING_LITERAL': 'string literal',
    'PLUS': "'+'", 'MINUS': "'-'", 'TIMES': "'*'", 'DIVIDE': "'/'", 'MOD': "'%'",
    'EQEQ': "'=='", 'NOTEQ': "'!='", 'LT': "'<'", 'LE': "'<='", 'GT': "'>'", 'GE': "'>='",
    'ANDAND': "'&&'", 'OROR': "'||'", 'NOT': "'!'", 'EQUALS': "'='", 'ARROW': "'->'",
    'LPAREN': "'('", 'RPAREN': "')'", 'LBRACE': "'{'", 'RBRACE': "'}'",
    'COMMA': "','", 'DOT': "'.'", 'COLON': "':'", 'SEMI': "';'",
    '$end': 'end of input',
}


def describe_token_type(token_type: str) -> str:
    """Human readable name of a terminal, used in parse diagnostics"""
    if token_type in _DISPLAY:
        return _DISPLAY[token_type]
    return f"'{token_type.lower()}'"
