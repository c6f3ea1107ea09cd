"""
Lexer for the Zephyr scripting language.

Converts source text into a stream of tokens for the parser.
Supports:
- Single-line comments (//) and nested multi-line comments (/* */)
- String literals in single or double quotes with escape sequences
- Number literals (decimal with optional fraction, hex, binary, '_' separators)
- Predicate identifiers (is_number?) and mutator identifiers (push!)
- Maximal-munch multi-character operators (.., ..=, .<, <., +=, ++, &&, ...)
"""

from fractions import Fraction
from typing import List, Optional, Iterator
from .tokens import Token, TokenType, SourceLocation, SourceSpan, KEYWORDS
from .errors import (
    LexerError,
    error_unexpected_character,
    error_unterminated_string,
    error_unterminated_comment,
    error_invalid_escape_sequence,
    error_invalid_number_literal,
    error_invalid_hex_literal,
    error_invalid_binary_literal,
)


# Three-character operators, tried before two-character ones
_THREE_CHAR_OPERATORS = {
    "..=": TokenType.RANGE_INCLUSIVE,
}

_TWO_CHAR_OPERATORS = {
    "..": TokenType.RANGE,
    ".<": TokenType.RANGE_EXCLUSIVE_END,
    "<.": TokenType.RANGE_EXCLUSIVE_START,
    "==": TokenType.EQ,
    "!=": TokenType.NE,
    "<=": TokenType.LE,
    ">=": TokenType.GE,
    "&&": TokenType.AND,
    "||": TokenType.OR,
    "**": TokenType.DOUBLE_STAR,
    "++": TokenType.INCREMENT,
    "--": TokenType.DECREMENT,
    "+=": TokenType.PLUS_ASSIGN,
    "-=": TokenType.MINUS_ASSIGN,
    "*=": TokenType.STAR_ASSIGN,
    "/=": TokenType.SLASH_ASSIGN,
    "%=": TokenType.PERCENT_ASSIGN,
}

_SINGLE_CHAR_TOKENS = {
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.STAR,
    '/': TokenType.SLASH,
    '%': TokenType.PERCENT,
    '<': TokenType.LT,
    '>': TokenType.GT,
    '=': TokenType.ASSIGN,
    '!': TokenType.NOT,
    '$': TokenType.DOLLAR,
    '?': TokenType.QUESTION,
    ':': TokenType.COLON,
    ';': TokenType.SEMICOLON,
    ',': TokenType.COMMA,
    '.': TokenType.DOT,
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '[': TokenType.LBRACKET,
    ']': TokenType.RBRACKET,
    '{': TokenType.LBRACE,
    '}': TokenType.RBRACE,
}

_ESCAPE_CHARS = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '0': '\0',
    '\\': '\\',
    '"': '"',
    "'": "'",
}


class Lexer:
    """
    Tokenizer for Zephyr source text.

    Usage:
        lexer = Lexer(source_code)
        tokens = lexer.tokenize()

    Or for streaming:
        lexer = Lexer(source_code)
        for token in lexer:
            process(token)
    """

    def __init__(self, source: str, filename: Optional[str] = None):
        self.source = source
        self.filename = filename
        self.pos = 0            # Current position in source
        self.line = 1           # Current line (1-indexed)
        self.column = 1         # Current column (1-indexed)
        self._lines: Optional[List[str]] = None  # Cached line list

    @property
    def lines(self) -> List[str]:
        """Lazy-load line list for error reporting."""
        if self._lines is None:
            self._lines = self.source.splitlines()
        return self._lines

    def get_source_line(self, line_num: int) -> Optional[str]:
        """Get a specific line of source (1-indexed)."""
        if 1 <= line_num <= len(self.lines):
            return self.lines[line_num - 1]
        return None

    def _location(self) -> SourceLocation:
        """Get current source location."""
        return SourceLocation(self.line, self.column, self.pos, self.filename)

    def _span(self, start: SourceLocation) -> SourceSpan:
        """Create a span from start to current position."""
        return SourceSpan(start, self._location())

    def _peek(self, offset: int = 0) -> str:
        """Look at character at current position + offset without consuming."""
        idx = self.pos + offset
        if idx >= len(self.source):
            return '\0'
        return self.source[idx]

    def _advance(self) -> str:
        """Consume and return current character."""
        if self.pos >= len(self.source):
            return '\0'
        ch = self.source[self.pos]
        self.pos += 1
        if ch == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def _match(self, expected: str) -> bool:
        """Consume character if it matches expected."""
        if self._peek() == expected:
            self._advance()
            return True
        return False

    def _is_at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _skip_whitespace_and_comments(self) -> None:
        """Skip whitespace, // comments and nested /* */ comments."""
        while not self._is_at_end():
            ch = self._peek()
            if ch in ' \t\r\n':
                self._advance()
            elif ch == '/' and self._peek(1) == '/':
                while self._peek() != '\n' and not self._is_at_end():
                    self._advance()
            elif ch == '/' and self._peek(1) == '*':
                self._skip_multiline_comment()
            else:
                break

    def _skip_multiline_comment(self) -> None:
        """Skip /* ... */ comment."""
        start = self._location()
        self._advance()  # consume '/'
        self._advance()  # consume '*'
        depth = 1  # Support nested comments

        while not self._is_at_end() and depth > 0:
            if self._peek() == '/' and self._peek(1) == '*':
                self._advance()
                self._advance()
                depth += 1
            elif self._peek() == '*' and self._peek(1) == '/':
                self._advance()
                self._advance()
                depth -= 1
            else:
                self._advance()

        if depth > 0:
            raise error_unterminated_comment(
                self._span(start), self.get_source_line(start.line)
            )

    def _make_token(self, token_type: TokenType, value, start: SourceLocation,
                    lexeme: Optional[str] = None) -> Token:
        """Create a token."""
        span = self._span(start)
        if lexeme is None:
            lexeme = self.source[start.offset:self.pos]
        return Token(token_type, value, lexeme, span)

    def _scan_string(self) -> Token:
        """Scan a string literal."""
        start = self._location()
        quote = self._advance()  # consume opening quote

        chars = []
        while not self._is_at_end() and self._peek() != quote:
            ch = self._peek()
            if ch == '\n':
                raise error_unterminated_string(
                    self._span(start),
                    self.get_source_line(start.line)
                )
            if ch == '\\':
                self._advance()  # consume backslash
                chars.append(self._scan_escape_sequence())
            else:
                chars.append(self._advance())

        if self._is_at_end():
            raise error_unterminated_string(
                self._span(start),
                self.get_source_line(start.line)
            )

        self._advance()  # consume closing quote
        return self._make_token(TokenType.STRING, ''.join(chars), start)

    def _scan_escape_sequence(self) -> str:
        """Parse an escape sequence after backslash."""
        esc_start = self._location()
        if self._is_at_end():
            raise error_invalid_escape_sequence(
                "", self._span(esc_start), self.get_source_line(esc_start.line)
            )

        ch = self._advance()
        if ch in _ESCAPE_CHARS:
            return _ESCAPE_CHARS[ch]

        if ch == 'x':
            digits = self._peek() + self._peek(1)
            if all(d in '0123456789abcdefABCDEF' for d in digits):
                self._advance()
                self._advance()
                return chr(int(digits, 16))
            raise error_invalid_escape_sequence(
                'x' + digits.rstrip('\0'), self._span(esc_start),
                self.get_source_line(esc_start.line)
            )

        if ch == 'u' and self._peek() == '{':
            self._advance()
            digits = []
            while self._peek() in '0123456789abcdefABCDEF' and not self._is_at_end():
                digits.append(self._advance())
            if not digits or not self._match('}') or int(''.join(digits), 16) > 0x10FFFF:
                raise error_invalid_escape_sequence(
                    'u{' + ''.join(digits), self._span(esc_start),
                    self.get_source_line(esc_start.line)
                )
            return chr(int(''.join(digits), 16))

        raise error_invalid_escape_sequence(
            ch, self._span(esc_start), self.get_source_line(esc_start.line)
        )

    def _scan_number(self) -> Token:
        """Scan a numeric literal (integer or exact decimal)."""
        start = self._location()

        if self._peek() == '0' and self._peek(1) in 'xX':
            return self._scan_prefixed_number(start, '0123456789abcdefABCDEF', 16,
                                              error_invalid_hex_literal)
        if self._peek() == '0' and self._peek(1) in 'bB':
            return self._scan_prefixed_number(start, '01', 2,
                                              error_invalid_binary_literal)

        while self._peek().isdigit() or (self._peek() == '_' and self._peek(1).isdigit()):
            self._advance()

        # A '.' only starts a fraction when a digit follows, so 0..10 stays a range
        is_fraction = False
        if self._peek() == '.' and self._peek(1).isdigit():
            is_fraction = True
            self._advance()  # consume '.'
            while self._peek().isdigit() or (self._peek() == '_' and self._peek(1).isdigit()):
                self._advance()

        if self._peek().isalpha() or self._peek() == '_':
            while self._peek().isalnum() or self._peek() == '_':
                self._advance()
            lexeme = self.source[start.offset:self.pos]
            raise error_invalid_number_literal(
                lexeme, self._span(start), self.get_source_line(start.line)
            )

        lexeme = self.source[start.offset:self.pos]
        text = lexeme.replace('_', '')
        if is_fraction:
            value = Fraction(text)
            if value.denominator == 1:
                value = int(value)
        else:
            value = int(text)
        return self._make_token(TokenType.NUMBER, value, start, lexeme)

    def _scan_prefixed_number(self, start: SourceLocation, digits: str, base: int,
                              make_error) -> Token:
        """Scan a 0x / 0b literal."""
        self._advance()  # consume '0'
        self._advance()  # consume 'x' or 'b'
        while self._peek().isalnum() or self._peek() == '_':
            self._advance()

        lexeme = self.source[start.offset:self.pos]
        body = lexeme[2:].replace('_', '')
        if not body or any(c not in digits for c in body):
            raise make_error(lexeme, self._span(start), self.get_source_line(start.line))
        return self._make_token(TokenType.NUMBER, int(body, base), start, lexeme)

    def _scan_identifier_or_keyword(self) -> Token:
        """Scan an identifier or keyword."""
        start = self._location()

        while self._peek().isalnum() or self._peek() == '_':
            self._advance()

        word = self.source[start.offset:self.pos]
        if word in KEYWORDS:
            token_type = KEYWORDS[word]
            if token_type == TokenType.TRUE:
                return self._make_token(token_type, True, start, word)
            if token_type == TokenType.FALSE:
                return self._make_token(token_type, False, start, word)
            if token_type == TokenType.NULL:
                return self._make_token(token_type, None, start, word)
            return self._make_token(token_type, word, start, word)

        # Suffixes: is_number? and push! ('!=' is still an operator)
        if self._peek() == '?':
            self._advance()
        elif self._peek() == '!' and self._peek(1) != '=':
            self._advance()

        lexeme = self.source[start.offset:self.pos]
        return self._make_token(TokenType.IDENTIFIER, lexeme, start, lexeme)

    def _scan_token(self) -> Token:
        """Scan the next token."""
        self._skip_whitespace_and_comments()

        if self._is_at_end():
            return self._make_token(TokenType.EOF, None, self._location(), "")

        start = self._location()
        ch = self._peek()

        if ch in '"\'':
            return self._scan_string()

        if ch.isdigit():
            return self._scan_number()

        if ch.isalpha() or ch == '_':
            return self._scan_identifier_or_keyword()

        # Maximal munch over operator tables
        three = self.source[self.pos:self.pos + 3]
        if three in _THREE_CHAR_OPERATORS:
            for _ in range(3):
                self._advance()
            return self._make_token(_THREE_CHAR_OPERATORS[three], three, start)

        two = self.source[self.pos:self.pos + 2]
        if two in _TWO_CHAR_OPERATORS:
            self._advance()
            self._advance()
            return self._make_token(_TWO_CHAR_OPERATORS[two], two, start)

        self._advance()
        if ch in _SINGLE_CHAR_TOKENS:
            return self._make_token(_SINGLE_CHAR_TOKENS[ch], ch, start)

        raise error_unexpected_character(
            ch, self._span(start), self.get_source_line(start.line)
        )

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source, returning a list of tokens."""
        tokens = []
        while True:
            token = self._scan_token()
            tokens.append(token)
            if token.type == TokenType.EOF:
                break
        return tokens

    def __iter__(self) -> Iterator[Token]:
        """Iterate over tokens."""
        while True:
            token = self._scan_token()
            yield token
            if token.type == TokenType.EOF:
                break


def tokenize(source: str, filename: Optional[str] = None) -> List[Token]:
    """
    Convenience function to tokenize source code.

    Args:
        source: The source code to tokenize
        filename: Optional filename for error messages

    Returns:
        List of tokens

    Raises:
        LexerError: If tokenization fails
    """
    lexer = Lexer(source, filename)
    return lexer.tokenize()
