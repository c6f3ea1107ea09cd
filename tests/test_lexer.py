"""
Unit tests for the Zephyr lexer.
"""

from fractions import Fraction

import pytest
from zephyr import tokenize, Lexer, TokenType, LexerError


def types_of(source):
    return [t.type for t in tokenize(source)]


class TestLexerBasics:
    """Test basic lexer functionality."""

    def test_empty_source(self):
        """Empty source produces only EOF."""
        tokens = tokenize("")
        assert len(tokens) == 1
        assert tokens[0].type == TokenType.EOF

    def test_whitespace_only(self):
        """Whitespace and newlines produce only EOF."""
        assert types_of("  \t \n\n  ") == [TokenType.EOF]

    def test_simple_let_statement(self):
        """Basic let statement tokenization."""
        assert types_of("let x = 42;") == [
            TokenType.LET,
            TokenType.IDENTIFIER,
            TokenType.ASSIGN,
            TokenType.NUMBER,
            TokenType.SEMICOLON,
            TokenType.EOF,
        ]

    def test_position_tracking(self):
        """Token positions are tracked correctly."""
        tokens = tokenize("let x = 5;")
        assert tokens[0].span.start.line == 1
        assert tokens[0].span.start.column == 1
        assert tokens[1].span.start.column == 5
        assert tokens[1].span.start.offset == 4

    def test_multiline_position_tracking(self):
        """Position tracking across multiple lines."""
        tokens = tokenize("let x = 5;\n  let y = 10;")
        let_tokens = [t for t in tokens if t.type == TokenType.LET]
        assert let_tokens[1].span.start.line == 2
        assert let_tokens[1].span.start.column == 3

    def test_filename_in_location(self):
        """The filename is carried on every location."""
        tokens = tokenize("x", filename="main.zr")
        assert tokens[0].span.start.filename == "main.zr"
        assert str(tokens[0].span.start) == "main.zr:1:1"

    def test_lexer_iteration(self):
        """The Lexer can be iterated lazily."""
        tokens = list(Lexer("a b"))
        assert [t.type for t in tokens] == [
            TokenType.IDENTIFIER, TokenType.IDENTIFIER, TokenType.EOF,
        ]


class TestComments:
    """Test comment handling."""

    def test_line_comment(self):
        """// comments run to the end of the line."""
        tokens = tokenize("// a comment\nlet x = 5;")
        assert tokens[0].type == TokenType.LET

    def test_multiline_comment(self):
        """Multi-line comments are skipped."""
        tokens = tokenize("/* This is\na multi-line\ncomment */ let x = 5;")
        assert tokens[0].type == TokenType.LET
        assert tokens[0].span.start.line == 3

    def test_nested_multiline_comment(self):
        """Nested multi-line comments are supported."""
        tokens = tokenize("/* outer /* inner */ still outer */ let x = 5;")
        assert tokens[0].type == TokenType.LET

    def test_unterminated_multiline_comment(self):
        """Unterminated multi-line comment raises error."""
        with pytest.raises(LexerError) as exc_info:
            tokenize("/* unterminated comment")
        assert "E004" in str(exc_info.value)


class TestStringLiterals:
    """Test string literal handling."""

    def test_double_quoted(self):
        tokens = tokenize('"hello world"')
        assert tokens[0].type == TokenType.STRING
        assert tokens[0].value == "hello world"

    def test_single_quoted(self):
        tokens = tokenize("'hello'")
        assert tokens[0].value == "hello"

    def test_escape_sequences(self):
        """Standard escapes are decoded."""
        tokens = tokenize(r'"line1\nline2\ttab\\"')
        assert tokens[0].value == "line1\nline2\ttab\\"

    def test_hex_and_unicode_escapes(self):
        tokens = tokenize(r'"\x41\u{1F600}"')
        assert tokens[0].value == "A\U0001F600"

    def test_escaped_quote(self):
        tokens = tokenize(r'"He said \"hi\""')
        assert tokens[0].value == 'He said "hi"'

    def test_unterminated_string(self):
        """A newline before the closing quote is an error."""
        with pytest.raises(LexerError) as exc_info:
            tokenize('"no end\n"')
        assert "E002" in str(exc_info.value)

    def test_invalid_escape(self):
        with pytest.raises(LexerError) as exc_info:
            tokenize(r'"bad \q"')
        assert "E005" in str(exc_info.value)


class TestNumbers:
    """Test numeric literals."""

    def test_integer(self):
        assert tokenize("1_000")[0].value == 1000

    def test_decimal_is_exact(self):
        """Decimal literals become exact fractions."""
        token = tokenize("1.25")[0]
        assert token.value == Fraction(5, 4)
        assert isinstance(token.value, Fraction)

    def test_integral_decimal_is_int(self):
        assert tokenize("2.0")[0].value == 2
        assert isinstance(tokenize("2.0")[0].value, int)

    def test_hex_and_binary(self):
        assert tokenize("0xFF")[0].value == 255
        assert tokenize("0b1010")[0].value == 10

    def test_invalid_hex(self):
        with pytest.raises(LexerError) as exc_info:
            tokenize("0xZZ")
        assert "E007" in str(exc_info.value)

    def test_invalid_binary(self):
        with pytest.raises(LexerError) as exc_info:
            tokenize("0b102")
        assert "E008" in str(exc_info.value)

    def test_number_followed_by_letters(self):
        with pytest.raises(LexerError) as exc_info:
            tokenize("12abc")
        assert "E006" in str(exc_info.value)

    def test_range_is_not_a_decimal(self):
        """0..10 lexes as a range, not 0. followed by .10"""
        assert types_of("0..10") == [
            TokenType.NUMBER, TokenType.RANGE, TokenType.NUMBER, TokenType.EOF,
        ]


class TestIdentifiersAndKeywords:
    """Test identifiers, suffixes and keywords."""

    def test_keywords(self):
        assert types_of("func pure enum match") == [
            TokenType.FUNC, TokenType.PURE, TokenType.ENUM, TokenType.MATCH, TokenType.EOF,
        ]

    def test_literal_keywords_have_values(self):
        tokens = tokenize("true false null")
        assert [t.value for t in tokens[:3]] == [True, False, None]

    def test_predicate_suffix(self):
        """A trailing ? is part of the identifier."""
        token = tokenize("is_number?(x)")[0]
        assert token.type == TokenType.IDENTIFIER
        assert token.value == "is_number?"

    def test_mutator_suffix(self):
        """A trailing ! is part of the identifier."""
        tokens = tokenize("push!(a, 1)")
        assert tokens[0].value == "push!"
        assert tokens[1].type == TokenType.LPAREN

    def test_not_equal_after_identifier(self):
        """a!=b is still a comparison."""
        assert types_of("a!=b") == [
            TokenType.IDENTIFIER, TokenType.NE, TokenType.IDENTIFIER, TokenType.EOF,
        ]

    def test_contextual_words_are_identifiers(self):
        """step and expose are not reserved."""
        tokens = tokenize("step expose")
        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[1].type == TokenType.IDENTIFIER


class TestOperators:
    """Test operator tokenization."""

    def test_range_operators(self):
        assert types_of("..= .. .< <.")[:4] == [
            TokenType.RANGE_INCLUSIVE,
            TokenType.RANGE,
            TokenType.RANGE_EXCLUSIVE_END,
            TokenType.RANGE_EXCLUSIVE_START,
        ]

    def test_compound_assignment(self):
        assert types_of("+= -= *= /= %=")[:5] == [
            TokenType.PLUS_ASSIGN,
            TokenType.MINUS_ASSIGN,
            TokenType.STAR_ASSIGN,
            TokenType.SLASH_ASSIGN,
            TokenType.PERCENT_ASSIGN,
        ]

    def test_power_and_update(self):
        assert types_of("** ++ --")[:3] == [
            TokenType.DOUBLE_STAR, TokenType.INCREMENT, TokenType.DECREMENT,
        ]

    def test_object_literal_start(self):
        assert types_of(".{")[:2] == [TokenType.DOT, TokenType.LBRACE]

    def test_unexpected_character(self):
        """Unknown characters report line and column."""
        with pytest.raises(LexerError) as exc_info:
            tokenize("let x = 1;\nlet y = @;")
        error = exc_info.value
        assert error.code == "E001"
        assert error.span.start.line == 2
        assert error.span.start.column == 9
