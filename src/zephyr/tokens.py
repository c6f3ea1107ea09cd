"""
Token types for the Zephyr lexer.

Token type categories follow the error code ranges:
- E0xx: Lexer errors
- E1xx: Parser errors
- E4xx: Runtime errors
"""

from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, Optional


class TokenType(Enum):
    """All token types recognized by the Zephyr lexer."""

    # --- Literals ---
    NUMBER = auto()             # 42, 1.5, 0xff, 0b1010
    STRING = auto()             # "hello", 'world'
    TRUE = auto()               # true
    FALSE = auto()              # false
    NULL = auto()               # null

    # --- Identifiers ---
    IDENTIFIER = auto()         # user-defined names, is_number?, push!

    # --- Keywords ---
    LET = auto()                # let
    CONST = auto()              # const
    FUNC = auto()               # func
    IF = auto()                 # if
    ELSE = auto()               # else
    FOR = auto()                # for
    IN = auto()                 # in
    WHILE = auto()              # while
    UNTIL = auto()              # until
    LOOP = auto()               # loop
    BREAK = auto()              # break
    CONTINUE = auto()           # continue
    RETURN = auto()             # return
    TRY = auto()                # try
    CATCH = auto()              # catch
    FINALLY = auto()            # finally
    THROW = auto()              # throw
    MATCH = auto()              # match
    IS = auto()                 # is
    ENUM = auto()               # enum
    IMPORT = auto()             # import
    EXPORT = auto()             # export
    FROM = auto()               # from
    PURE = auto()               # pure
    WHERE = auto()              # where
    AS = auto()                 # as
    TYPEOF = auto()             # typeof

    # --- Arithmetic operators ---
    PLUS = auto()               # +
    MINUS = auto()              # -
    STAR = auto()               # *
    SLASH = auto()              # /
    PERCENT = auto()            # %
    DOUBLE_STAR = auto()        # **
    INCREMENT = auto()          # ++
    DECREMENT = auto()          # --

    # --- Comparison operators ---
    EQ = auto()                 # ==
    NE = auto()                 # !=
    LT = auto()                 # <
    GT = auto()                 # >
    LE = auto()                 # <=
    GE = auto()                 # >=

    # --- Logical operators ---
    AND = auto()                # &&
    OR = auto()                 # ||
    NOT = auto()                # !

    # --- Assignment ---
    ASSIGN = auto()             # =
    PLUS_ASSIGN = auto()        # +=
    MINUS_ASSIGN = auto()       # -=
    STAR_ASSIGN = auto()        # *=
    SLASH_ASSIGN = auto()       # /=
    PERCENT_ASSIGN = auto()     # %=

    # --- Ranges ---
    RANGE = auto()              # ..
    RANGE_INCLUSIVE = auto()    # ..=
    RANGE_EXCLUSIVE_END = auto()    # .<
    RANGE_EXCLUSIVE_START = auto()  # <.

    # --- Punctuation ---
    LPAREN = auto()             # (
    RPAREN = auto()             # )
    LBRACKET = auto()           # [
    RBRACKET = auto()           # ]
    LBRACE = auto()             # {
    RBRACE = auto()             # }
    COMMA = auto()              # ,
    COLON = auto()              # :
    SEMICOLON = auto()          # ;
    DOT = auto()                # .
    QUESTION = auto()           # ?
    DOLLAR = auto()             # $ (length-of)

    # --- Special ---
    EOF = auto()                # End of input


@dataclass(frozen=True)
class SourceLocation:
    """Represents a position in source code."""
    line: int           # 1-indexed line number
    column: int         # 1-indexed column number
    offset: int         # 0-indexed character offset from start
    filename: Optional[str] = None

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename}:{self.line}:{self.column}"
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceSpan:
    """Represents a range in source code."""
    start: SourceLocation
    end: SourceLocation

    def __str__(self) -> str:
        if self.start.filename:
            return f"{self.start.filename}:{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"
        return f"{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"


@dataclass(frozen=True)
class Token:
    """A single token from the lexer."""
    type: TokenType
    value: Any              # The actual value (int, Fraction, str, etc.)
    lexeme: str             # The original source text
    span: SourceSpan        # Location in source

    def __str__(self) -> str:
        if self.type in (TokenType.NUMBER, TokenType.STRING, TokenType.IDENTIFIER):
            return f"{self.type.name}({self.value!r})"
        return self.type.name


# Keyword mapping - maps string to token type
KEYWORDS: dict[str, TokenType] = {
    "let": TokenType.LET,
    "const": TokenType.CONST,
    "func": TokenType.FUNC,
    "if": TokenType.IF,
    "else": TokenType.ELSE,
    "for": TokenType.FOR,
    "in": TokenType.IN,
    "while": TokenType.WHILE,
    "until": TokenType.UNTIL,
    "loop": TokenType.LOOP,
    "break": TokenType.BREAK,
    "continue": TokenType.CONTINUE,
    "return": TokenType.RETURN,
    "try": TokenType.TRY,
    "catch": TokenType.CATCH,
    "finally": TokenType.FINALLY,
    "throw": TokenType.THROW,
    "match": TokenType.MATCH,
    "is": TokenType.IS,
    "enum": TokenType.ENUM,
    "import": TokenType.IMPORT,
    "export": TokenType.EXPORT,
    "from": TokenType.FROM,
    "pure": TokenType.PURE,
    "where": TokenType.WHERE,
    "as": TokenType.AS,
    "typeof": TokenType.TYPEOF,

    # Literal keywords
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
    "null": TokenType.NULL,
}


# Operators that may follow a variable to form an assignment
ASSIGNMENT_OPERATORS = {
    TokenType.ASSIGN: None,
    TokenType.PLUS_ASSIGN: TokenType.PLUS,
    TokenType.MINUS_ASSIGN: TokenType.MINUS,
    TokenType.STAR_ASSIGN: TokenType.STAR,
    TokenType.SLASH_ASSIGN: TokenType.SLASH,
    TokenType.PERCENT_ASSIGN: TokenType.PERCENT,
}

# Tokens that can start a comparison arm in a match expression
COMPARISON_OPERATORS = {
    TokenType.EQ, TokenType.NE, TokenType.LT,
    TokenType.GT, TokenType.LE, TokenType.GE,
}


def is_keyword(name: str) -> bool:
    """Check if a name is a reserved keyword."""
    return name in KEYWORDS


def is_predicate_name(name: str) -> bool:
    """Predicate functions are named with a trailing '?'."""
    return name.endswith("?")
