"""
Zephyr exceptions and error handling.

Error code ranges:
- E0xx: Lexer errors
- E1xx: Parser errors
- E4xx: Runtime faults (raised by the evaluator and native primitives)

Runtime faults are the "thrown" fault class. When a script catches one
with try/catch it is converted to an error Value whose ``type`` is the
fault's ``kind`` (see ``zephyr.runtime.values.error_value``).
"""

from dataclasses import dataclass, field
from typing import Any, Optional, List
from .tokens import SourceSpan, SourceLocation


UNKNOWN_LOCATION = SourceLocation(0, 0, 0)
UNKNOWN_SPAN = SourceSpan(UNKNOWN_LOCATION, UNKNOWN_LOCATION)


@dataclass
class Diagnostic:
    """A single error diagnostic: code, message, location and hints."""
    code: str                       # E001, E101, E401, etc.
    message: str                    # Human-readable message
    span: SourceSpan = UNKNOWN_SPAN
    source_line: Optional[str] = None   # The actual line of source code
    hints: List[str] = field(default_factory=list)

    @property
    def has_location(self) -> bool:
        return self.span.start.line > 0

    def format(self, show_source: bool = True) -> str:
        """Format the diagnostic for display."""
        parts = []

        # Header: location: error[code]: message
        if self.has_location:
            parts.append(f"{self.span.start}: error[{self.code}]: {self.message}")
        else:
            parts.append(f"error[{self.code}]: {self.message}")

        # Source line with caret
        if show_source and self.source_line is not None and self.has_location:
            parts.append("  |")
            line_num = str(self.span.start.line)
            parts.append(f"{line_num:>3} | {self.source_line}")

            col = self.span.start.column
            end_col = self.span.end.column if self.span.start.line == self.span.end.line else len(self.source_line) + 1
            underline_len = max(1, end_col - col)
            parts.append(f"    | {' ' * (col - 1)}{'^' * underline_len}")

        for hint in self.hints:
            parts.append(f"    = hint: {hint}")

        return "\n".join(parts)

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict for tooling integration."""
        return {
            "code": self.code,
            "message": self.message,
            "range": {
                "start": {
                    "line": self.span.start.line,
                    "column": self.span.start.column,
                    "offset": self.span.start.offset,
                },
                "end": {
                    "line": self.span.end.line,
                    "column": self.span.end.column,
                    "offset": self.span.end.offset,
                },
            },
            "hints": self.hints,
        }


class ZephyrError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, diagnostic: Diagnostic):
        self.diagnostic = diagnostic
        super().__init__(diagnostic.message)

    @property
    def code(self) -> str:
        return self.diagnostic.code

    @property
    def span(self) -> SourceSpan:
        return self.diagnostic.span

    @property
    def message(self) -> str:
        return self.diagnostic.message

    def __str__(self) -> str:
        return self.diagnostic.format()


class LexerError(ZephyrError):
    """Error during lexical analysis (E0xx)."""
    pass


class ParserError(ZephyrError):
    """Error during parsing (E1xx)."""
    pass


class RuntimeFault(ZephyrError):
    """
    An engine-raised fault (E4xx).

    ``kind`` is the name scripts see in the ``type`` field of a caught
    error value. ``data`` is an optional payload Value.
    """
    kind = "RuntimeError"
    default_code = "E400"

    def __init__(self, diagnostic: Diagnostic, data: Any = None):
        super().__init__(diagnostic)
        self.data = data

    @classmethod
    def create(cls, message: str, span: Optional[SourceSpan] = None,
               source_line: Optional[str] = None, hints: Optional[List[str]] = None,
               data: Any = None) -> "RuntimeFault":
        diag = Diagnostic(
            code=cls.default_code,
            message=message,
            span=span or UNKNOWN_SPAN,
            source_line=source_line,
            hints=hints or [],
        )
        return cls(diag, data)


class ScriptTypeError(RuntimeFault):
    """Operand or argument of the wrong type (E401)."""
    kind = "TypeError"
    default_code = "E401"


class ScriptNameError(RuntimeFault):
    """Reference to an undeclared name (E402)."""
    kind = "NameError"
    default_code = "E402"


class ImmutableError(RuntimeFault):
    """Assignment to a const binding (E403)."""
    kind = "ImmutableError"
    default_code = "E403"


class ScriptIndexError(RuntimeFault):
    """Index out of range (E404)."""
    kind = "IndexError"
    default_code = "E404"


class DivisionByZeroError(RuntimeFault):
    """Division or modulo by zero (E405)."""
    kind = "DivisionByZero"
    default_code = "E405"


class ArityError(RuntimeFault):
    """Wrong number of arguments (E406)."""
    kind = "ArityError"
    default_code = "E406"


class ArgumentTypeError(RuntimeFault):
    """A parameter predicate or where clause rejected an argument (E407)."""
    kind = "ArgumentTypeError"
    default_code = "E407"


class NoMatchError(RuntimeFault):
    """No arm of a match expression matched (E408)."""
    kind = "NoMatchError"
    default_code = "E408"


class ScopeViolationError(RuntimeFault):
    """A pure function reached outside its parameters and globals (E409)."""
    kind = "ScopeViolation"
    default_code = "E409"


class ResolutionError(RuntimeFault):
    """Module import could not be resolved (E410)."""
    kind = "ResolutionError"
    default_code = "E410"


class ScriptValueError(RuntimeFault):
    """Argument has the right type but an invalid value (E411)."""
    kind = "ValueError"
    default_code = "E411"


class NativeError(RuntimeFault):
    """A native primitive failed in the host (E412)."""
    kind = "NativeError"
    default_code = "E412"


class ScriptRecursionError(RuntimeFault):
    """Call depth exceeded the configured limit (E413)."""
    kind = "RecursionError"
    default_code = "E413"


class UncaughtThrow(ZephyrError):
    """
    A script-level ``throw`` that reached the top of a program or module.

    ``value`` holds the thrown Value.
    """

    def __init__(self, value: Any, span: Optional[SourceSpan] = None, message: str = ""):
        diag = Diagnostic(
            code="E400",
            message=message or "uncaught throw",
            span=span or UNKNOWN_SPAN,
        )
        super().__init__(diag)
        self.value = value


# --- Lexer error codes ---

def error_unexpected_character(char: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E001: Unexpected character."""
    diag = Diagnostic(
        code="E001",
        message=f"unexpected character '{char}'",
        span=span,
        source_line=source_line,
    )
    return LexerError(diag)


def error_unterminated_string(span: SourceSpan, source_line: str = None) -> LexerError:
    """E002: Unterminated string literal."""
    diag = Diagnostic(
        code="E002",
        message="unterminated string literal",
        span=span,
        source_line=source_line,
        hints=["string literals must be closed with matching quotes"],
    )
    return LexerError(diag)


def error_unterminated_comment(span: SourceSpan, source_line: str = None) -> LexerError:
    """E004: Unterminated multi-line comment."""
    diag = Diagnostic(
        code="E004",
        message="unterminated multi-line comment (expected closing */)",
        span=span,
        source_line=source_line,
    )
    return LexerError(diag)


def error_invalid_escape_sequence(seq: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E005: Invalid escape sequence in string."""
    diag = Diagnostic(
        code="E005",
        message=f"invalid escape sequence '\\{seq}'",
        span=span,
        source_line=source_line,
        hints=["valid escapes are \\n \\t \\r \\0 \\\\ \\\" \\' \\xHH \\u{HHHH}"],
    )
    return LexerError(diag)


def error_invalid_number_literal(text: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E006: Invalid number literal."""
    diag = Diagnostic(
        code="E006",
        message=f"invalid number literal '{text}'",
        span=span,
        source_line=source_line,
    )
    return LexerError(diag)


def error_invalid_hex_literal(text: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E007: Invalid hexadecimal literal."""
    diag = Diagnostic(
        code="E007",
        message=f"invalid hexadecimal literal '{text}'",
        span=span,
        source_line=source_line,
    )
    return LexerError(diag)


def error_invalid_binary_literal(text: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E008: Invalid binary literal."""
    diag = Diagnostic(
        code="E008",
        message=f"invalid binary literal '{text}'",
        span=span,
        source_line=source_line,
    )
    return LexerError(diag)


# --- Parser error codes ---

def error_unexpected_token(expected: str, found: str, span: SourceSpan,
                           source_line: str = None) -> ParserError:
    """E101: Unexpected token."""
    diag = Diagnostic(
        code="E101",
        message=f"expected {expected}, found {found}",
        span=span,
        source_line=source_line,
    )
    error = ParserError(diag)
    error.expected = expected
    error.found = found
    return error


def error_unexpected_eof(expected: str, span: SourceSpan) -> ParserError:
    """E102: Unexpected end of file."""
    diag = Diagnostic(
        code="E102",
        message=f"unexpected end of file, expected {expected}",
        span=span,
    )
    error = ParserError(diag)
    error.expected = expected
    error.found = "end of file"
    return error


def error_invalid_expression(message: str, span: SourceSpan, source_line: str = None) -> ParserError:
    """E103: Invalid expression or assignment target."""
    diag = Diagnostic(
        code="E103",
        message=message,
        span=span,
        source_line=source_line,
    )
    return ParserError(diag)


def error_else_arm_not_last(span: SourceSpan, source_line: str = None) -> ParserError:
    """E104: 'else' arm followed by further arms in a match."""
    diag = Diagnostic(
        code="E104",
        message="'else' must be the last arm of a match expression",
        span=span,
        source_line=source_line,
    )
    return ParserError(diag)


def error_duplicate_variadic(span: SourceSpan, source_line: str = None) -> ParserError:
    """E105: More than one __args__ parameter."""
    diag = Diagnostic(
        code="E105",
        message="a function may declare '__args__' only once",
        span=span,
        source_line=source_line,
    )
    return ParserError(diag)
