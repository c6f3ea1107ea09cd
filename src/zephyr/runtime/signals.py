"""
Control signals.

Non-local exits unwind the tree walk as Python exceptions. Loops catch
Break/Continue, function calls catch Return, and try/catch catches Throw.
None of these are errors, so they derive from Exception directly rather
than ZephyrError.
"""

from typing import Optional

from .values import Value
from ..tokens import SourceSpan


class ControlSignal(Exception):
    """Base class for evaluator control flow."""

    def __init__(self, span: Optional[SourceSpan] = None):
        super().__init__()
        self.span = span


class ReturnSignal(ControlSignal):
    """return [value]"""

    def __init__(self, value: Value, span: Optional[SourceSpan] = None):
        super().__init__(span)
        self.value = value


class BreakSignal(ControlSignal):
    """break"""
    pass


class ContinueSignal(ControlSignal):
    """continue"""
    pass


class ThrowSignal(ControlSignal):
    """throw value"""

    def __init__(self, value: Value, span: Optional[SourceSpan] = None):
        super().__init__(span)
        self.value = value
