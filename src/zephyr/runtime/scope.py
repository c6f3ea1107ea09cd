"""
Lexical scopes for the Zephyr interpreter.

Scopes form a chain via ``parent``. A closure keeps its defining scope
alive by holding a reference to it, so frames live exactly as long as a
live closure or active call can still reach them.

A frame marked ``is_pure`` is the parameter frame of a pure function.
Name resolution that walks past it may only succeed in the global frame.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from .values import Value
from ..errors import ScriptNameError, ImmutableError, ScopeViolationError
from ..tokens import SourceSpan


@dataclass(eq=False)
class Scope:
    """
    A single frame of variable bindings.

    ``exports`` maps an exported name to the local binding it exposes.
    """
    variables: Dict[str, Value] = field(default_factory=dict)
    parent: Optional["Scope"] = None
    name: str = "anonymous"  # For debugging
    is_global: bool = False
    is_pure: bool = False
    filename: Optional[str] = None
    constants: Set[str] = field(default_factory=set)
    exports: Dict[str, str] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def __repr__(self) -> str:
        return f"Scope({self.name!r}, {sorted(self.variables)})"

    def chain(self) -> Iterator["Scope"]:
        """Yield this frame and its ancestors, innermost first."""
        frame: Optional[Scope] = self
        while frame is not None:
            yield frame
            frame = frame.parent

    @property
    def global_scope(self) -> "Scope":
        frame = self
        while frame.parent is not None:
            frame = frame.parent
        return frame

    @property
    def module_filename(self) -> Optional[str]:
        """The file this scope's code came from, if known."""
        for frame in self.chain():
            if frame.filename:
                return frame.filename
        return None

    def child_scope(self, name: str = "block", pure: bool = False) -> "Scope":
        """Create a new scope chained to this one."""
        return Scope(parent=self, name=name, is_pure=pure)

    def define(self, name: str, value: Value, constant: bool = False,
               span: Optional[SourceSpan] = None) -> None:
        """Bind ``name`` in this frame. Redefining a const in the same frame is an error."""
        with self.lock:
            if name in self.constants:
                raise ImmutableError.create(f"cannot redeclare constant '{name}'", span)
            self.variables[name] = value
            if constant:
                self.constants.add(name)

    def _resolve(self, name: str, span: Optional[SourceSpan]) -> "Scope":
        crossed_pure = False
        for frame in self.chain():
            with frame.lock:
                found = name in frame.variables
            if found:
                if crossed_pure and not frame.is_global:
                    raise ScopeViolationError.create(
                        f"pure function cannot access captured variable '{name}'",
                        span,
                        hints=["pure functions may only use their parameters and globals"],
                    )
                return frame
            if frame.is_pure:
                crossed_pure = True
        raise ScriptNameError.create(f"'{name}' is not defined", span)

    def get(self, name: str, span: Optional[SourceSpan] = None) -> Value:
        """Look up a variable in this scope or parent scopes."""
        frame = self._resolve(name, span)
        with frame.lock:
            return frame.variables[name]

    def set(self, name: str, value: Value, span: Optional[SourceSpan] = None) -> None:
        """Update an existing variable wherever it is defined in the chain."""
        frame = self._resolve(name, span)
        with frame.lock:
            if name in frame.constants:
                raise ImmutableError.create(f"cannot assign to constant '{name}'", span)
            frame.variables[name] = value

    def contains(self, name: str) -> bool:
        """Check if a variable exists in this scope or parents."""
        return self.lookup_frame(name) is not None

    def lookup_frame(self, name: str) -> Optional["Scope"]:
        """Return the frame that defines ``name``, ignoring pure boundaries."""
        for frame in self.chain():
            with frame.lock:
                if name in frame.variables:
                    return frame
        return None

    # --- Module exports ---

    def declare_export(self, name: str, alias: Optional[str] = None,
                       span: Optional[SourceSpan] = None) -> None:
        """Mark a binding in this frame as importable, optionally under another name."""
        with self.lock:
            if name not in self.variables:
                raise ScriptNameError.create(f"cannot export undefined name '{name}'", span)
            self.exports[alias or name] = name

    def exported_names(self) -> List[str]:
        with self.lock:
            return list(self.exports)

    def get_export(self, name: str) -> Optional[Value]:
        """Current value of an exported name, or None if it is not exported."""
        with self.lock:
            local = self.exports.get(name)
            if local is None:
                return None
            return self.variables[local]
