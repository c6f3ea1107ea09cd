"""
Runtime values for the Zephyr interpreter.

Every script value is a ``Value``: a kind, a payload and a tag annex.

- Null, Boolean, Number and String carry plain Python data. Numbers are
  ``int`` or ``fractions.Fraction``; there is no floating point.
- Array and Object carry a shared cell (``ArrayCell`` / ``ObjectCell``).
  Copying the ``Value`` wrapper never copies the cell, which gives
  reference semantics; ``shallow_copy`` and ``deep_copy`` are the only
  ways to get new storage.
- Function carries a ``Closure``; NativeFunction carries the host
  callable; Reference carries a ``ReferenceCell``.

The tag annex stamps enum identity onto values. ``Value.tagged`` returns a
new wrapper around the same payload with a ``VariantTag`` attached, and
equality and ``is`` consult the tag rather than object identity.
"""

import itertools
import threading
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..errors import ScriptTypeError
from ..tokens import SourceSpan


class ValueKind(Enum):
    """The closed set of runtime value kinds."""
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"
    FUNCTION = "function"
    NATIVE_FUNCTION = "native_function"
    REFERENCE = "reference"


# Tag annex keys
VARIANT_TAG = "__enum_variant"
ENUM_BASE_TAG = "__enum_base"
ERROR_TAG = "__error"
PROTO_TAG = "__proto"
EMITTER_TAG = "__event_emitter"

# Tags the engine owns; scripts may read but not change them
RESERVED_TAGS = frozenset({VARIANT_TAG, ENUM_BASE_TAG, ERROR_TAG, PROTO_TAG, EMITTER_TAG})

Number = Union[int, Fraction]


# =============================================================================
# Shared storage cells
# =============================================================================

class ArrayCell:
    """Lock-guarded shared storage behind an Array value."""
    __slots__ = ("items", "lock")

    def __init__(self, items: Optional[Iterable["Value"]] = None):
        self.items: List[Value] = list(items or [])
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self.items)

    def snapshot(self) -> List["Value"]:
        with self.lock:
            return list(self.items)

    def get(self, index: int) -> "Value":
        with self.lock:
            return self.items[index]

    def set(self, index: int, value: "Value") -> None:
        with self.lock:
            self.items[index] = value

    def append(self, value: "Value") -> None:
        with self.lock:
            self.items.append(value)

    def replace(self, items: Iterable["Value"]) -> None:
        """Swap in new contents while keeping the same cell."""
        new_items = list(items)
        with self.lock:
            self.items[:] = new_items


class ObjectCell:
    """Lock-guarded shared storage behind an Object value. Keys keep insertion order."""
    __slots__ = ("entries", "lock")

    def __init__(self, entries: Optional[Dict[str, "Value"]] = None):
        self.entries: Dict[str, Value] = dict(entries or {})
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self.entries)

    def __contains__(self, key: str) -> bool:
        with self.lock:
            return key in self.entries

    def get(self, key: str) -> Optional["Value"]:
        with self.lock:
            return self.entries.get(key)

    def set(self, key: str, value: "Value") -> None:
        with self.lock:
            self.entries[key] = value

    def snapshot(self) -> List[Tuple[str, "Value"]]:
        with self.lock:
            return list(self.entries.items())


class ReferenceCell:
    """A mutable box: the target of a Reference value."""
    __slots__ = ("value", "lock")

    def __init__(self, value: "Value"):
        self.value = value
        self.lock = threading.RLock()

    def get(self) -> "Value":
        with self.lock:
            return self.value

    def set(self, value: "Value") -> None:
        with self.lock:
            self.value = value


# =============================================================================
# Enum tags
# =============================================================================

_tag_ids = itertools.count(1)
_tag_lock = threading.Lock()


def next_tag_id() -> int:
    """Allocate a process-unique tag id."""
    with _tag_lock:
        return next(_tag_ids)


@dataclass(frozen=True)
class EnumTag:
    """Identity of an enum declaration."""
    name: str
    id: int = field(default_factory=next_tag_id)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class VariantTag:
    """Identity of one enum variant. Two variants are the same only if their ids are."""
    enum: EnumTag
    name: str
    id: int = field(default_factory=next_tag_id)

    def __str__(self) -> str:
        return f"{self.enum.name}.{self.name}"


@dataclass
class Closure:
    """A script function: its definition plus the scope it captured."""
    definition: Any     # ast.FunctionDef
    scope: Any          # scope.Scope

    @property
    def name(self) -> str:
        return self.definition.name or "<anonymous>"


# =============================================================================
# Value
# =============================================================================

@dataclass(eq=False)
class Value:
    """
    A runtime value.

    ``tags`` is the tag annex. It is never mutated after a value is built;
    stamping a tag produces a new wrapper.
    """
    kind: ValueKind
    data: Any = None
    tags: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        if self.tags:
            return f"Value({self.kind.value}, {self.data!r}, tags={self.tags!r})"
        return f"Value({self.kind.value}, {self.data!r})"

    def __str__(self) -> str:
        return to_display(self)

    @classmethod
    def tagged(cls, variant: VariantTag, payload: "Value") -> "Value":
        """Return ``payload`` (same storage) stamped with ``variant``."""
        tags = dict(payload.tags)
        tags[VARIANT_TAG] = variant
        return cls(payload.kind, payload.data, tags)

    def with_tags(self, tags: Dict[str, Any]) -> "Value":
        """Return a wrapper around the same payload carrying ``tags``."""
        return Value(self.kind, self.data, dict(tags))

    @property
    def type_name(self) -> str:
        return self.kind.value

    @property
    def prototype(self) -> Optional["Value"]:
        """The value's own prototype (an Object or a Reference to one), if set."""
        return self.tags.get(PROTO_TAG)

    @property
    def variant(self) -> Optional[VariantTag]:
        return self.tags.get(VARIANT_TAG)

    @property
    def enum_base(self) -> Optional[EnumTag]:
        return self.tags.get(ENUM_BASE_TAG)

    @property
    def is_null(self) -> bool:
        return self.kind == ValueKind.NULL

    def is_callable(self) -> bool:
        """Functions, natives and enum variant constructors can be called."""
        if self.kind in (ValueKind.FUNCTION, ValueKind.NATIVE_FUNCTION):
            return True
        return self.kind == ValueKind.NULL and self.variant is not None

    def without_tags(self) -> "Value":
        return Value(self.kind, self.data)


# Convenience constructors

def null_val() -> Value:
    """Create a null value."""
    return Value(ValueKind.NULL)


def bool_val(b: bool) -> Value:
    """Create a boolean value."""
    return Value(ValueKind.BOOLEAN, bool(b))


def normalize_number(n: Any) -> Number:
    """Reduce a host number to int or Fraction. Floats are converted exactly by decimal text."""
    if isinstance(n, bool):
        raise ScriptTypeError.create("booleans are not numbers")
    if isinstance(n, float):
        n = Fraction(repr(n))
    if isinstance(n, Fraction):
        return n.numerator if n.denominator == 1 else n
    return int(n)


def number_val(n: Any) -> Value:
    """Create a number value."""
    return Value(ValueKind.NUMBER, normalize_number(n))


def string_val(s: str) -> Value:
    """Create a string value."""
    return Value(ValueKind.STRING, str(s))


def array_val(items: Iterable[Value] = ()) -> Value:
    """Create an array value with a fresh cell."""
    return Value(ValueKind.ARRAY, ArrayCell(items))


def object_val(entries: Optional[Dict[str, Value]] = None) -> Value:
    """Create an object value with a fresh cell."""
    return Value(ValueKind.OBJECT, ObjectCell(entries))


def function_val(closure: Closure) -> Value:
    return Value(ValueKind.FUNCTION, closure)


def native_val(native: Any) -> Value:
    return Value(ValueKind.NATIVE_FUNCTION, native)


def reference_val(target: Value) -> Value:
    return Value(ValueKind.REFERENCE, ReferenceCell(target))


def error_value(message: str, kind: str = "Error", data: Optional[Value] = None,
                span: Optional[SourceSpan] = None) -> Value:
    """
    Build an error object: ``.{ message, type, data, line, column }``.

    Caught engine faults and ``error(...)`` calls both produce this shape.
    """
    entries = {
        "message": string_val(message),
        "type": string_val(kind),
        "data": data if data is not None else null_val(),
    }
    if span is not None and span.start.line > 0:
        entries["line"] = number_val(span.start.line)
        entries["column"] = number_val(span.start.column)
    value = object_val(entries)
    return Value(value.kind, value.data, {ERROR_TAG: True})


# =============================================================================
# Conversion
# =============================================================================

def from_python(obj: Any) -> Value:
    """Wrap a plain Python object as a Value."""
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return null_val()
    if isinstance(obj, bool):
        return bool_val(obj)
    if isinstance(obj, (int, float, Fraction)):
        return number_val(obj)
    if isinstance(obj, str):
        return string_val(obj)
    if isinstance(obj, (list, tuple)):
        return array_val(from_python(item) for item in obj)
    if isinstance(obj, dict):
        return object_val({str(k): from_python(v) for k, v in obj.items()})
    raise ScriptTypeError.create(f"cannot convert {type(obj).__name__} to a value")


def to_python(value: Value) -> Any:
    """Unwrap a Value to plain Python data. Arrays and objects are copied."""
    kind = value.kind
    if kind in (ValueKind.NULL, ValueKind.BOOLEAN, ValueKind.NUMBER, ValueKind.STRING):
        return value.data
    if kind == ValueKind.ARRAY:
        return [to_python(item) for item in value.data.snapshot()]
    if kind == ValueKind.OBJECT:
        return {k: to_python(v) for k, v in value.data.snapshot()}
    if kind == ValueKind.REFERENCE:
        return to_python(value.data.get())
    return value


# =============================================================================
# Equality and copying
# =============================================================================

def values_equal(a: Value, b: Value) -> bool:
    """
    Structural equality including variant tags.

    Two values are equal only if they carry the same variant tag (or none)
    and their payloads are equal.
    """
    return _equal(a, b, set())


def _equal(a: Value, b: Value, seen: set) -> bool:
    if a.variant != b.variant:
        return False
    if a.kind != b.kind:
        return False

    kind = a.kind
    if kind == ValueKind.NULL:
        return True
    if kind in (ValueKind.BOOLEAN, ValueKind.NUMBER, ValueKind.STRING):
        return a.data == b.data
    if a.data is b.data:
        return True
    if kind in (ValueKind.FUNCTION, ValueKind.NATIVE_FUNCTION, ValueKind.REFERENCE):
        return False

    pair = (id(a.data), id(b.data))
    if pair in seen:
        return True
    seen.add(pair)

    if kind == ValueKind.ARRAY:
        left, right = a.data.snapshot(), b.data.snapshot()
        return len(left) == len(right) and all(_equal(x, y, seen) for x, y in zip(left, right))

    left, right = dict(a.data.snapshot()), dict(b.data.snapshot())
    if left.keys() != right.keys():
        return False
    return all(_equal(left[k], right[k], seen) for k in left)


def shallow_copy(value: Value) -> Value:
    """New storage for the top level only; nested arrays and objects stay shared."""
    if value.kind == ValueKind.ARRAY:
        return Value(ValueKind.ARRAY, ArrayCell(value.data.snapshot()), dict(value.tags))
    if value.kind == ValueKind.OBJECT:
        return Value(ValueKind.OBJECT, ObjectCell(dict(value.data.snapshot())), dict(value.tags))
    return value


def deep_copy(value: Value, memo: Optional[Dict[int, Value]] = None) -> Value:
    """Fully independent copy of arrays and objects at every depth."""
    if memo is None:
        memo = {}
    if value.kind not in (ValueKind.ARRAY, ValueKind.OBJECT):
        return value

    key = id(value.data)
    if key in memo:
        copied = memo[key]
        return Value(copied.kind, copied.data, dict(value.tags))

    if value.kind == ValueKind.ARRAY:
        cell = ArrayCell()
        copied = Value(ValueKind.ARRAY, cell, dict(value.tags))
        memo[key] = copied
        cell.replace(deep_copy(item, memo) for item in value.data.snapshot())
    else:
        cell = ObjectCell()
        copied = Value(ValueKind.OBJECT, cell, dict(value.tags))
        memo[key] = copied
        for k, v in value.data.snapshot():
            cell.set(k, deep_copy(v, memo))
    return copied


# =============================================================================
# Iteration
# =============================================================================

def iter_pairs(value: Value, span: Optional[SourceSpan] = None) -> List[Tuple[Value, Value]]:
    """
    Snapshot the (index, element) pairs of an iterable value.

    Arrays and strings pair a numeric index with each element; objects pair
    each key with its value.
    """
    if value.kind == ValueKind.ARRAY:
        return [(number_val(i), item) for i, item in enumerate(value.data.snapshot())]
    if value.kind == ValueKind.STRING:
        return [(number_val(i), string_val(ch)) for i, ch in enumerate(value.data)]
    if value.kind == ValueKind.OBJECT:
        return [(string_val(k), v) for k, v in value.data.snapshot()]
    if value.kind == ValueKind.REFERENCE:
        return iter_pairs(value.data.get(), span)
    raise ScriptTypeError.create(f"cannot iterate over a {value.type_name}", span)


def length_of(value: Value, span: Optional[SourceSpan] = None) -> int:
    """Length of an array, string or object (the $ operator)."""
    if value.kind in (ValueKind.ARRAY, ValueKind.STRING, ValueKind.OBJECT):
        return len(value.data)
    raise ScriptTypeError.create(f"a {value.type_name} has no length", span)


# =============================================================================
# Formatting
# =============================================================================

def format_number(n: Number) -> str:
    """Render a number: integers plainly, terminating fractions as decimals, others as n/d."""
    if isinstance(n, int):
        return str(n)
    denominator = n.denominator
    twos = fives = 0
    while denominator % 2 == 0:
        denominator //= 2
        twos += 1
    while denominator % 5 == 0:
        denominator //= 5
        fives += 1
    if denominator != 1:
        return f"{n.numerator}/{n.denominator}"

    places = max(twos, fives)
    scaled = abs(n.numerator) * (10 ** places) // n.denominator
    digits = str(scaled).rjust(places + 1, "0")
    sign = "-" if n < 0 else ""
    return f"{sign}{digits[:-places]}.{digits[-places:]}"


def to_display(value: Value) -> str:
    """Render a value the way print() shows it (strings unquoted)."""
    return _format(value, quote_strings=False, seen=set())


def to_repr(value: Value) -> str:
    """Render a value with strings quoted."""
    return _format(value, quote_strings=True, seen=set())


def _format(value: Value, quote_strings: bool, seen: set) -> str:
    variant = value.variant
    if variant is not None and value.kind == ValueKind.NULL:
        return str(variant)

    if variant is not None:
        return f"{variant}({_format_payload(value, True, seen)})"
    return _format_payload(value, quote_strings, seen)


def _format_payload(value: Value, quote_strings: bool, seen: set) -> str:
    kind = value.kind
    if kind == ValueKind.NULL:
        return "null"
    if kind == ValueKind.BOOLEAN:
        return "true" if value.data else "false"
    if kind == ValueKind.NUMBER:
        return format_number(value.data)
    if kind == ValueKind.STRING:
        return _quote(value.data) if quote_strings else value.data
    if kind == ValueKind.FUNCTION:
        return f"<func {value.data.name}>"
    if kind == ValueKind.NATIVE_FUNCTION:
        return f"<native {value.data.name}>"
    if kind == ValueKind.REFERENCE:
        return "&" + _format(value.data.get(), True, seen)

    if id(value.data) in seen:
        return "[...]" if kind == ValueKind.ARRAY else ".{...}"
    seen = seen | {id(value.data)}

    if kind == ValueKind.ARRAY:
        return "[" + ", ".join(_format(v, True, seen) for v in value.data.snapshot()) + "]"
    if value.enum_base is not None:
        return f"<enum {value.enum_base.name}>"
    body = ", ".join(f"{k}: {_format(v, True, seen)}" for k, v in value.data.snapshot())
    return ".{" + body + "}"


def _quote(s: str) -> str:
    escaped = s.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t")
    return f'"{escaped}"'
