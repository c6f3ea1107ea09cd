"""
Native function registry for the Zephyr interpreter.

Native primitives are the engine's only side-effect boundary: console I/O,
time, randomness, regex, JSON, byte buffers, in-place array mutation,
threads and TCP streams. Scripts reach them through the reserved
``__zephyr_native`` namespace object.

A ``NativeRegistry`` is constructed explicitly and handed to the
interpreter, so embedders and tests can swap the console streams, the
random source or the whole catalog.
"""

import json
import logging
import math
import random as _random
import re
import socket
import sys
import threading
import time
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO

from .values import (
    Value, ValueKind, null_val, bool_val, number_val, string_val, array_val,
    object_val, native_val, reference_val, error_value, from_python, to_python,
    shallow_copy, deep_copy, iter_pairs, to_display, PROTO_TAG, EMITTER_TAG, RESERVED_TAGS,
)
from .signals import ThrowSignal
from ..errors import (
    ZephyrError, ScriptTypeError, ScriptValueError, NativeError, ScriptIndexError,
)
from ..lexer import Lexer
from ..tokens import SourceSpan


logger = logging.getLogger(__name__)

NATIVE_NAMESPACE = "__zephyr_native"

# Names accepted by get_proto_obj; "any" is the fallback for every kind
PROTOTYPE_NAMES = (
    "null", "boolean", "number", "string", "array", "object",
    "function", "native_function", "reference", "any",
)


@dataclass
class NativeFunction:
    """
    A host-implemented function.

    ``implementation`` is called as ``implementation(interpreter, span, *args)``.
    ``max_args`` of None means variadic.
    """
    name: str
    implementation: Callable[..., Value]
    min_args: int = 0
    max_args: Optional[int] = 0
    doc: str = ""

    def accepts(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    def describe_arity(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args} to {self.max_args}"


# --- Argument helpers ---

def _expect(value: Value, kind: ValueKind, func: str, position: int,
            span: Optional[SourceSpan]) -> Value:
    if value.kind != kind:
        raise ScriptTypeError.create(
            f"{func}() argument {position} must be a {kind.value}, not a {value.type_name}",
            span,
        )
    return value


def _expect_whole(value: Value, func: str, position: int, span: Optional[SourceSpan]) -> int:
    _expect(value, ValueKind.NUMBER, func, position, span)
    if not isinstance(value.data, int):
        raise ScriptValueError.create(
            f"{func}() argument {position} must be a whole number", span
        )
    return value.data


def _unescape(text: str, span: Optional[SourceSpan]) -> str:
    """Interpret backslash escapes the same way string literals do."""
    lexer = Lexer(text)
    chars = []
    try:
        while not lexer._is_at_end():
            ch = lexer._advance()
            chars.append(lexer._scan_escape_sequence() if ch == '\\' else ch)
    except ZephyrError as e:
        raise ScriptValueError.create(f"unescape(): {e.message}", span) from e
    return ''.join(chars)


def _to_bytes(arr: Value, func: str, position: int, span: Optional[SourceSpan]) -> bytes:
    """Convert an array of whole numbers in 0..255 to bytes."""
    items = _expect(arr, ValueKind.ARRAY, func, position, span).data.snapshot()
    try:
        return bytes(to_python(item) for item in items)
    except (TypeError, ValueError) as e:
        raise ScriptValueError.create(f"{func}(): {e}", span)


def _bytes_val(raw: bytes) -> Value:
    return array_val(number_val(b) for b in raw)


def _tag_text(tag: Any) -> str:
    if isinstance(tag, str):
        return tag
    if isinstance(tag, bool):
        return "true" if tag else "false"
    if isinstance(tag, Value):
        return tag.type_name
    return str(tag)


def _own_prototype(value: Value) -> Optional[Value]:
    """The Object a value's own prototype points at, if any."""
    proto = value.prototype
    if proto is not None and proto.kind == ValueKind.REFERENCE:
        proto = proto.data.get()
    if proto is None or proto.kind != ValueKind.OBJECT:
        return None
    return proto


class EventEmitter:
    """
    A fixed set of named events with script listeners.

    Listeners run on the emitting thread in the order they were added. A
    listener that fails is logged and the remaining listeners still run.
    Scripts see an emitter as an Object ``.{ events }`` tagged with it.
    """

    def __init__(self, events: Iterable[str]):
        self.events = tuple(events)
        self._listeners: Dict[str, List[Value]] = {name: [] for name in self.events}
        self._lock = threading.Lock()

    def __str__(self) -> str:
        return f"EventEmitter<{', '.join(self.events)}>"

    def add_listener(self, event: str, listener: Value,
                     span: Optional[SourceSpan] = None) -> None:
        if event not in self._listeners:
            raise ScriptValueError.create(
                f"event emitter has no '{event}' event (has: {', '.join(self.events)})", span
            )
        with self._lock:
            self._listeners[event].append(listener)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, ()))

    def emit(self, interp, event: str, args: List[Value]) -> int:
        """Call every listener of ``event``; returns how many ran."""
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                interp.call_function(listener, args)
            except ThrowSignal as signal:
                logger.error("uncaught throw in '%s' listener: %s", event, to_display(signal.value))
            except ZephyrError as e:
                logger.error("uncaught fault in '%s' listener: %s", event, e.message)
        return len(listeners)

    def to_value(self) -> Value:
        value = object_val({"events": array_val(string_val(e) for e in self.events)})
        return value.with_tags({EMITTER_TAG: self})


class NativeRegistry:
    """
    Registry of native primitives and the per-kind prototype objects.

    Functions are registered by name and exposed to scripts as the members
    of one namespace object.
    """

    def __init__(self, stdout: Optional[TextIO] = None, stdin: Optional[TextIO] = None,
                 argv: Optional[List[str]] = None, rng: Optional[_random.Random] = None):
        self._stdout = stdout
        self._stdin = stdin
        self.argv = list(argv or [])
        self.rng = rng or _random.Random()
        self._functions: Dict[str, NativeFunction] = {}
        self._namespace: Optional[Value] = None
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self.prototypes: Dict[str, Value] = {name: object_val() for name in PROTOTYPE_NAMES}
        self._register_all()

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stdin(self) -> TextIO:
        return self._stdin if self._stdin is not None else sys.stdin

    def get_function(self, name: str) -> Optional[NativeFunction]:
        """Look up a function by name."""
        return self._functions.get(name)

    def register(self, func: NativeFunction) -> None:
        """Register a function."""
        self._functions[func.name] = func
        self._namespace = None

    def names(self) -> List[str]:
        return sorted(self._functions)

    def namespace(self) -> Value:
        """The object bound to ``__zephyr_native`` in the global scope."""
        if self._namespace is None:
            self._namespace = object_val(
                {name: native_val(func) for name, func in self._functions.items()}
            )
        return self._namespace

    def prototype_for(self, value: Value) -> Value:
        """The value's own prototype if it has one, else the one for its kind."""
        own = _own_prototype(value)
        return own if own is not None else self.prototypes[value.kind.value]

    def prototype_chain(self, value: Value) -> List[Value]:
        """Prototypes consulted by method lookup, nearest first."""
        chain = [self.prototypes[value.kind.value], self.prototypes["any"]]
        own = _own_prototype(value)
        if own is not None:
            chain.insert(0, own)
        return chain

    def start_thread(self, target: Callable[[], None], purpose: str) -> threading.Thread:
        """Start and track a worker thread so join_threads() can wait for it."""
        with self._threads_lock:
            thread = threading.Thread(target=target, name=f"zephyr-{len(self._threads) + 1}")
            self._threads.append(thread)
        logger.debug("starting %s for %s", thread.name, purpose)
        thread.start()
        return thread

    def join_threads(self, timeout: Optional[float] = None) -> None:
        """Wait for threads started by spawn_thread."""
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    def _register_table(self, table) -> None:
        for name, min_args, max_args, impl in table:
            self.register(NativeFunction(
                name=name, implementation=impl, min_args=min_args,
                max_args=max_args, doc=(impl.__doc__ or "").strip(),
            ))

    def _register_all(self) -> None:
        """Register the whole catalog."""
        self._register_console_functions()
        self._register_number_functions()
        self._register_string_functions()
        self._register_array_functions()
        self._register_data_functions()
        self._register_runtime_functions()
        self._register_tag_functions()
        self._register_io_functions()

    # --- Console ---

    def _register_console_functions(self) -> None:
        registry = self

        def _print(interp, span, *args: Value) -> Value:
            """Write the arguments separated by spaces, then a newline."""
            registry.stdout.write(" ".join(to_display(a) for a in args) + "\n")
            return null_val()

        def _write(interp, span, *args: Value) -> Value:
            """Write the arguments with no separator or newline."""
            registry.stdout.write("".join(to_display(a) for a in args))
            registry.stdout.flush()
            return null_val()

        def _read_line(interp, span, prompt: Value = None) -> Value:
            """Read one line from the console; null at end of input."""
            if prompt is not None:
                registry.stdout.write(to_display(prompt))
                registry.stdout.flush()
            line = registry.stdin.readline()
            if line == "":
                return null_val()
            return string_val(line.rstrip("\r\n"))

        def _clear_console(interp, span) -> Value:
            registry.stdout.write("\x1b[2J\x1b[H")
            registry.stdout.flush()
            return null_val()

        self._register_table([
            ("print", 0, None, _print),
            ("write", 0, None, _write),
            ("read_line", 0, 1, _read_line),
            ("clear_console", 0, 0, _clear_console),
        ])

    # --- Numbers, time and randomness ---

    def _register_number_functions(self) -> None:
        registry = self

        def _floor(interp, span, n: Value) -> Value:
            _expect(n, ValueKind.NUMBER, "floor", 1, span)
            return number_val(math.floor(n.data))

        def _ceil(interp, span, n: Value) -> Value:
            _expect(n, ValueKind.NUMBER, "ceil", 1, span)
            return number_val(math.ceil(n.data))

        def _get_time_nanos(interp, span) -> Value:
            return number_val(time.time_ns())

        def _random(interp, span) -> Value:
            """A rational in [0, 1)."""
            return number_val(Fraction(registry.rng.getrandbits(53), 2 ** 53))

        def _random_range(interp, span, low: Value, high: Value) -> Value:
            """A whole number in [low, high]."""
            a = _expect_whole(low, "random_range", 1, span)
            b = _expect_whole(high, "random_range", 2, span)
            if a > b:
                raise ScriptValueError.create("random_range(): low must not exceed high", span)
            return number_val(registry.rng.randint(a, b))

        def _random_item(interp, span, arr: Value) -> Value:
            items = _expect(arr, ValueKind.ARRAY, "random_item", 1, span).data.snapshot()
            if not items:
                raise ScriptIndexError.create("random_item(): array is empty", span)
            return registry.rng.choice(items)

        self._register_table([
            ("floor", 1, 1, _floor),
            ("ceil", 1, 1, _ceil),
            ("get_time_nanos", 0, 0, _get_time_nanos),
            ("random", 0, 0, _random),
            ("random_range", 2, 2, _random_range),
            ("random_item", 1, 1, _random_item),
        ])

    # --- Strings and regular expressions ---

    def _register_string_functions(self) -> None:

        def _str_to_number(interp, span, s: Value) -> Value:
            text = _expect(s, ValueKind.STRING, "str_to_number", 1, span).data.strip().replace("_", "")
            try:
                if text.lower().startswith(("0x", "-0x", "0b", "-0b")):
                    return number_val(int(text, 0))
                return number_val(Fraction(text))
            except (ValueError, ZeroDivisionError):
                raise ScriptValueError.create(f"cannot convert {s.data!r} to a number", span)

        def _char_code(interp, span, s: Value) -> Value:
            text = _expect(s, ValueKind.STRING, "char_code", 1, span).data
            if len(text) != 1:
                raise ScriptValueError.create("char_code() expects a single character", span)
            return number_val(ord(text))

        def _from_char_code(interp, span, n: Value) -> Value:
            code = _expect_whole(n, "from_char_code", 1, span)
            if not 0 <= code <= 0x10FFFF:
                raise ScriptValueError.create(f"invalid character code {code}", span)
            return string_val(chr(code))

        def _unescape_native(interp, span, s: Value) -> Value:
            return string_val(_unescape(_expect(s, ValueKind.STRING, "unescape", 1, span).data, span))

        def _str_split(interp, span, s: Value, separator: Value) -> Value:
            """Split on every occurrence of separator; an empty separator splits into characters."""
            text = _expect(s, ValueKind.STRING, "str_split", 1, span).data
            sep = _expect(separator, ValueKind.STRING, "str_split", 2, span).data
            parts = list(text) if sep == "" else text.split(sep)
            return array_val(string_val(p) for p in parts)

        def _to_string(interp, span, v: Value) -> Value:
            return string_val(to_display(v))

        def _type_of(interp, span, v: Value) -> Value:
            return string_val(v.type_name)

        def _rg_is_match(interp, span, pattern: Value, s: Value) -> Value:
            regex = _compile(pattern, "rg_is_match", span)
            text = _expect(s, ValueKind.STRING, "rg_is_match", 2, span).data
            return bool_val(regex.search(text) is not None)

        def _rg_replace(interp, span, pattern: Value, s: Value, replacement: Value) -> Value:
            regex = _compile(pattern, "rg_replace", span)
            text = _expect(s, ValueKind.STRING, "rg_replace", 2, span).data
            repl = _expect(replacement, ValueKind.STRING, "rg_replace", 3, span).data
            try:
                return string_val(regex.sub(repl, text))
            except re.error as e:
                raise ScriptValueError.create(f"rg_replace(): {e}", span)

        def _compile(pattern: Value, func: str, span):
            source = _expect(pattern, ValueKind.STRING, func, 1, span).data
            try:
                return re.compile(source)
            except re.error as e:
                raise ScriptValueError.create(f"{func}(): invalid pattern: {e}", span)

        self._register_table([
            ("str_to_number", 1, 1, _str_to_number),
            ("char_code", 1, 1, _char_code),
            ("from_char_code", 1, 1, _from_char_code),
            ("unescape", 1, 1, _unescape_native),
            ("str_split", 2, 2, _str_split),
            ("to_string", 1, 1, _to_string),
            ("type_of", 1, 1, _type_of),
            ("rg_is_match", 2, 2, _rg_is_match),
            ("rg_replace", 3, 3, _rg_replace),
        ])

    # --- Arrays and buffers ---

    def _register_array_functions(self) -> None:

        def _push_arr(interp, span, arr: Value, value: Value) -> Value:
            """Append in place and return the same array."""
            _expect(arr, ValueKind.ARRAY, "push_arr", 1, span).data.append(value)
            return arr

        def _arr_ref_set(interp, span, arr: Value, new: Value) -> Value:
            """Replace the contents of ``arr`` with those of ``new``, keeping the reference."""
            _expect(arr, ValueKind.ARRAY, "arr_ref_set", 1, span)
            _expect(new, ValueKind.ARRAY, "arr_ref_set", 2, span)
            arr.data.replace(new.data.snapshot())
            return arr

        def _slice(interp, span, v: Value, start: Value, end: Value = None) -> Value:
            """New array or string from start up to (not including) end."""
            lo = _expect_whole(start, "slice", 2, span)
            hi = None if end is None or end.is_null else _expect_whole(end, "slice", 3, span)
            if v.kind == ValueKind.STRING:
                return string_val(v.data[lo:hi])
            items = _expect(v, ValueKind.ARRAY, "slice", 1, span).data.snapshot()
            return array_val(items[lo:hi])

        def _reverse(interp, span, v: Value) -> Value:
            if v.kind == ValueKind.STRING:
                return string_val(v.data[::-1])
            items = _expect(v, ValueKind.ARRAY, "reverse", 1, span).data.snapshot()
            return array_val(reversed(items))

        def _iter(interp, span, v: Value) -> Value:
            """Array of the elements (or, for objects, the keys) of v."""
            pairs = iter_pairs(v, span)
            if v.kind == ValueKind.OBJECT:
                return array_val(key for key, _ in pairs)
            return array_val(item for _, item in pairs)

        def _keys(interp, span, obj: Value) -> Value:
            entries = _expect(obj, ValueKind.OBJECT, "keys", 1, span).data.snapshot()
            return array_val(string_val(k) for k, _ in entries)

        def _shallow_copy(interp, span, v: Value) -> Value:
            return shallow_copy(v)

        def _deep_copy(interp, span, v: Value) -> Value:
            return deep_copy(v)

        def _buff_to_utf8(interp, span, arr: Value) -> Value:
            raw = _to_bytes(arr, "buff_to_utf8", 1, span)
            try:
                return string_val(raw.decode("utf-8"))
            except UnicodeDecodeError as e:
                raise ScriptValueError.create(f"buff_to_utf8(): {e}", span)

        def _utf8_to_buff(interp, span, s: Value) -> Value:
            text = _expect(s, ValueKind.STRING, "utf8_to_buff", 1, span).data
            return _bytes_val(text.encode("utf-8"))

        self._register_table([
            ("push_arr", 2, 2, _push_arr),
            ("arr_ref_set", 2, 2, _arr_ref_set),
            ("slice", 2, 3, _slice),
            ("reverse", 1, 1, _reverse),
            ("iter", 1, 1, _iter),
            ("keys", 1, 1, _keys),
            ("shallow_copy", 1, 1, _shallow_copy),
            ("deep_copy", 1, 1, _deep_copy),
            ("buff_to_utf8", 1, 1, _buff_to_utf8),
            ("utf8_to_buff", 1, 1, _utf8_to_buff),
        ])

    # --- JSON, errors and references ---

    def _register_data_functions(self) -> None:

        def _parse_json(interp, span, s: Value) -> Value:
            text = _expect(s, ValueKind.STRING, "parse_json", 1, span).data
            try:
                return from_python(json.loads(text, parse_float=Fraction))
            except ValueError as e:
                raise ScriptValueError.create(f"parse_json(): {e}", span)

        def _to_json(interp, span, v: Value) -> Value:
            def default(obj: Any) -> Any:
                if isinstance(obj, Fraction):
                    return float(obj)
                raise TypeError(f"a {obj.type_name if isinstance(obj, Value) else type(obj).__name__} "
                                f"cannot be converted to JSON")
            try:
                return string_val(json.dumps(to_python(v), default=default))
            except TypeError as e:
                raise ScriptTypeError.create(f"zephyr_to_json(): {e}", span)

        def _error(interp, span, message: Value, kind: Value = None, data: Value = None) -> Value:
            """Build an error value: .{ message, type, data }."""
            text = _expect(message, ValueKind.STRING, "error", 1, span).data
            type_name = "Error"
            if kind is not None and not kind.is_null:
                type_name = _expect(kind, ValueKind.STRING, "error", 2, span).data
            return error_value(text, type_name, data)

        def _make_ref(interp, span, v: Value) -> Value:
            return reference_val(v)

        def _deref(interp, span, r: Value) -> Value:
            return _expect(r, ValueKind.REFERENCE, "deref", 1, span).data.get()

        def _ref_set(interp, span, r: Value, v: Value) -> Value:
            _expect(r, ValueKind.REFERENCE, "ref_set", 1, span).data.set(v)
            return r

        self._register_table([
            ("parse_json", 1, 1, _parse_json),
            ("zephyr_to_json", 1, 1, _to_json),
            ("error", 1, 3, _error),
            ("make_ref", 1, 1, _make_ref),
            ("deref", 1, 1, _deref),
            ("ref_set", 2, 2, _ref_set),
        ])

    # --- Calls, prototypes and threads ---

    def _register_runtime_functions(self) -> None:
        registry = self

        def _call_zephyr_function(interp, span, fn: Value, args: Value) -> Value:
            items = _expect(args, ValueKind.ARRAY, "call_zephyr_function", 2, span).data.snapshot()
            return interp.call_function(fn, items, span)

        def _get_proto_obj(interp, span, name: Value) -> Value:
            key = _expect(name, ValueKind.STRING, "get_proto_obj", 1, span).data
            if key not in registry.prototypes:
                raise ScriptValueError.create(f"no prototype named '{key}'", span)
            return registry.prototypes[key]

        def _get_proto_obj_of(interp, span, v: Value) -> Value:
            """The prototype methods on v are looked up in first."""
            return registry.prototype_for(v)

        def _set_proto_ref(interp, span, v: Value, proto: Value) -> Value:
            """
            Return v (same storage) with its own prototype. ``proto`` is an
            Object, or a Reference to one so the prototype can be swapped later.
            """
            target = proto.data.get() if proto.kind == ValueKind.REFERENCE else proto
            if target.kind != ValueKind.OBJECT:
                raise ScriptTypeError.create(
                    f"set_proto_ref() argument 2 must be an object or a reference to one, "
                    f"not a {target.type_name}", span,
                )
            return v.with_tags({**v.tags, PROTO_TAG: proto})

        def _get_args(interp, span) -> Value:
            return array_val(string_val(a) for a in registry.argv)

        def _spawn_thread(interp, span, fn: Value) -> Value:
            """Run fn() on a new OS thread."""
            if not fn.is_callable():
                raise ScriptTypeError.create("spawn_thread() expects a function", span)

            def run() -> None:
                try:
                    interp.call_function(fn, [], span)
                except ThrowSignal as signal:
                    logger.error("uncaught throw in thread %s: %s",
                                 threading.current_thread().name, to_display(signal.value))
                except ZephyrError as e:
                    logger.error("uncaught fault in thread %s: %s",
                                 threading.current_thread().name, e.message)

            registry.start_thread(run, "spawn_thread")
            return null_val()

        def _add_event_listener(interp, span, emitter: Value, event: Value, listener: Value) -> Value:
            target = emitter.tags.get(EMITTER_TAG)
            if not isinstance(target, EventEmitter):
                raise ScriptTypeError.create(
                    f"add_event_listener() argument 1 must be an event emitter, "
                    f"not a {emitter.type_name}", span,
                )
            name = _expect(event, ValueKind.STRING, "add_event_listener", 2, span).data
            if not listener.is_callable():
                raise ScriptTypeError.create("add_event_listener() argument 3 must be a function", span)
            target.add_listener(name, listener, span)
            return null_val()

        self._register_table([
            ("call_zephyr_function", 2, 2, _call_zephyr_function),
            ("get_proto_obj", 1, 1, _get_proto_obj),
            ("get_proto_obj_of", 1, 1, _get_proto_obj_of),
            ("set_proto_ref", 2, 2, _set_proto_ref),
            ("get_args", 0, 0, _get_args),
            ("spawn_thread", 1, 1, _spawn_thread),
            ("add_event_listener", 3, 3, _add_event_listener),
        ])

    # --- Tags ---

    def _register_tag_functions(self) -> None:
        """
        Script access to the tag annex. Tags are never changed in place:
        each function returns a new wrapper around the same storage.
        """

        def _tag_name(name: Value, func: str, span) -> str:
            key = _expect(name, ValueKind.STRING, func, 2, span).data
            if key in RESERVED_TAGS:
                raise ScriptValueError.create(f"{func}(): tag '{key}' is reserved", span)
            return key

        def _add_tag(interp, span, target: Value, name: Value, value: Value) -> Value:
            """Add a string tag that the value does not carry yet."""
            key = _tag_name(name, "add_tag", span)
            text = _expect(value, ValueKind.STRING, "add_tag", 3, span).data
            if key in target.tags:
                raise ScriptValueError.create(f"add_tag(): value is already tagged '{key}'", span)
            return target.with_tags({**target.tags, key: text})

        def _set_tag(interp, span, target: Value, name: Value, value: Value) -> Value:
            """Add or replace a string tag."""
            key = _tag_name(name, "set_tag", span)
            text = _expect(value, ValueKind.STRING, "set_tag", 3, span).data
            return target.with_tags({**target.tags, key: text})

        def _delete_tag(interp, span, target: Value, name: Value) -> Value:
            key = _tag_name(name, "delete_tag", span)
            return target.with_tags({k: v for k, v in target.tags.items() if k != key})

        def _get_tags(interp, span, target: Value) -> Value:
            """An Object of the value's tags; engine tags are shown as strings."""
            return object_val({k: string_val(_tag_text(v)) for k, v in target.tags.items()})

        self._register_table([
            ("add_tag", 3, 3, _add_tag),
            ("set_tag", 3, 3, _set_tag),
            ("delete_tag", 2, 2, _delete_tag),
            ("get_tags", 1, 1, _get_tags),
        ])

    # --- Networking ---

    def _register_io_functions(self) -> None:
        registry = self

        def _create_tcp_stream(interp, span, host: Value, port: Value) -> Value:
            """Open a TCP connection; returns .{ read, write, close, listen, events }."""
            address = _expect(host, ValueKind.STRING, "create_tcp_stream", 1, span).data
            port_number = _expect_whole(port, "create_tcp_stream", 2, span)
            try:
                sock = socket.create_connection((address, port_number))
            except OSError as e:
                raise NativeError.create(f"create_tcp_stream(): {e}", span)
            return _tcp_stream_object(registry, sock)

        self._register_table([
            ("create_tcp_stream", 2, 2, _create_tcp_stream),
        ])


def _tcp_stream_object(registry: NativeRegistry, sock: socket.socket) -> Value:
    """
    Wrap a connected socket as an object of stream natives.

    Data is exchanged as byte arrays (see utf8_to_buff / buff_to_utf8);
    ``write`` also accepts a String, sent as UTF-8. Either call ``read``
    directly or call ``listen()`` once to have a background thread emit
    "receive" with each chunk and "close" at end of stream.
    """
    events = EventEmitter(["receive", "close"])
    listening = threading.Event()

    def _read(interp, span, size: Value = None) -> Value:
        count = 4096 if size is None else _expect_whole(size, "read", 1, span)
        try:
            data = sock.recv(count)
        except OSError as e:
            raise NativeError.create(f"read(): {e}", span)
        return _bytes_val(data)

    def _write(interp, span, data: Value) -> Value:
        if data.kind == ValueKind.STRING:
            raw = data.data.encode("utf-8")
        else:
            raw = _to_bytes(data, "write", 1, span)
        try:
            sock.sendall(raw)
        except OSError as e:
            raise NativeError.create(f"write(): {e}", span)
        return number_val(len(raw))

    def _close(interp, span) -> Value:
        sock.close()
        return null_val()

    def _listen(interp, span) -> Value:
        if listening.is_set():
            raise ScriptValueError.create("listen(): stream is already being read in the background", span)
        listening.set()

        def pump() -> None:
            while True:
                try:
                    data = sock.recv(4096)
                except OSError as e:
                    logger.debug("tcp stream stopped reading: %s", e)
                    break
                if not data:
                    break
                events.emit(interp, "receive", [_bytes_val(data)])
            events.emit(interp, "close", [])

        registry.start_thread(pump, "tcp listen")
        return null_val()

    return object_val({
        "read": native_val(NativeFunction("read", _read, 0, 1)),
        "write": native_val(NativeFunction("write", _write, 1, 1)),
        "close": native_val(NativeFunction("close", _close, 0, 0)),
        "listen": native_val(NativeFunction("listen", _listen, 0, 0)),
        "events": events.to_value(),
    })
