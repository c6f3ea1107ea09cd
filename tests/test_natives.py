"""
Tests for the native function bridge.
"""

import io
import random
import socket
import threading
from fractions import Fraction

import pytest
from zephyr import Interpreter
from zephyr.errors import (
    ArityError, ScriptTypeError, ScriptValueError, NativeError,
)
from zephyr.runtime import NativeRegistry, NativeFunction, EventEmitter, number_val, to_python


def make_interpreter(**kwargs):
    registry = NativeRegistry(stdout=io.StringIO(), **kwargs)
    return Interpreter(natives=registry), registry


def run(interp, source):
    return to_python(interp.eval_source(source))


class TestNativeFunction:
    """Test arity descriptions."""

    def test_accepts(self):
        fixed = NativeFunction("f", lambda interp, span: None, 1, 2)
        assert not fixed.accepts(0)
        assert fixed.accepts(2)
        assert not fixed.accepts(3)
        assert fixed.describe_arity() == "1 to 2"

    def test_variadic(self):
        variadic = NativeFunction("g", lambda interp, span, *a: None, 1, None)
        assert variadic.accepts(10)
        assert variadic.describe_arity() == "at least 1"


class TestConsole:
    """Test console natives with swapped streams."""

    def test_print(self):
        interp, registry = make_interpreter()
        run(interp, 'print("a", 1.5, true, null)')
        assert registry.stdout.getvalue() == "a 1.5 true null\n"

    def test_write(self):
        interp, registry = make_interpreter()
        run(interp, 'write("a", "b"); write("c")')
        assert registry.stdout.getvalue() == "abc"

    def test_read_line(self):
        interp, registry = make_interpreter(stdin=io.StringIO("first\nsecond\n"))
        result = run(interp, '[read_line(), read_line("> "), read_line()]')
        assert result == ["first", "second", None]
        assert registry.stdout.getvalue() == "> "


class TestArgumentChecking:
    """Natives enforce arity and argument kinds."""

    def test_too_few(self):
        interp, _ = make_interpreter()
        with pytest.raises(ArityError):
            run(interp, "__zephyr_native.floor()")

    def test_too_many(self):
        interp, _ = make_interpreter()
        with pytest.raises(ArityError) as exc_info:
            run(interp, "__zephyr_native.floor(1, 2)")
        assert "floor()" in str(exc_info.value)

    def test_wrong_kind(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, '__zephyr_native.floor("a")')

    def test_fault_carries_call_site(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError) as exc_info:
            run(interp, 'let x = 1;\n__zephyr_native.floor("a")')
        assert exc_info.value.span.start.line == 2


class TestNumbersAndStrings:
    """Test numeric and string primitives."""

    def test_floor_and_ceil(self):
        interp, _ = make_interpreter()
        assert run(interp, "[__zephyr_native.floor(7 / 2), __zephyr_native.ceil(7 / 2)]") == [3, 4]

    def test_str_to_number(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.str_to_number("0x1F")') == 31
        assert run(interp, '__zephyr_native.str_to_number("2.5")') == Fraction(5, 2)
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.str_to_number("abc")')

    def test_char_codes(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.char_code("A")') == 65
        assert run(interp, "__zephyr_native.from_char_code(97)") == "a"
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.char_code("AB")')

    def test_unescape(self):
        interp, _ = make_interpreter()
        assert run(interp, r'__zephyr_native.unescape("a\\tb")') == "a\tb"

    def test_regex(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.rg_is_match("^a+$", "aaa")') is True
        assert run(interp, '__zephyr_native.rg_replace("[0-9]", "a1b2", "#")') == "a#b#"

    def test_invalid_regex(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.rg_is_match("(", "x")')

    def test_utf8_buffers(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.utf8_to_buff("é")') == [195, 169]
        assert run(interp, "__zephyr_native.buff_to_utf8([104, 105])") == "hi"

    def test_seeded_random(self):
        interp, _ = make_interpreter(rng=random.Random(7))
        rolls = run(interp, "let out = []; for i in 1..20 { __zephyr_native.push_arr("
                            "out, __zephyr_native.random_range(1, 6)); }; out")
        assert all(1 <= r <= 6 for r in rolls)
        value = run(interp, "__zephyr_native.random()")
        assert 0 <= value < 1


class TestArrays:
    """Test in-place array primitives."""

    def test_push_mutates_shared_array(self):
        interp, _ = make_interpreter()
        assert run(interp, "let a = [1]; let b = a; __zephyr_native.push_arr(b, 2); a") == [1, 2]

    def test_arr_ref_set(self):
        interp, _ = make_interpreter()
        source = "let a = [1]; let b = a; __zephyr_native.arr_ref_set(a, [7, 8]); b"
        assert run(interp, source) == [7, 8]

    def test_slice(self):
        interp, _ = make_interpreter()
        assert run(interp, "__zephyr_native.slice([1, 2, 3, 4], 1, 3)") == [2, 3]
        assert run(interp, "__zephyr_native.slice([1, 2, 3, 4], 2, null)") == [3, 4]
        assert run(interp, '__zephyr_native.slice("hello", 1)') == "ello"

    def test_iter_object_gives_keys(self):
        interp, _ = make_interpreter()
        assert run(interp, "__zephyr_native.iter(.{ a: 1, b: 2 })") == ["a", "b"]


class TestData:
    """Test JSON, errors and references."""

    def test_parse_json(self):
        interp, _ = make_interpreter()
        result = run(interp, """__zephyr_native.parse_json('{"a": [1, 2.5, null]}')""")
        assert result == {"a": [1, Fraction(5, 2), None]}

    def test_invalid_json(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.parse_json("{")')

    def test_to_json(self):
        interp, _ = make_interpreter()
        result = run(interp, "__zephyr_native.zephyr_to_json(.{ a: [1, true, null] })")
        assert result == '{"a": [1, true, null]}'

    def test_function_is_not_json(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, "__zephyr_native.zephyr_to_json(.{ f: func () { 1 } })")

    def test_references(self):
        interp, _ = make_interpreter()
        source = """
            let r = __zephyr_native.make_ref(1);
            let alias = r;
            __zephyr_native.ref_set(alias, 2);
            __zephyr_native.deref(r)
        """
        assert run(interp, source) == 2

    def test_deref_requires_reference(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, "__zephyr_native.deref(1)")


class TestRuntime:
    """Test calls, prototypes, arguments and threads."""

    def test_call_zephyr_function(self):
        interp, _ = make_interpreter()
        source = "__zephyr_native.call_zephyr_function(func (a, b) { a - b }, [5, 3])"
        assert run(interp, source) == 2

    def test_get_proto_obj(self):
        interp, registry = make_interpreter()
        proto = interp.eval_source('__zephyr_native.get_proto_obj("array")')
        assert proto.data is registry.prototypes["array"].data
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.get_proto_obj("widget")')

    def test_get_args(self):
        interp, _ = make_interpreter(argv=["one", "two"])
        assert run(interp, "args()") == ["one", "two"]

    def test_custom_native(self):
        registry = NativeRegistry(stdout=io.StringIO())
        registry.register(NativeFunction(
            "double", lambda interp, span, v: number_val(v.data * 2), 1, 1,
        ))
        interp = Interpreter(natives=registry)
        assert run(interp, "__zephyr_native.double(21)") == 42

    def test_host_exception_becomes_native_error(self):
        def boom(interp, span):
            raise ValueError("bad input")

        registry = NativeRegistry(stdout=io.StringIO())
        registry.register(NativeFunction("boom", boom, 0, 0))
        interp = Interpreter(natives=registry)
        with pytest.raises(NativeError) as exc_info:
            run(interp, "__zephyr_native.boom()")
        assert "E412" in str(exc_info.value)
        assert run(interp, "try { __zephyr_native.boom() } catch e { e.type }") == "NativeError"

    def test_spawn_thread(self):
        interp, registry = make_interpreter()
        run(interp, "let r = ref(0); spawn(func () { __zephyr_native.ref_set(r, 5) });")
        registry.join_threads(timeout=5)
        assert run(interp, "deref(r)") == 5

    def test_spawn_requires_function(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, "__zephyr_native.spawn_thread(1)")


class TestStringSplit:
    """Test str_split."""

    def test_split(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.str_split("a,b,,c", ",")') == ["a", "b", "", "c"]
        assert run(interp, '__zephyr_native.str_split("a--b", "--")') == ["a", "b"]
        assert run(interp, '__zephyr_native.str_split("abc", "x")') == ["abc"]

    def test_empty_separator_gives_characters(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.str_split("ab", "")') == ["a", "b"]

    def test_arguments_must_be_strings(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, '__zephyr_native.str_split(12, ",")')


class TestTags:
    """Test script access to the tag annex."""

    def test_add_tag(self):
        interp, _ = make_interpreter()
        source = """
            let t = __zephyr_native.add_tag([1, 2], "shape", "pair");
            [__zephyr_native.get_tags(t), t]
        """
        assert run(interp, source) == [{"shape": "pair"}, [1, 2]]

    def test_tagged_value_shares_storage(self):
        interp, _ = make_interpreter()
        source = """
            let a = [1];
            let t = __zephyr_native.add_tag(a, "kind", "list");
            __zephyr_native.push_arr(t, 2);
            [a, __zephyr_native.get_tags(a)]
        """
        assert run(interp, source) == [[1, 2], {}]

    def test_add_existing_tag_fails(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptValueError):
            run(interp, """
                let t = __zephyr_native.add_tag(1, "unit", "cm");
                __zephyr_native.add_tag(t, "unit", "mm")
            """)

    def test_set_and_delete(self):
        interp, _ = make_interpreter()
        source = """
            let t = __zephyr_native.set_tag(1, "unit", "cm");
            let u = __zephyr_native.set_tag(t, "unit", "mm");
            let v = __zephyr_native.delete_tag(u, "unit");
            let w = __zephyr_native.delete_tag(v, "absent");
            [__zephyr_native.get_tags(u), __zephyr_native.get_tags(w)]
        """
        assert run(interp, source) == [{"unit": "mm"}, {}]

    def test_tags_do_not_change_equality(self):
        interp, _ = make_interpreter()
        assert run(interp, '__zephyr_native.set_tag(5, "unit", "cm") == 5') is True

    def test_engine_tags_are_reserved(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.set_tag(null, "__enum_variant", "x")')
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.delete_tag(error("e"), "__error")')

    def test_variant_tag_is_readable(self):
        interp, _ = make_interpreter()
        source = """
            enum Animal { Dog, Cat }
            __zephyr_native.get_tags(Animal.Dog(1))
        """
        assert run(interp, source) == {"__enum_variant": "Animal.Dog"}


class TestPrototypes:
    """Test per-value prototypes."""

    def test_own_prototype_supplies_methods(self):
        interp, _ = make_interpreter()
        source = """
            let Greeter = .{ greet: func (self) { "hi " + self.name } };
            let g = __zephyr_native.set_proto_ref(.{ name: "ada" }, Greeter);
            g.greet()
        """
        assert run(interp, source) == "hi ada"

    def test_kind_prototype_still_applies(self):
        interp, _ = make_interpreter()
        source = """
            let v = __zephyr_native.set_proto_ref([1, 2, 3], .{ total: func (self) { 6 } });
            [v.total(), v.length()]
        """
        assert run(interp, source) == [6, 3]

    def test_reference_prototype_can_be_swapped(self):
        interp, _ = make_interpreter()
        source = """
            let r = ref(.{ speak: func (self) { "one" } });
            let v = __zephyr_native.set_proto_ref([], r);
            let first = v.speak();
            __zephyr_native.ref_set(r, .{ speak: func (self) { "two" } });
            [first, v.speak()]
        """
        assert run(interp, source) == ["one", "two"]

    def test_get_proto_obj_of(self):
        interp, registry = make_interpreter()
        proto = interp.eval_source("__zephyr_native.get_proto_obj_of([])")
        assert proto.data is registry.prototypes["array"].data
        interp.eval_source("let P = .{}; let p = __zephyr_native.set_proto_ref(1, P);")
        own = interp.eval_source("__zephyr_native.get_proto_obj_of(p)")
        assert own.data is interp.eval_source("P").data

    def test_prototype_must_be_object(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, "__zephyr_native.set_proto_ref([], 5)")


class TestEvents:
    """Test event emitters and add_event_listener."""

    def test_listeners_run_in_order(self):
        interp, _ = make_interpreter()
        emitter = EventEmitter(["tick"])
        interp.globals.define("ticker", emitter.to_value())
        run(interp, """
            let seen = [];
            __zephyr_native.add_event_listener(ticker, "tick", func (n) { __zephyr_native.push_arr(seen, n); });
            __zephyr_native.add_event_listener(ticker, "tick", func (n) { __zephyr_native.push_arr(seen, n * 10); });
        """)
        assert emitter.emit(interp, "tick", [number_val(2)]) == 2
        assert run(interp, "seen") == [2, 20]

    def test_failing_listener_does_not_stop_others(self):
        interp, _ = make_interpreter()
        emitter = EventEmitter(["tick"])
        interp.globals.define("ticker", emitter.to_value())
        run(interp, """
            let count = ref(0);
            __zephyr_native.add_event_listener(ticker, "tick", func () { 1 + "" });
            __zephyr_native.add_event_listener(ticker, "tick", func () { __zephyr_native.ref_set(count, 1) });
        """)
        assert emitter.emit(interp, "tick", []) == 2
        assert run(interp, "deref(count)") == 1

    def test_unknown_event(self):
        interp, _ = make_interpreter()
        interp.globals.define("ticker", EventEmitter(["tick"]).to_value())
        with pytest.raises(ScriptValueError):
            run(interp, '__zephyr_native.add_event_listener(ticker, "tock", func () { 1 })')

    def test_requires_emitter(self):
        interp, _ = make_interpreter()
        with pytest.raises(ScriptTypeError):
            run(interp, '__zephyr_native.add_event_listener(.{}, "tick", func () { 1 })')

    def test_emitter_lists_its_events(self):
        interp, _ = make_interpreter()
        interp.globals.define("ticker", EventEmitter(["a", "b"]).to_value())
        assert run(interp, "ticker.events") == ["a", "b"]


def serve_once(handler):
    """Start a one-connection TCP server on a free port; returns (port, thread, server)."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)

    def accept():
        conn, _ = server.accept()
        with conn:
            handler(conn)

    worker = threading.Thread(target=accept)
    worker.start()
    return server.getsockname()[1], worker, server


class TestTcpStream:
    """Test TCP streams against a local server."""

    def test_round_trip(self):
        port, worker, server = serve_once(lambda conn: conn.sendall(conn.recv(1024)))
        try:
            interp, _ = make_interpreter()
            source = f"""
                let s = __zephyr_native.create_tcp_stream("127.0.0.1", {port});
                s.write("ping");
                let reply = __zephyr_native.buff_to_utf8(s.read());
                s.close();
                reply
            """
            assert run(interp, source) == "ping"
        finally:
            worker.join(timeout=5)
            server.close()

    def test_binary_data_is_not_decoded(self):
        port, worker, server = serve_once(lambda conn: conn.sendall(conn.recv(1024)))
        try:
            interp, _ = make_interpreter()
            source = f"""
                let s = __zephyr_native.create_tcp_stream("127.0.0.1", {port});
                let sent = s.write([0, 255, 128]);
                let reply = s.read();
                s.close();
                [sent, reply]
            """
            assert run(interp, source) == [3, [0, 255, 128]]
        finally:
            worker.join(timeout=5)
            server.close()

    def test_listen_emits_receive_and_close(self):
        port, worker, server = serve_once(lambda conn: conn.sendall(b"hello"))
        try:
            interp, registry = make_interpreter()
            run(interp, f"""
                let got = [];
                let closed = ref(false);
                let s = __zephyr_native.create_tcp_stream("127.0.0.1", {port});
                __zephyr_native.add_event_listener(s.events, "receive", func (chunk) {{
                    __zephyr_native.push_arr(got, __zephyr_native.buff_to_utf8(chunk));
                }});
                __zephyr_native.add_event_listener(s.events, "close", func () {{
                    __zephyr_native.ref_set(closed, true);
                }});
                s.listen();
            """)
            worker.join(timeout=5)
            registry.join_threads(timeout=5)
            assert run(interp, 'Array.join(got, "")') == "hello"
            assert run(interp, "deref(closed)") is True
            with pytest.raises(ScriptValueError):
                run(interp, "s.listen()")
            run(interp, "s.close()")
        finally:
            server.close()

    def test_connection_refused(self):
        spare = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        spare.bind(("127.0.0.1", 0))
        port = spare.getsockname()[1]
        spare.close()

        interp, _ = make_interpreter()
        with pytest.raises(NativeError):
            run(interp, f'__zephyr_native.create_tcp_stream("127.0.0.1", {port})')
