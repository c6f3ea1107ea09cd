"""
Tests for module resolution, caching and imports.
"""

import io

import pytest
from zephyr import Interpreter, EngineConfig, run_file
from zephyr.errors import ResolutionError
from zephyr.runtime import ModuleLoader, NativeRegistry, string_val


def write_modules(root, files):
    """Write a mapping of relative path -> source under root."""
    for name, source in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source)
    return root / "main.zr"


def run_main(tmp_path, files, **kwargs):
    main = write_modules(tmp_path, files)
    interp = Interpreter(loader=ModuleLoader(), **kwargs)
    return run_file(main, interpreter=interp), interp


class TestImports:
    """Test the two import forms."""

    def test_from_import(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "util.zr": 'export func double(x) { x * 2 }\nexport const NAME = "util";\n',
            "main.zr": 'from "util" import double, NAME as n;\n[double(4), n]\n',
        })
        assert result.success, result.error_message
        assert result.python_value == [8, "util"]

    def test_expose_all(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "util.zr": "export func double(x) { x * 2 }\nexport const TEN = 10;\n",
            "main.zr": 'import "util" expose *;\ndouble(TEN)\n',
        })
        assert result.python_value == 20

    def test_expose_names(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "util.zr": "export func double(x) { x * 2 }\nexport const TEN = 10;\n",
            "main.zr": 'import "util" expose double, TEN as ten;\ndouble(ten)\n',
        })
        assert result.python_value == 20

    def test_bare_import_runs_module(self, tmp_path):
        registry = NativeRegistry(stdout=io.StringIO())
        result, _ = run_main(tmp_path, {
            "setup.zr": 'print("ready");\n',
            "main.zr": 'import "setup";\n1\n',
        }, natives=registry)
        assert result.python_value == 1
        assert registry.stdout.getvalue() == "ready\n"

    def test_export_name_list(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "m.zr": "let a = 1;\nlet b = 2;\nexport a, b as bee;\n",
            "main.zr": 'from "m" import a, bee;\na + bee\n',
        })
        assert result.python_value == 3

    def test_private_names_are_hidden(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "m.zr": "let secret = 1;\nexport const visible = 2;\n",
            "main.zr": 'from "m" import secret;\n',
        })
        assert not result.success
        assert isinstance(result.error, ResolutionError)
        assert "visible" in result.error_message

    def test_explicit_extension_and_subdirectory(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "pkg/helper.zr": "export const H = 5;\n",
            "pkg/inner.zr": 'from "helper" import H;\nexport func get() { H }\n',
            "main.zr": 'from "pkg/inner.zr" import get;\nget()\n',
        })
        assert result.success, result.error_message
        assert result.python_value == 5

    def test_pure_function_may_use_module_globals(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "m.zr": "let factor = 3;\nexport pure func triple(x) { x * factor }\n",
            "main.zr": 'from "m" import triple;\ntriple(4)\n',
        })
        assert result.python_value == 12


class TestModuleCache:
    """Modules are evaluated once and share state."""

    def test_aliases_share_state(self, tmp_path):
        result, interp = run_main(tmp_path, {
            "state.zr": (
                "export let items = [];\n"
                "export func add(x) { __zephyr_native.push_arr(items, x); }\n"
            ),
            "main.zr": (
                'from "state" import items;\n'
                'from "./state.zr" import add;\n'
                "add(1);\n"
                "add(2);\n"
                "items\n"
            ),
        })
        assert result.python_value == [1, 2]
        assert len(interp.loader.loaded_paths()) == 1

    def test_module_evaluated_once(self, tmp_path):
        registry = NativeRegistry(stdout=io.StringIO())
        result, _ = run_main(tmp_path, {
            "noisy.zr": 'print("loading");\nexport const X = 1;\n',
            "other.zr": 'from "noisy" import X;\nexport const Y = X + 1;\n',
            "main.zr": 'from "noisy" import X;\nfrom "other" import Y;\n[X, Y]\n',
        }, natives=registry)
        assert result.python_value == [1, 2]
        assert registry.stdout.getvalue() == "loading\n"

    def test_clear(self, tmp_path):
        result, interp = run_main(tmp_path, {
            "m.zr": "export const X = 1;\n",
            "main.zr": 'from "m" import X;\nX\n',
        })
        assert interp.loader.is_loaded(tmp_path / "m.zr")
        interp.loader.clear()
        assert not interp.loader.is_loaded(tmp_path / "m.zr")

    def test_interpreters_keep_their_own_natives(self, tmp_path):
        main = write_modules(tmp_path, {
            "greet.zr": 'export func hello(who) { print("hi " + who); }\n',
            "main.zr": 'from "greet" import hello;\nhello(visitor);\n',
        })
        outputs = []
        for name in ("first", "second"):
            registry = NativeRegistry(stdout=io.StringIO())
            interp = Interpreter(natives=registry)
            interp.globals.define("visitor", string_val(name))
            result = run_file(main, interpreter=interp)
            assert result.success, result.error_message
            outputs.append(registry.stdout.getvalue())
        assert outputs == ["hi first\n", "hi second\n"]

    def test_shared_loader_is_explicit(self, tmp_path):
        main = write_modules(tmp_path, {
            "m.zr": "export const X = 1;\n",
            "main.zr": 'from "m" import X;\nX\n',
        })
        loader = ModuleLoader()
        first = Interpreter(loader=loader)
        second = Interpreter(loader=loader)
        assert run_file(main, interpreter=first).python_value == 1
        assert second.loader.is_loaded(tmp_path / "m.zr")
        assert not Interpreter().loader.is_loaded(tmp_path / "m.zr")


class TestResolution:
    """Test lookup rules and resolution failures."""

    def test_missing_module(self, tmp_path):
        result, _ = run_main(tmp_path, {"main.zr": 'from "nowhere" import x;\n'})
        assert not result.success
        assert result.error.code == "E410"
        assert "cannot find module" in result.error_message

    def test_cycle_is_rejected(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "a.zr": 'from "b" import y;\nexport const x = 1;\n',
            "b.zr": 'from "a" import x;\nexport const y = 2;\n',
            "main.zr": 'from "a" import x;\nx\n',
        })
        assert not result.success
        assert isinstance(result.error, ResolutionError)
        assert "cyclic import" in result.error_message

    def test_search_paths(self, tmp_path):
        lib = tmp_path / "lib"
        write_modules(lib, {"shared.zr": "export const S = 7;\n"})
        main = write_modules(tmp_path / "app", {"main.zr": 'from "shared" import S;\nS\n'})
        config = EngineConfig(module_paths=[str(lib)])
        result = run_file(main, config=config)
        assert result.python_value == 7

    def test_resolve_directly(self, tmp_path):
        write_modules(tmp_path, {"m.zr": "", "main.zr": ""})
        loader = ModuleLoader()
        resolved = loader.resolve("m", importer=str(tmp_path / "main.zr"))
        assert resolved == (tmp_path / "m.zr").resolve()
        with pytest.raises(ResolutionError):
            loader.resolve("absent", importer=str(tmp_path / "main.zr"))

    def test_import_failure_is_catchable(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "main.zr": 'try { from "nope" import x; } catch e { e.type }\n',
        })
        assert result.python_value == "ResolutionError"

    def test_module_throw_propagates(self, tmp_path):
        result, _ = run_main(tmp_path, {
            "bad.zr": 'throw "broken module";\n',
            "main.zr": 'from "bad" import x;\n',
        })
        assert not result.success
        assert result.thrown.data == "broken module"
