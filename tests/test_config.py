"""
Tests for engine configuration.
"""

import logging

import pytest
from zephyr import Interpreter, EngineConfig, ConfigError, load_config, find_config
from zephyr.config import save_config
from zephyr.errors import ScriptRecursionError


class TestEngineConfig:
    """Test EngineConfig construction."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.load_prelude is True
        assert config.max_call_depth == 400
        assert config.module_extension == ".zr"
        assert config.module_paths == []

    def test_from_dict(self):
        config = EngineConfig.from_dict({"max_call_depth": 50, "module_extension": "zs"})
        assert config.max_call_depth == 50
        assert config.module_extension == ".zs"

    def test_unknown_keys(self):
        with pytest.raises(ConfigError) as exc_info:
            EngineConfig.from_dict({"colour": "blue"})
        assert "colour" in str(exc_info.value)

    def test_invalid_depth(self):
        with pytest.raises(ConfigError):
            EngineConfig.from_dict({"max_call_depth": 0})

    def test_module_paths_must_be_list(self):
        with pytest.raises(ConfigError):
            EngineConfig.from_dict({"module_paths": "lib"})

    def test_apply_logging(self):
        EngineConfig(log_level="debug").apply_logging()
        assert logging.getLogger("zephyr").level == logging.DEBUG
        logging.getLogger("zephyr").setLevel(logging.NOTSET)


class TestYamlFiles:
    """Test loading and saving zephyr.yaml."""

    def test_load(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        path.write_text("load_prelude: false\nmax_call_depth: 120\nmodule_paths:\n  - lib\n")
        config = load_config(path)
        assert config.load_prelude is False
        assert config.max_call_depth == 120
        assert config.module_paths == [str((tmp_path / "lib").resolve())]

    def test_absolute_paths_kept(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        lib = tmp_path / "shared"
        path.write_text(f"module_paths:\n  - {lib}\n")
        assert load_config(path).module_paths == [str(lib)]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        path.write_text("")
        assert load_config(path) == EngineConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        path.write_text("max_call_depth: [1,\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        original = EngineConfig(max_call_depth=77, argv=["a"])
        save_config(original, path)
        assert load_config(path) == original

    def test_find_config(self, tmp_path):
        (tmp_path / "zephyr.yaml").write_text("max_call_depth: 10\n")
        nested = tmp_path / "src" / "deep"
        nested.mkdir(parents=True)
        assert find_config(nested) == (tmp_path / "zephyr.yaml").resolve()

    def test_find_config_missing(self, tmp_path):
        nested = tmp_path / "empty"
        nested.mkdir()
        found = find_config(nested)
        assert found is None or not str(found).startswith(str(tmp_path))


class TestInterpreterUsesConfig:
    """The interpreter honours its configuration."""

    def test_call_depth(self, tmp_path):
        path = tmp_path / "zephyr.yaml"
        path.write_text("max_call_depth: 30\n")
        interp = Interpreter(config=load_config(path))
        interp.eval_source("func down(n) { if n == 0 { 0 } else { down(n - 1) } }")
        assert interp.eval_source("down(20)").data == 0
        with pytest.raises(ScriptRecursionError):
            interp.eval_source("down(40)")

    def test_argv(self):
        interp = Interpreter(config=EngineConfig(argv=["--fast"]))
        assert interp.eval_source("args()[0]").data == "--fast"
