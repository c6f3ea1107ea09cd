"""
Engine configuration.

Configuration is optional. An ``EngineConfig`` can be built directly, from
a mapping, or from a YAML file (conventionally ``zephyr.yaml``):

    load_prelude: true
    module_paths:
      - ./lib
    module_extension: .zr
    max_call_depth: 400
    log_level: INFO
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml


logger = logging.getLogger(__name__)

CONFIG_FILENAME = "zephyr.yaml"


class ConfigError(ValueError):
    """Raised when a configuration file is malformed."""
    pass


@dataclass
class EngineConfig:
    """Settings shared by the interpreter, native bridge and module loader."""
    load_prelude: bool = True
    module_paths: List[str] = field(default_factory=list)
    module_extension: str = ".zr"
    max_call_depth: int = 400
    log_level: Optional[str] = None
    argv: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown configuration keys: {', '.join(sorted(unknown))}")

        config = cls(**dict(data))
        if not isinstance(config.module_paths, list):
            raise ConfigError("module_paths must be a list")
        if not isinstance(config.max_call_depth, int) or config.max_call_depth <= 0:
            raise ConfigError("max_call_depth must be a positive integer")
        if not config.module_extension.startswith("."):
            config.module_extension = "." + config.module_extension
        config.module_paths = [str(p) for p in config.module_paths]
        config.argv = [str(a) for a in config.argv]
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def apply_logging(self) -> None:
        """Apply ``log_level`` to the package logger."""
        if self.log_level:
            logging.getLogger("zephyr").setLevel(self.log_level.upper())


def load_config(path: Union[str, Path]) -> EngineConfig:
    """Load an ``EngineConfig`` from a YAML file."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")

    # Relative module paths are taken relative to the config file
    paths = raw.get("module_paths") or []
    if isinstance(paths, list):
        raw["module_paths"] = [
            str((path.parent / p).resolve()) if not Path(p).is_absolute() else str(p)
            for p in paths
        ]

    config = EngineConfig.from_dict(raw)
    logger.debug("loaded configuration from %s", path)
    return config


def find_config(start: Union[str, Path, None] = None) -> Optional[Path]:
    """Search ``start`` and its parents for a ``zephyr.yaml`` file."""
    directory = Path(start or Path.cwd()).resolve()
    if directory.is_file():
        directory = directory.parent
    for candidate in [directory, *directory.parents]:
        config_path = candidate / CONFIG_FILENAME
        if config_path.is_file():
            return config_path
    return None


def save_config(config: EngineConfig, path: Union[str, Path]) -> None:
    """Write a config back out as YAML."""
    Path(path).write_text(yaml.safe_dump(config.to_dict(), sort_keys=False), encoding="utf-8")
