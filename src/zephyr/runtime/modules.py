"""
Module loading and caching.

A module is evaluated at most once per loader. The cache is keyed by the
canonical (resolved) file path, so two imports that spell the same file
differently share one module scope, and every importer sees the same
underlying arrays and objects.

Importing a module that is still being evaluated further up the same
import chain is a cycle and fails with a ResolutionError.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .scope import Scope
from ..ast import Program
from ..errors import ResolutionError
from ..tokens import SourceSpan


logger = logging.getLogger(__name__)


@dataclass
class ModuleRecord:
    """An evaluated module: its canonical path, top-level scope and AST."""
    path: Path
    scope: Scope
    program: Program

    def exported_names(self) -> List[str]:
        return self.scope.exported_names()


class ModuleLoader:
    """
    Resolves import paths and caches evaluated modules.

    Usage:
        loader = ModuleLoader(search_paths=["./lib"])
        record = loader.load("utils", importer="/app/main.zr", interpreter=interp)
    """

    def __init__(self, search_paths: Iterable[Union[str, Path]] = (), extension: str = ".zr"):
        self.search_paths = [Path(p) for p in search_paths]
        self.extension = extension
        self._cache: Dict[Path, ModuleRecord] = {}
        self._loading: List[Path] = []
        self._lock = threading.RLock()

    def resolve(self, path: str, importer: Optional[str] = None,
                span: Optional[SourceSpan] = None) -> Path:
        """
        Resolve an import path to a canonical file path.

        Relative paths are tried against the importing file's directory
        (or the working directory), then each search path.
        """
        requested = Path(path)
        if not requested.suffix:
            requested = requested.with_name(requested.name + self.extension)

        if requested.is_absolute():
            candidates = [requested]
        else:
            base = Path(importer).parent if importer else Path.cwd()
            candidates = [base / requested] + [p / requested for p in self.search_paths]

        for candidate in candidates:
            if candidate.is_file():
                return candidate.resolve()

        raise ResolutionError.create(
            f"cannot find module '{path}'", span,
            hints=[f"looked in: {', '.join(str(c.parent) for c in candidates)}"],
        )

    def load(self, path: str, importer: Optional[str], interpreter,
             span: Optional[SourceSpan] = None) -> ModuleRecord:
        """Return the cached module for ``path``, evaluating it on first use."""
        canonical = self.resolve(path, importer, span)

        with self._lock:
            record = self._cache.get(canonical)
            if record is not None:
                logger.debug("module cache hit: %s", canonical)
                return record

            if canonical in self._loading:
                chain = " -> ".join(p.name for p in self._loading + [canonical])
                raise ResolutionError.create(f"cyclic import: {chain}", span)

            self._loading.append(canonical)
            try:
                logger.debug("loading module %s", canonical)
                source = canonical.read_text(encoding="utf-8")
                program, scope = interpreter.run_module(source, str(canonical))
                record = ModuleRecord(path=canonical, scope=scope, program=program)
                self._cache[canonical] = record
            finally:
                self._loading.pop()

        return record

    def is_loaded(self, path: Union[str, Path]) -> bool:
        with self._lock:
            return Path(path).resolve() in self._cache

    def loaded_paths(self) -> List[Path]:
        with self._lock:
            return list(self._cache)

    def clear(self) -> None:
        """Forget every cached module."""
        with self._lock:
            self._cache.clear()
