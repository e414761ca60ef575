"""Module-loading engine for Python config modules.

The engine evaluates a config file as a fresh module and hands back its
exports. Any file suffix is accepted: the source is always compiled as
Python, so ``app.conf`` or an extension-less file load the same way as
``modconf.config.py``.

Usage:
    engine = create_engine(Path.cwd(), module_cache=False, interop_default=True)
    exports = await engine.import_url(Path("modconf.config.py").resolve().as_uri())
"""

from __future__ import annotations

import importlib
import importlib.machinery
import importlib.metadata
import importlib.util
import itertools
import sys
import types
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence
from urllib.parse import urlparse
from urllib.request import url2pathname

import structlog

logger = structlog.get_logger("modconf.engine")

ENGINE_ENTRY_POINT_GROUP = "modconf.engines"
ENGINE_ENTRY_POINT_NAME = "default"
ENGINE_PACKAGE = "src.core.engine"

DEFAULT_EXPORT = "default"

_module_counter = itertools.count()


class ModuleExports(Mapping):
    """Read-only view of the names a config module exports."""

    def __init__(self, values: Mapping[str, Any], *, source: Path) -> None:
        self._values = dict(values)
        self.source = source

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ModuleExports({self.source}, names={list(self._values)})"


class ModuleEngine:
    """Resolves, compiles and evaluates config modules."""

    def __init__(self, base: Path, *, module_cache: bool = True, interop_default: bool = False) -> None:
        self.base = base
        self.module_cache = module_cache
        self.interop_default = interop_default
        self._cache: dict[Path, Any] = {}

    def resolve(self, url: str) -> Path:
        """Turn a ``file://`` URL or plain path into an absolute path under ``base``."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        if parsed.scheme and len(parsed.scheme) > 1:
            raise ValueError(f"Unsupported URL scheme '{parsed.scheme}' in {url}")
        candidate = Path(url)
        if not candidate.is_absolute():
            candidate = self.base / candidate
        return candidate.resolve()

    async def import_url(self, url: str) -> Any:
        path = self.resolve(url)
        if self.module_cache and path in self._cache:
            logger.debug("module-cache-hit", path=str(path))
            return self._cache[path]

        module = self._evaluate(path)
        exports = ModuleExports(_collect_exports(module), source=path)
        result: Any = exports
        if self.interop_default and exports.get(DEFAULT_EXPORT):
            result = exports[DEFAULT_EXPORT]

        if self.module_cache:
            self._cache[path] = result
        return result

    def _evaluate(self, path: Path) -> types.ModuleType:
        if not path.exists():
            raise FileNotFoundError(f"Cannot find module '{path}'")
        if not path.is_file():
            raise IsADirectoryError(f"Config path {path} is not a file")

        name = f"_modconf_config_{next(_module_counter)}"
        loader = importlib.machinery.SourceFileLoader(name, str(path))
        spec = importlib.util.spec_from_file_location(name, path, loader=loader)
        if spec is None:
            raise ImportError(f"Cannot build import spec for {path}")
        module = importlib.util.module_from_spec(spec)

        modules_before = set(sys.modules)
        saved_path = list(sys.path)
        saved_bytecode_flag = sys.dont_write_bytecode
        sys.path.insert(0, str(path.parent))
        sys.dont_write_bytecode = True
        sys.modules[name] = module
        importlib.invalidate_caches()
        try:
            logger.debug("evaluating-config-module", path=str(path), module=name)
            loader.exec_module(module)
        finally:
            sys.path[:] = saved_path
            sys.dont_write_bytecode = saved_bytecode_flag
            sys.modules.pop(name, None)
            if not self.module_cache:
                for added in set(sys.modules) - modules_before:
                    if _is_within(sys.modules.get(added), path.parent.resolve()):
                        sys.modules.pop(added, None)
        return module


def _is_within(module: types.ModuleType | None, root: Path) -> bool:
    # Only drop modules that live beside the config file; stdlib and
    # extension modules imported on the way stay loaded.
    location = getattr(module, "__file__", None)
    if not location:
        return False
    try:
        Path(location).resolve().relative_to(root)
    except ValueError:
        return False
    return True


def _collect_exports(module: types.ModuleType) -> dict[str, Any]:
    namespace = vars(module)
    names = namespace.get("__all__")
    if names is None:
        names = [key for key in namespace if not key.startswith("_")]
    exports: dict[str, Any] = {}
    for key in names:
        if key not in namespace:
            raise AttributeError(f"module {module.__name__!r} lists {key!r} in __all__ but does not define it")
        exports[key] = namespace[key]
    return exports


def create_engine(base: Path | str, *, module_cache: bool = True, interop_default: bool = False) -> ModuleEngine:
    """Construct an engine resolving relative imports against ``base``.

    ``base`` may be a directory, a file inside the resolution root, or a
    ``file://`` URL of either.
    """
    base_str = str(base)
    if base_str.startswith("file:"):
        base_path = Path(url2pathname(urlparse(base_str).path))
    else:
        base_path = Path(base_str)
    base_path = base_path.resolve()
    if base_path.is_file():
        base_path = base_path.parent
    return ModuleEngine(base_path, module_cache=module_cache, interop_default=interop_default)


EngineFactory = Callable[..., ModuleEngine]


@dataclass(frozen=True)
class EngineStrategy:
    name: str
    resolve: Callable[[Path], EngineFactory]


def _from_entry_point(cwd: Path) -> EngineFactory:
    matches = importlib.metadata.entry_points(group=ENGINE_ENTRY_POINT_GROUP, name=ENGINE_ENTRY_POINT_NAME)
    for entry_point in matches:
        return entry_point.load()
    raise LookupError(f"No '{ENGINE_ENTRY_POINT_NAME}' entry point in group '{ENGINE_ENTRY_POINT_GROUP}'")


def _from_package_root(cwd: Path) -> EngineFactory:
    cwd_entry = str(cwd)
    added = cwd_entry not in sys.path
    if added:
        sys.path.insert(0, cwd_entry)
    try:
        module = importlib.import_module(ENGINE_PACKAGE)
    finally:
        if added and cwd_entry in sys.path:
            sys.path.remove(cwd_entry)
    factory = getattr(module, "create_engine", None)
    if factory is None:
        raise ImportError(f"{ENGINE_PACKAGE} has no attribute 'create_engine'")
    return factory


DEFAULT_STRATEGIES: tuple[EngineStrategy, ...] = (
    EngineStrategy("entry-point", _from_entry_point),
    EngineStrategy("package-root", _from_package_root),
)


class EngineResolutionError(Exception):
    """Raised when no strategy yields an engine factory."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        self.failures = list(failures)
        super().__init__(" / ".join(str(exc) or type(exc).__name__ for _, exc in self.failures))


async def acquire_engine(
    cwd: Path | None = None,
    strategies: Sequence[EngineStrategy] = DEFAULT_STRATEGIES,
) -> EngineFactory:
    """Return the first engine factory a strategy can resolve."""
    root = cwd or Path.cwd()
    failures: list[tuple[str, BaseException]] = []
    for strategy in strategies:
        try:
            factory = strategy.resolve(root)
        except Exception as exc:
            logger.debug("engine-strategy-failed", strategy=strategy.name, error=str(exc))
            failures.append((strategy.name, exc))
            continue
        logger.debug("engine-acquired", strategy=strategy.name)
        return factory
    raise EngineResolutionError(failures)


__all__ = [
    "DEFAULT_STRATEGIES",
    "EngineResolutionError",
    "EngineStrategy",
    "ModuleEngine",
    "ModuleExports",
    "acquire_engine",
    "create_engine",
]
