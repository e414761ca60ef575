from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import inspect
import json
import math
import types
from collections.abc import Mapping, Set
from pathlib import Path, PurePath
from typing import Any

import structlog

from src.core.engine import DEFAULT_EXPORT, EngineResolutionError, acquire_engine

logger = structlog.get_logger("modconf.core")


class ConfigError(Exception):
    """Raised when a config module cannot be turned into a config value."""


class EngineUnavailableError(ConfigError):
    """Raised when no module-loading engine can be resolved."""


class MissingArgumentError(ConfigError):
    """Raised when no config file path was supplied."""


class LoadFailureError(ConfigError):
    """Raised when the config module fails to load, evaluate or serialize."""


async def load_engine(cwd: Path | None = None):
    """Build the engine used for a single load: fresh reads, default-export interop."""
    root = cwd or Path.cwd()
    try:
        factory = await acquire_engine(root)
    except EngineResolutionError as exc:
        raise EngineUnavailableError(
            f"Error: Could not load module engine. Is modconf installed? ({exc})"
        ) from exc
    return factory(root, module_cache=False, interop_default=True)


def resolve_config_path(config_path: Path | str | None, cwd: Path | None = None) -> Path:
    """Resolve the caller's path against the working directory, not this file."""
    if config_path is None or str(config_path) == "":
        raise MissingArgumentError("Error: No config file path provided.")
    candidate = Path(config_path).expanduser()
    if not candidate.is_absolute():
        candidate = (cwd or Path.cwd()) / candidate
    return candidate.resolve()


def resolve_config_value(result: Any) -> Any:
    """Unwrap the default-export slot when present, otherwise keep the exports."""
    if isinstance(result, Mapping) and result.get(DEFAULT_EXPORT):
        return result[DEFAULT_EXPORT]
    return result


def _is_skippable(value: Any) -> bool:
    return (
        isinstance(value, (types.ModuleType, type))
        or inspect.isroutine(value)
        or callable(value) and not dataclasses.is_dataclass(value)
    )


def to_jsonable(value: Any, _seen: set[int] | None = None) -> Any:
    """Convert a config value into plain JSON types.

    Functions, classes and modules are dropped from objects and become ``null``
    in arrays. Non-finite floats become ``null``.
    """
    seen = _seen if _seen is not None else set()

    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int) and not isinstance(value, enum.Enum):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, enum.Enum):
        return to_jsonable(value.value, seen)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, PurePath):
        return str(value)
    if _is_skippable(value):
        return None

    marker = id(value)
    if marker in seen:
        raise ValueError("Circular reference detected")
    seen.add(marker)
    try:
        if dataclasses.is_dataclass(value):
            return {
                field.name: to_jsonable(getattr(value, field.name), seen)
                for field in dataclasses.fields(value)
                if not _is_skippable(getattr(value, field.name))
            }
        if isinstance(value, Mapping):
            converted: dict[str, Any] = {}
            for key, item in value.items():
                if _is_skippable(item):
                    continue
                name = str(key)
                if name in converted:
                    raise TypeError(f"Keys {key!r} and another key both serialize to {name!r}")
                converted[name] = to_jsonable(item, seen)
            return converted
        if isinstance(value, Set):
            return _ordered([to_jsonable(item, seen) for item in value])
        if isinstance(value, (list, tuple)):
            return [to_jsonable(item, seen) for item in value]
    finally:
        seen.discard(marker)

    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _ordered(items: list[Any]) -> list[Any]:
    # Set iteration order follows the hash seed; output must not.
    try:
        return sorted(items)
    except TypeError:
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, allow_nan=False))


def dump_config(value: Any) -> str:
    """Serialize a resolved config value to one compact JSON line."""
    return json.dumps(to_jsonable(value), separators=(",", ":"), ensure_ascii=False, allow_nan=False)


async def load_config(config_path: Path | str | None, cwd: Path | None = None) -> str:
    """Load a config module and return its resolved value as a JSON line."""
    root = cwd or Path.cwd()
    engine = await load_engine(root)
    path = resolve_config_path(config_path, root)

    try:
        result = await engine.import_url(path.as_uri())
        value = resolve_config_value(result)
        line = dump_config(value)
    except (Exception, SystemExit) as exc:
        message = _describe(exc)
        logger.debug("config-load-failed", path=str(path), error=message, error_type=type(exc).__name__)
        raise LoadFailureError(f"Error loading config: {message}") from exc

    logger.info("config-loaded", path=str(path), size=len(line))
    return line


def _describe(exc: BaseException) -> str:
    if isinstance(exc, SystemExit):
        return f"config module called exit({exc.code!r})"
    if isinstance(exc, SyntaxError):
        location = f"{exc.filename}:{exc.lineno}" if exc.filename else f"line {exc.lineno}"
        return f"{exc.msg} ({location})"
    return str(exc) or type(exc).__name__


__all__ = [
    "ConfigError",
    "EngineUnavailableError",
    "LoadFailureError",
    "MissingArgumentError",
    "dump_config",
    "load_config",
    "load_engine",
    "resolve_config_path",
    "resolve_config_value",
    "to_jsonable",
]
