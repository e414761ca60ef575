from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from dotenv import dotenv_values

from src.core.config_loader import ConfigError

LOG_LEVELS = {"trace", "debug", "info", "warning", "error", "critical"}
LOG_FORMATS = {"json", "console"}


@dataclass
class LoaderSettings:
    log_level: str = "warning"
    log_format: str = "json"
    global_dir: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str | None] | None = None, *, cwd: Path | None = None) -> "LoaderSettings":
        """Read settings from ``<cwd>/.env`` overlaid by the process environment.

        The ``.env`` values are only read here; they are never exported into
        ``os.environ``, so config modules see the caller's environment unchanged.
        """
        merged: dict[str, Any] = {}
        if env is None:
            dotenv_path = (cwd or Path.cwd()) / ".env"
            if dotenv_path.is_file():
                merged.update(dotenv_values(dotenv_path))
            merged.update(os.environ)
        else:
            merged.update(env)

        level = (_optional_string(merged.get("MODCONF_LOG_LEVEL"), allow_empty=False) or "warning").lower()
        log_format = (_optional_string(merged.get("MODCONF_LOG_FORMAT"), allow_empty=False) or "json").lower()
        global_dir = _optional_string(merged.get("MODCONF_GLOBAL_DIR"), allow_empty=False)
        settings = cls(log_level=level, log_format=log_format, global_dir=global_dir)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"MODCONF_LOG_LEVEL must be one of {sorted(LOG_LEVELS)}")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"MODCONF_LOG_FORMAT must be one of {sorted(LOG_FORMATS)}")


def _optional_string(value: Any, *, allow_empty: bool = True) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed and not allow_empty:
            return None
        return trimmed
    raise ConfigError(f"Expected string or null, received {type(value).__name__}")
