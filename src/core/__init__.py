"""Core package exports."""

from .config_loader import (
    ConfigError,
    EngineUnavailableError,
    LoadFailureError,
    MissingArgumentError,
    load_config,
)

__all__ = [
    "ConfigError",
    "EngineUnavailableError",
    "LoadFailureError",
    "MissingArgumentError",
    "load_config",
]
