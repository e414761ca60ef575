"""Config discovery and the parent-process side of the loader.

A host program that needs a config object looks for a config module in the
project directory, then in the per-user global directory, and runs the
loader in a subprocess to turn it into JSON.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import structlog

from src.core.config_loader import ConfigError
from src.core.settings import LoaderSettings

logger = structlog.get_logger("modconf.core")

DEFAULT_CONFIG_NAMES: tuple[str, ...] = (
    "modconf.config.py",
    "modconf.config.pyw",
    "modconf_config.py",
    ".modconf.py",
)

LOADER_MODULE = "src.cli.run"

_PACKAGE_ROOT = Path(__file__).resolve().parents[2]


class SubprocessLoadError(ConfigError):
    """Raised when the loader subprocess fails or prints unusable output."""

    def __init__(self, message: str, *, stderr: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


def get_global_directory(settings: LoaderSettings | None = None) -> Path:
    """``MODCONF_GLOBAL_DIR`` from the loader settings, else ``~/.modconf``."""
    override = settings.global_dir if settings is not None else None
    if override:
        return Path(override).expanduser()
    try:
        home = Path.home()
    except RuntimeError as exc:
        raise ConfigError("Could not determine home directory to get global config path.") from exc
    return home / ".modconf"


def find_config_file(candidates: Iterable[Path], label: str = "local") -> Path | None:
    for candidate in candidates:
        logger.debug("checking-config-candidate", scope=label, path=str(candidate))
        if candidate.is_file():
            logger.debug("found-config-candidate", scope=label, path=str(candidate))
            return candidate
    return None


async def run_loader(
    config_path: Path | str,
    *,
    cwd: Path | None = None,
    python: str | None = None,
    env: Mapping[str, str] | None = None,
) -> Any:
    """Run the loader in a fresh interpreter and return the parsed config value."""
    command: Sequence[str] = (python or sys.executable, "-m", LOADER_MODULE, str(config_path))
    logger.debug("spawning-loader", command=list(command), cwd=str(cwd) if cwd else None)

    child_env = dict(os.environ if env is None else env)
    # Source checkouts are not installed; make the package root importable.
    python_path = [str(_PACKAGE_ROOT)]
    if child_env.get("PYTHONPATH"):
        python_path.append(child_env["PYTHONPATH"])
    child_env["PYTHONPATH"] = os.pathsep.join(python_path)

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd) if cwd else None,
            env=child_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise SubprocessLoadError(f"Failed to spawn loader subprocess: {exc}") from exc

    stdout_bytes, stderr_bytes = await process.communicate()
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")

    if process.returncode != 0:
        raise SubprocessLoadError(
            f"Loader subprocess failed to load config from {config_path}:\n{stderr.strip()}",
            stderr=stderr,
            returncode=process.returncode,
        )
    if not stdout.strip():
        raise SubprocessLoadError(
            f"Loader subprocess returned empty output for config file {config_path}",
            stderr=stderr,
            returncode=process.returncode,
        )
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise SubprocessLoadError(
            f"Failed to parse JSON output from loader subprocess for {config_path}: {exc}",
            stderr=stderr,
            returncode=process.returncode,
        ) from exc


async def load_file_config(
    root_dir: Path,
    config_path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    python: str | None = None,
) -> Any | None:
    """Find and load the config for ``root_dir``; ``None`` when there is none."""
    if config_path is not None:
        full_path = root_dir / config_path
        logger.debug("loading-explicit-config", path=str(full_path))
        if not full_path.is_file():
            raise ConfigError(f"Config file not found at {config_path}")
        return await run_loader(full_path, cwd=root_dir, python=python, env=env)

    local = find_config_file((root_dir / name for name in DEFAULT_CONFIG_NAMES), "local")
    if local is not None:
        return await run_loader(local, cwd=root_dir, python=python, env=env)

    try:
        settings = LoaderSettings.from_env(env, cwd=root_dir)
        global_dir = get_global_directory(settings)
    except ConfigError as exc:
        logger.warning("global-directory-unavailable", error=str(exc))
        global_dir = None
    if global_dir is not None:
        found = find_config_file((global_dir / name for name in DEFAULT_CONFIG_NAMES), "global")
        if found is not None:
            return await run_loader(found, cwd=root_dir, python=python, env=env)

    logger.debug("no-config-found", root_dir=str(root_dir))
    return None


__all__ = [
    "DEFAULT_CONFIG_NAMES",
    "SubprocessLoadError",
    "find_config_file",
    "get_global_directory",
    "load_file_config",
    "run_loader",
]
