from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

import structlog

from src.core import config_loader
from src.core.log_setup import configure_logging
from src.core.settings import LoaderSettings


logger = structlog.get_logger("modconf.cli")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="modconf-load",
        description="Load a Python config module and print its value as one line of JSON.",
        add_help=False,
    )
    parser.add_argument(
        "config_path",
        nargs="?",
        help="Path to the config module, relative to the current directory.",
    )
    # Anything after the path is ignored.
    args, _ = parser.parse_known_args(argv)
    return args


def _load_settings(stream: TextIO) -> LoaderSettings:
    try:
        return LoaderSettings.from_env()
    except config_loader.ConfigError as exc:
        settings = LoaderSettings()
        configure_logging(settings, stream)
        logger.warning("invalid-loader-settings", error=str(exc))
        return settings


async def _async_main(config_path: Optional[Path | str] = None, *, cwd: Optional[Path] = None) -> str:
    return await config_loader.load_config(config_path, cwd)


def main(
    argv: Sequence[str] | None = None,
    *,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    if stdout is None and hasattr(sys.stdout, "reconfigure"):
        # The JSON line keeps non-ASCII text as is.
        sys.stdout.reconfigure(encoding="utf-8")
    out = stdout or sys.stdout
    err = stderr or sys.stderr
    args = _parse_args(argv)
    configure_logging(_load_settings(err), err)

    try:
        line = asyncio.run(_async_main(args.config_path))
    except config_loader.ConfigError as exc:
        print(exc, file=err)
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - defensive
        print(f"Unexpected error: {exc}", file=err)
        return 1

    print(line, file=out, flush=True)
    return 0


__all__ = ["_async_main", "main"]


if __name__ == "__main__":
    sys.exit(main())
