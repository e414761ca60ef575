from __future__ import annotations

import io
import os
import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from src.cli.run import main

REPO_ROOT = Path(__file__).resolve().parent.parent

_SETTINGS_ENV = ("MODCONF_LOG_LEVEL", "MODCONF_LOG_FORMAT", "MODCONF_GLOBAL_DIR")


@dataclass
class CliResult:
    returncode: int
    stdout: str
    stderr: str


@pytest.fixture(autouse=True)
def _clean_loader_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A scratch project directory that is also the working directory."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


@pytest.fixture
def write_config(project_dir: Path) -> Callable[..., Path]:
    def write(name: str, source: str, *, directory: Path | None = None) -> Path:
        target = (directory or project_dir) / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
        return target

    return write


@pytest.fixture
def run_cli() -> Callable[..., CliResult]:
    """Run the CLI entry point in-process with captured streams."""

    def run(*argv: str) -> CliResult:
        out = io.StringIO()
        err = io.StringIO()
        code = main(list(argv), stdout=out, stderr=err)
        return CliResult(returncode=code, stdout=out.getvalue(), stderr=err.getvalue())

    return run


@pytest.fixture
def run_loader_process(project_dir: Path) -> Callable[..., CliResult]:
    """Run ``python -m src.cli.run`` in a fresh interpreter."""

    def run(*argv: str, env: dict[str, str] | None = None) -> CliResult:
        child_env = {key: value for key, value in os.environ.items() if key not in _SETTINGS_ENV}
        child_env.update(env or {})
        existing = child_env.get("PYTHONPATH")
        child_env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), existing]))
        completed = subprocess.run(
            [sys.executable, "-m", "src.cli.run", *argv],
            cwd=project_dir,
            env=child_env,
            capture_output=True,
            text=True,
            timeout=60,
        )
        return CliResult(completed.returncode, completed.stdout, completed.stderr)

    return run


@pytest.fixture
def config_env(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    def apply(**env: Any) -> None:
        for key, value in env.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return apply


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterable[None]:
    import structlog

    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
