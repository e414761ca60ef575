from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from src.core.engine import (
    EngineResolutionError,
    EngineStrategy,
    ModuleEngine,
    ModuleExports,
    acquire_engine,
    create_engine,
)


def _import(engine: ModuleEngine, path: Path):
    return asyncio.run(engine.import_url(path.as_uri()))


def test_named_exports_skip_private_names(project_dir, write_config):
    path = write_config(
        "named.py",
        """
        namedValue = 42
        _hidden = "secret"
        """,
    )
    engine = create_engine(project_dir, module_cache=False, interop_default=True)

    exports = _import(engine, path)

    assert isinstance(exports, ModuleExports)
    assert dict(exports) == {"namedValue": 42}
    assert exports.source == path.resolve()


def test_dunder_all_limits_exports(project_dir, write_config):
    path = write_config(
        "limited.py",
        """
        __all__ = ["port"]
        port = 8080
        host = "localhost"
        """,
    )
    engine = create_engine(project_dir, module_cache=False)

    assert dict(_import(engine, path)) == {"port": 8080}


def test_dunder_all_with_undefined_name_fails(project_dir, write_config):
    path = write_config("broken_all.py", '__all__ = ["missing"]\n')
    engine = create_engine(project_dir, module_cache=False)

    with pytest.raises(AttributeError, match="missing"):
        _import(engine, path)


def test_interop_default_returns_default_value(project_dir, write_config):
    path = write_config("with_default.py", 'default = {"port": 8080}\nother = 1\n')

    interop = create_engine(project_dir, module_cache=False, interop_default=True)
    raw = create_engine(project_dir, module_cache=False, interop_default=False)

    assert _import(interop, path) == {"port": 8080}
    assert dict(_import(raw, path)) == {"default": {"port": 8080}, "other": 1}


def test_any_suffix_is_read_as_python(project_dir, write_config):
    path = write_config("service.conf", 'default = {"name": "svc"}\n')
    engine = create_engine(project_dir, module_cache=False, interop_default=True)

    assert _import(engine, path) == {"name": "svc"}


def test_disabled_cache_reads_file_fresh(project_dir, write_config):
    path = write_config("fresh.py", "default = {'version': 1}\n")
    engine = create_engine(project_dir, module_cache=False, interop_default=True)

    assert _import(engine, path) == {"version": 1}
    path.write_text("default = {'version': 2}\n", encoding="utf-8")
    assert _import(engine, path) == {"version": 2}


def test_enabled_cache_serves_first_result(project_dir, write_config):
    path = write_config("cached.py", "default = {'version': 1}\n")
    engine = create_engine(project_dir, module_cache=True, interop_default=True)

    first = _import(engine, path)
    path.write_text("default = {'version': 2}\n", encoding="utf-8")

    assert _import(engine, path) is first


def test_sibling_imports_resolve_and_are_not_retained(project_dir, write_config):
    write_config("modconf_sibling_ports.py", "PORT = 9000\n")
    path = write_config(
        "uses_sibling.py",
        """
        from modconf_sibling_ports import PORT

        default = {"port": PORT}
        """,
    )
    path_before = list(sys.path)
    engine = create_engine(project_dir, module_cache=False, interop_default=True)

    assert _import(engine, path) == {"port": 9000}
    assert "modconf_sibling_ports" not in sys.modules
    assert sys.path == path_before
    assert not (project_dir / "__pycache__").exists()


def test_missing_file_raises_file_not_found(project_dir):
    engine = create_engine(project_dir, module_cache=False)

    with pytest.raises(FileNotFoundError, match="Cannot find module"):
        _import(engine, project_dir / "nope.py")


def test_resolve_relative_path_against_base(project_dir):
    engine = create_engine(project_dir)

    assert engine.resolve("configs/app.py") == (project_dir / "configs" / "app.py").resolve()


def test_resolve_rejects_other_schemes(project_dir):
    engine = create_engine(project_dir)

    with pytest.raises(ValueError, match="Unsupported URL scheme"):
        engine.resolve("https://example.com/config.py")


def test_create_engine_accepts_file_base(project_dir, write_config):
    path = write_config("base.py", "x = 1\n")

    engine = create_engine(path.as_uri())

    assert engine.base == project_dir.resolve()


def test_acquire_engine_first_success_wins(tmp_path):
    calls: list[str] = []

    def failing(_: Path):
        calls.append("first")
        raise ImportError("no such module")

    def succeeding(_: Path):
        calls.append("second")
        return create_engine

    def unused(_: Path):  # pragma: no cover - must not run
        calls.append("third")
        return create_engine

    strategies = (
        EngineStrategy("first", failing),
        EngineStrategy("second", succeeding),
        EngineStrategy("third", unused),
    )

    factory = asyncio.run(acquire_engine(tmp_path, strategies))

    assert factory is create_engine
    assert calls == ["first", "second"]


def test_acquire_engine_reports_every_failure(tmp_path):
    def primary(_: Path):
        raise LookupError("entry point missing")

    def fallback(_: Path):
        raise ImportError("package missing")

    strategies = (EngineStrategy("entry-point", primary), EngineStrategy("package-root", fallback))

    with pytest.raises(EngineResolutionError) as excinfo:
        asyncio.run(acquire_engine(tmp_path, strategies))

    assert str(excinfo.value) == "entry point missing / package missing"
    assert [name for name, _ in excinfo.value.failures] == ["entry-point", "package-root"]


def test_default_strategies_yield_working_engine(project_dir, write_config):
    path = write_config("default_strategies.py", "default = [1, 2, 3]\n")

    factory = asyncio.run(acquire_engine(project_dir))
    engine = factory(project_dir, module_cache=False, interop_default=True)

    assert _import(engine, path) == [1, 2, 3]


def test_percent_in_filename_is_not_decoded_twice(project_dir, write_config):
    write_config("cfgA.py", "default = {'which': 'decoded'}\n")
    path = write_config("cfg%41.py", "default = {'which': 'literal'}\n")
    engine = create_engine(project_dir, module_cache=False, interop_default=True)

    assert engine.resolve(path.as_uri()) == path
    assert _import(engine, path) == {"which": "literal"}


def test_create_engine_base_url_with_percent(tmp_path):
    base = tmp_path / "dir%20name"
    base.mkdir()

    assert create_engine(base.as_uri()).base == base.resolve()
