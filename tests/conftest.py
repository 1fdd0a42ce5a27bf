"""
Shared fixtures for tasreplay tests.

- write_tas: writes a TAS file (given as a list of lines) under tmp_path
- cache: a fresh FileCache per test
- global state (mouse offset, structlog and root logger configuration) is
  restored after every test
"""

import logging
from collections.abc import Callable
from pathlib import Path

import pytest
import structlog

from tasreplay.config import CONFIG
from tasreplay.file_cache import FileCache


def pytest_configure(config):
    config.addinivalue_line("markers", "fast: quick unit tests (<10ms)")
    config.addinivalue_line("markers", "medium: tests with threads or real waits")
    config.addinivalue_line("markers", "unit: unit tests")


@pytest.fixture
def write_tas(tmp_path: Path) -> Callable[[str, list[str]], Path]:
    def _write(name: str, lines: list[str]) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def cache() -> FileCache:
    return FileCache()


@pytest.fixture(autouse=True)
def restore_global_state():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    CONFIG.reset()
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)
