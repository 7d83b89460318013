"""Shared fixtures for the Taskmaster test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmaster.config import ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep file-location overrides from the caller's shell out of the tests."""
    for var in list(ENV_OVERRIDES) + ["TASKMASTER_DEBUG"]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    (d / ".taskmaster" / "tasks").mkdir(parents=True)
    return d
