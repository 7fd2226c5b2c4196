"""Pytest configuration and fixtures for repo-keeper tests."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from repo_keeper.models import ManagedRepository


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep REPOKEEPER_* settings from the host out of the tests."""
    for name in list(os.environ):
        if name.startswith("REPOKEEPER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repository"
    root.mkdir()
    return root


@pytest.fixture
def managed_repository(repo_root: Path) -> ManagedRepository:
    return ManagedRepository(id="internal", location=repo_root, index_dir=".index")
