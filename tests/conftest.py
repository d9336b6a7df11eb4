from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import db
from sheetdash.cache import SessionCache
from sheetdash.repository import Repository


@pytest.fixture
def store(tmp_path: Path) -> Path:
    path = tmp_path / "store.db"
    db.set_database_path(path)
    return path


@pytest.fixture
def session() -> SessionCache:
    return SessionCache()


@pytest.fixture
def repository(store: Path, session: SessionCache) -> Repository:
    return Repository(session)
