"""Shared fixtures: a throwaway SQLite store, a controllable clock and an API client."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

import pytest

# .env に依存しない決定的な既定値。個別テストは monkeypatch で上書きする。
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "sqlite")
os.environ.setdefault("SENTRY_DSN", "")

from fastapi.testclient import TestClient

from revision_tracker.config import Settings
from revision_tracker.main import create_app
from revision_tracker.metrics import registry
from revision_tracker.store import SQLiteQuestionStore


START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {"revision_db_path": str(tmp_path / "revision.sqlite3")}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def sqlite_store(tmp_path, clock) -> SQLiteQuestionStore:
    return SQLiteQuestionStore(str(tmp_path / "store" / "revision.sqlite3"), clock=clock)


@pytest.fixture
def client(sqlite_store, make_settings):
    registry.reset()
    app = create_app(store=sqlite_store, cfg=make_settings())
    with TestClient(app) as test_client:
        yield test_client
