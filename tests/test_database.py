"""
Database module tests
"""

import pytest

from learnhub_notify.db import database


class RecordingSession:
    def __init__(self):
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def rollback(self):
        self.calls.append("rollback")

    async def close(self):
        self.calls.append("close")


class TestEngineOptions:

    def test_server_database_gets_sized_pool(self, monkeypatch):
        monkeypatch.setattr(database.settings, "DATABASE_URL", "postgresql+asyncpg://db/learnhub")
        monkeypatch.setattr(database.settings, "DB_POOL_SIZE", 5)
        monkeypatch.setattr(database.settings, "DB_MAX_OVERFLOW", 7)

        options = database._engine_options()

        assert options["pool_size"] == 5
        assert options["max_overflow"] == 7
        assert options["pool_pre_ping"] is True

    def test_sqlite_has_no_pool_size(self):
        options = database._engine_options()

        assert "pool_size" not in options
        assert "max_overflow" not in options


class TestGetDb:

    @pytest.fixture
    def session(self, monkeypatch):
        session = RecordingSession()
        monkeypatch.setattr(database, "AsyncSessionLocal", lambda: session)
        return session

    async def test_closed_after_request(self, session):
        dependency = database.get_db()
        assert await dependency.__anext__() is session

        with pytest.raises(StopAsyncIteration):
            await dependency.__anext__()

        assert session.calls == ["close"]

    async def test_rolled_back_when_request_fails(self, session):
        dependency = database.get_db()
        await dependency.__anext__()

        with pytest.raises(RuntimeError):
            await dependency.athrow(RuntimeError("handler failed"))

        assert session.calls == ["rollback", "close"]
