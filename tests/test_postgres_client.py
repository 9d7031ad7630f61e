"""
Tests for the Postgres status/ledger store.

The psycopg2 pool is patched; these tests check SQL parameters, commit and
rollback handling and row conversion, not a live database.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from rackbom.models import EventType, HistoryEvent, RackStatus, StatusRecord
from rackbom.store.postgres_client import PostgresStore


WHEN = datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.cursor.return_value = MagicMock()
    return conn


@pytest.fixture
def store(connection):
    with patch("rackbom.store.postgres_client.SimpleConnectionPool") as pool_cls:
        pool_cls.return_value.getconn.return_value = connection
        store = PostgresStore(db_url="postgresql://u:p@localhost:5432/racks")
        yield store


class TestConnection:
    """Configuration and pooling."""

    def test_requires_url(self, monkeypatch):
        monkeypatch.delenv("RACKBOM_DB_URL", raising=False)
        with pytest.raises(ValueError, match="RACKBOM_DB_URL"):
            PostgresStore()

    def test_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("RACKBOM_DB_URL", "postgresql://env/racks")
        assert PostgresStore().db_url == "postgresql://env/racks"

    def test_pool_is_lazy(self):
        with patch("rackbom.store.postgres_client.SimpleConnectionPool") as pool_cls:
            store = PostgresStore(db_url="postgresql://x/y")
            pool_cls.assert_not_called()
            store.ensure_schema()
            pool_cls.assert_called_once_with(1, 4, dsn="postgresql://x/y")

    def test_close(self, store, connection):
        store.ensure_schema()
        pool = store._pool
        store.close()
        pool.closeall.assert_called_once()
        assert store._pool is None


class TestStatusRecords:
    """StatusStore methods."""

    def test_save_commits(self, store, connection):
        store.save_status_record(StatusRecord("RACK-001", RackStatus.SYNCED, "guid-1", WHEN))

        cursor = connection.cursor.return_value
        sql, params = cursor.execute.call_args[0]
        assert "ON CONFLICT (rack_id)" in sql
        assert params == ("RACK-001", "SYNCED", "guid-1", WHEN)
        connection.commit.assert_called_once()
        store._pool.putconn.assert_called_once_with(connection)

    def test_write_failure_rolls_back(self, store, connection):
        connection.cursor.return_value.execute.side_effect = RuntimeError("deadlock")

        with pytest.raises(RuntimeError):
            store.delete_status_record("RACK-001")

        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()
        store._pool.putconn.assert_called_once_with(connection)

    def test_get_record(self, store, connection):
        connection.cursor.return_value.fetchall.return_value = [{
            "rack_id": "RACK-001",
            "status": "ARENA_MODIFIED",
            "remote_ref": "guid-1",
            "last_refreshed": WHEN,
        }]

        record = store.get_status_record("RACK-001")

        assert record.status == RackStatus.ARENA_MODIFIED
        assert record.remote_ref == "guid-1"
        assert record.last_refreshed == WHEN

    def test_get_missing_record(self, store, connection):
        connection.cursor.return_value.fetchall.return_value = []
        assert store.get_status_record("RACK-404") is None


class TestLedger:
    """LedgerStore methods."""

    def test_append_event(self, store, connection):
        store.append_event(HistoryEvent(
            timestamp=WHEN,
            rack_item_number="RACK-001",
            event_type=EventType.REFRESH_ACCEPTED,
            status_before=RackStatus.ARENA_MODIFIED,
            status_after=RackStatus.SYNCED,
            summary="2 changes applied",
            details={"total": 2},
        ))

        sql, params = connection.cursor.return_value.execute.call_args[0]
        assert "INSERT INTO rack_history" in sql
        assert params[:6] == (
            WHEN, "RACK-001", "REFRESH_ACCEPTED", "ARENA_MODIFIED", "SYNCED", "2 changes applied"
        )
        assert params[6].adapted == {"total": 2}
        connection.commit.assert_called_once()

    def test_list_events_filters(self, store, connection):
        cursor = connection.cursor.return_value
        cursor.fetchall.return_value = [{
            "timestamp": WHEN,
            "rack_id": "RACK-001",
            "event_type": "ERROR",
            "status_before": "SYNCED",
            "status_after": "ERROR",
            "summary": "Push failed",
            "details": {"message": "timeout"},
        }]

        events = store.list_events(rack_item_number="RACK-001", event_type=EventType.ERROR)

        sql, params = cursor.execute.call_args[0]
        assert "rack_id = %s AND event_type = %s" in sql
        assert params == ("RACK-001", "ERROR")
        assert events[0].event_type == EventType.ERROR
        assert events[0].details == {"message": "timeout"}

    def test_list_all_events(self, store, connection):
        cursor = connection.cursor.return_value
        cursor.fetchall.return_value = []

        assert store.list_events() == []
        sql, params = cursor.execute.call_args[0]
        assert "WHERE" not in sql
        assert params == ()
