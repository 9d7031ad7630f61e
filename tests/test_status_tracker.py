"""
Tests for the rack status state machine.

These tests verify that:
1. Every (status, event) pair is handled without raising
2. History is written only on real changes, plus the always-logged events
3. ERROR keeps the known remote reference
4. Refresh events update the last-refreshed timestamp
"""

from datetime import datetime, timedelta, timezone

import pytest

from rackbom.history.ledger import HistoryLedger
from rackbom.models import EventType, RackStatus, StatusRecord
from rackbom.status.tracker import (
    ALWAYS_LOGGED,
    TRANSITIONS,
    StatusTracker,
    next_status,
)
from rackbom.store.memory import InMemoryLedgerStore, InMemoryStatusStore


# =============================================================================
# FIXTURES
# =============================================================================

RACK = "RACK-001"


class FakeClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def status_store():
    return InMemoryStatusStore()


@pytest.fixture
def ledger_store():
    return InMemoryLedgerStore()


@pytest.fixture
def tracker(status_store, ledger_store):
    clock = FakeClock()
    return StatusTracker(status_store, HistoryLedger(ledger_store, clock=clock), clock=clock)


def set_status(store, status: RackStatus, remote_ref: str = "guid-1"):
    """Helper to seed a status record."""
    store.save_status_record(StatusRecord(rack_id=RACK, status=status, remote_ref=remote_ref))


# =============================================================================
# TRANSITION TABLE
# =============================================================================

class TestTransitionTable:
    """The pure transition function."""

    @pytest.mark.parametrize("status", list(RackStatus))
    @pytest.mark.parametrize("event", list(EventType))
    def test_total(self, status, event):
        """Every pair yields a status; unlisted pairs keep the current one."""
        result = next_status(status, event)
        if (status, event) in TRANSITIONS:
            assert result == TRANSITIONS[(status, event)]
        else:
            assert result == status

    def test_documented_transitions(self):
        assert next_status(RackStatus.PLACEHOLDER, EventType.PULL) == RackStatus.SYNCED
        assert next_status(RackStatus.SYNCED, EventType.LOCAL_EDIT) == RackStatus.LOCAL_MODIFIED
        assert next_status(RackStatus.SYNCED, EventType.NO_CHANGES) == RackStatus.SYNCED
        assert next_status(RackStatus.SYNCED, EventType.REFRESH_DECLINED) == RackStatus.ARENA_MODIFIED
        assert next_status(RackStatus.LOCAL_MODIFIED, EventType.REFRESH_DECLINED) == RackStatus.ARENA_MODIFIED
        assert next_status(RackStatus.ARENA_MODIFIED, EventType.REFRESH_ACCEPTED) == RackStatus.SYNCED
        assert next_status(RackStatus.LOCAL_MODIFIED, EventType.REFRESH_ACCEPTED) == RackStatus.SYNCED
        assert next_status(RackStatus.ARENA_MODIFIED, EventType.PUSH) == RackStatus.SYNCED
        assert next_status(RackStatus.LOCAL_MODIFIED, EventType.PUSH) == RackStatus.SYNCED

    def test_error_from_anywhere(self):
        for status in RackStatus:
            assert next_status(status, EventType.ERROR) == RackStatus.ERROR

    def test_repull_recovers_from_error(self):
        assert next_status(RackStatus.ERROR, EventType.PULL) == RackStatus.SYNCED

    def test_completed_refresh_recovers_from_error(self):
        assert next_status(RackStatus.ERROR, EventType.NO_CHANGES) == RackStatus.SYNCED
        assert next_status(RackStatus.ERROR, EventType.REFRESH_ACCEPTED) == RackStatus.SYNCED
        assert next_status(RackStatus.ERROR, EventType.REFRESH_DECLINED) == RackStatus.ARENA_MODIFIED

    def test_unlisted_pairs(self):
        assert next_status(RackStatus.PLACEHOLDER, EventType.PUSH) == RackStatus.PLACEHOLDER
        assert next_status(RackStatus.SYNCED, EventType.PULL) == RackStatus.SYNCED
        assert next_status(RackStatus.ERROR, EventType.LOCAL_EDIT) == RackStatus.ERROR


# =============================================================================
# TRACKER
# =============================================================================

class TestStatusTracker:
    """Record persistence and history logging."""

    def test_unknown_rack_is_placeholder(self, tracker):
        assert tracker.get_status("NOPE") == RackStatus.PLACEHOLDER
        assert tracker.get_record("NOPE") is None

    def test_materialize(self, tracker, status_store):
        record = tracker.materialize(RACK, remote_ref="guid-9")

        assert record.status == RackStatus.PLACEHOLDER
        assert status_store.get_status_record(RACK).remote_ref == "guid-9"

    def test_materialize_keeps_existing(self, tracker, status_store):
        set_status(status_store, RackStatus.SYNCED)
        assert tracker.materialize(RACK).status == RackStatus.SYNCED

    def test_forget(self, tracker, status_store, ledger_store):
        set_status(status_store, RackStatus.SYNCED)
        tracker.transition(RACK, EventType.LOCAL_EDIT, "edit")
        tracker.forget(RACK)

        assert tracker.get_record(RACK) is None
        assert len(ledger_store.list_events(RACK)) == 1

    def test_no_changes_logged_and_timestamped(self, tracker, status_store, ledger_store):
        """SYNCED + zero diffs: stays SYNCED, one event, timestamp updated."""
        set_status(status_store, RackStatus.SYNCED)

        outcome = tracker.transition(RACK, EventType.NO_CHANGES, "No changes")

        assert outcome.status_after == RackStatus.SYNCED
        assert outcome.changed is False
        events = ledger_store.list_events(RACK)
        assert len(events) == 1
        assert events[0].event_type == EventType.NO_CHANGES
        assert events[0].summary == "No changes"
        assert status_store.get_status_record(RACK).last_refreshed is not None

    def test_idempotent(self, tracker, status_store, ledger_store):
        """Repeating a transition logs once when only the first changes state."""
        set_status(status_store, RackStatus.SYNCED)

        tracker.transition(RACK, EventType.LOCAL_EDIT, "edit")
        tracker.transition(RACK, EventType.LOCAL_EDIT, "edit")

        assert tracker.get_status(RACK) == RackStatus.LOCAL_MODIFIED
        assert len(ledger_store.list_events(RACK)) == 1

    def test_push_always_logged(self, tracker, status_store, ledger_store):
        set_status(status_store, RackStatus.SYNCED)

        tracker.transition(RACK, EventType.PUSH, "Pushed 3 lines")

        assert tracker.get_status(RACK) == RackStatus.SYNCED
        assert [e.event_type for e in ledger_store.list_events(RACK)] == [EventType.PUSH]

    def test_accepted_merge_on_synced_rack_logged(self, tracker, status_store, ledger_store):
        """A merge writes rows, so it is recorded even though SYNCED stays SYNCED."""
        set_status(status_store, RackStatus.SYNCED)

        outcome = tracker.transition(RACK, EventType.REFRESH_ACCEPTED, "3 changes applied",
                                     details={"total": 3})

        assert outcome.changed is False
        assert outcome.history_event is not None
        events = ledger_store.list_events(RACK)
        assert [e.event_type for e in events] == [EventType.REFRESH_ACCEPTED]
        assert events[0].status_before == RackStatus.SYNCED
        assert events[0].details == {"total": 3}

    def test_repeated_decline_logged_once(self, tracker, status_store, ledger_store):
        set_status(status_store, RackStatus.SYNCED)

        tracker.transition(RACK, EventType.REFRESH_DECLINED, "1 change declined")
        tracker.transition(RACK, EventType.REFRESH_DECLINED, "1 change declined")

        assert tracker.get_status(RACK) == RackStatus.ARENA_MODIFIED
        assert len(ledger_store.list_events(RACK, EventType.REFRESH_DECLINED)) == 1

    def test_error_keeps_remote_ref(self, tracker, status_store, ledger_store):
        set_status(status_store, RackStatus.SYNCED, remote_ref="guid-1")

        tracker.transition(RACK, EventType.ERROR, "Refresh failed",
                           details={"message": "boom"}, remote_ref="guid-other")
        tracker.transition(RACK, EventType.ERROR, "Refresh failed again")

        record = status_store.get_status_record(RACK)
        assert record.status == RackStatus.ERROR
        assert record.remote_ref == "guid-1"
        events = ledger_store.list_events(RACK, EventType.ERROR)
        assert len(events) == 2
        assert events[0].details == {"message": "boom"}

    def test_pull_records_remote_ref(self, tracker, status_store):
        tracker.materialize(RACK)

        outcome = tracker.transition(RACK, EventType.PULL, "Pulled 2 lines", remote_ref="guid-2")

        record = status_store.get_status_record(RACK)
        assert outcome.status_before == RackStatus.PLACEHOLDER
        assert record.status == RackStatus.SYNCED
        assert record.remote_ref == "guid-2"
        assert outcome.history_event.status_after == RackStatus.SYNCED

    def test_ignored_event_writes_nothing(self, tracker, status_store, ledger_store):
        tracker.materialize(RACK)

        outcome = tracker.transition(RACK, EventType.LOCAL_EDIT, "edit")

        assert outcome.history_event is None
        assert tracker.get_status(RACK) == RackStatus.PLACEHOLDER
        assert ledger_store.list_events() == []

    def test_always_logged_set(self):
        assert ALWAYS_LOGGED == {
            EventType.NO_CHANGES,
            EventType.REFRESH_ACCEPTED,
            EventType.PUSH,
            EventType.ERROR,
        }
