"""
Rack synchronization state machine.

The transition table below is the only place a rack's status changes.
Any (status, event) pair not in the table is a no-op: change detectors fire
redundantly, so an unexpected event must never raise.

    PLACEHOLDER     --PULL-------------> SYNCED
    ERROR           --PULL-------------> SYNCED   (explicit re-pull recovers)
    SYNCED          --LOCAL_EDIT-------> LOCAL_MODIFIED
    SYNCED          --NO_CHANGES-------> SYNCED
    SYNCED          --REFRESH_DECLINED-> ARENA_MODIFIED
    LOCAL_MODIFIED  --REFRESH_DECLINED-> ARENA_MODIFIED
    SYNCED          --REFRESH_ACCEPTED-> SYNCED
    ARENA_MODIFIED  --REFRESH_ACCEPTED-> SYNCED
    LOCAL_MODIFIED  --REFRESH_ACCEPTED-> SYNCED
    ARENA_MODIFIED  --PUSH-------------> SYNCED
    LOCAL_MODIFIED  --PUSH-------------> SYNCED
    ERROR           --NO_CHANGES-------> SYNCED   (a completed refresh recovers)
    ERROR           --REFRESH_DECLINED-> ARENA_MODIFIED
    ERROR           --REFRESH_ACCEPTED-> SYNCED
    *               --ERROR------------> ERROR

History is written only when the status actually changes, except for
NO_CHANGES, REFRESH_ACCEPTED, PUSH and ERROR. Those record work that was
done (a comparison, a merge, an upload, a failure) and are always written.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from ..history.ledger import HistoryLedger
from ..models import EventType, HistoryEvent, RackStatus, StatusRecord, utcnow
from ..store.base import StatusStore

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[Tuple[RackStatus, EventType], RackStatus] = {
    (RackStatus.PLACEHOLDER, EventType.PULL): RackStatus.SYNCED,
    (RackStatus.ERROR, EventType.PULL): RackStatus.SYNCED,
    (RackStatus.SYNCED, EventType.LOCAL_EDIT): RackStatus.LOCAL_MODIFIED,
    (RackStatus.SYNCED, EventType.NO_CHANGES): RackStatus.SYNCED,
    (RackStatus.SYNCED, EventType.REFRESH_DECLINED): RackStatus.ARENA_MODIFIED,
    (RackStatus.LOCAL_MODIFIED, EventType.REFRESH_DECLINED): RackStatus.ARENA_MODIFIED,
    (RackStatus.SYNCED, EventType.REFRESH_ACCEPTED): RackStatus.SYNCED,
    (RackStatus.ARENA_MODIFIED, EventType.REFRESH_ACCEPTED): RackStatus.SYNCED,
    (RackStatus.LOCAL_MODIFIED, EventType.REFRESH_ACCEPTED): RackStatus.SYNCED,
    (RackStatus.ARENA_MODIFIED, EventType.PUSH): RackStatus.SYNCED,
    (RackStatus.LOCAL_MODIFIED, EventType.PUSH): RackStatus.SYNCED,
    (RackStatus.ERROR, EventType.NO_CHANGES): RackStatus.SYNCED,
    (RackStatus.ERROR, EventType.REFRESH_DECLINED): RackStatus.ARENA_MODIFIED,
    (RackStatus.ERROR, EventType.REFRESH_ACCEPTED): RackStatus.SYNCED,
}
for _status in RackStatus:
    TRANSITIONS[(_status, EventType.ERROR)] = RackStatus.ERROR

# Logged even when the status does not move
ALWAYS_LOGGED = {
    EventType.NO_CHANGES,
    EventType.REFRESH_ACCEPTED,
    EventType.PUSH,
    EventType.ERROR,
}

# Events that mean a remote BOM was just read
REFRESH_EVENTS = {
    EventType.PULL,
    EventType.NO_CHANGES,
    EventType.REFRESH_DECLINED,
    EventType.REFRESH_ACCEPTED,
}


def next_status(current: RackStatus, event: EventType) -> RackStatus:
    """Pure transition function; unlisted pairs keep the current status."""
    return TRANSITIONS.get((current, event), current)


@dataclass
class TransitionOutcome:
    """What a call to ``StatusTracker.transition`` did."""
    status_before: RackStatus
    status_after: RackStatus
    history_event: Optional[HistoryEvent] = None

    @property
    def changed(self) -> bool:
        return self.status_before != self.status_after


class StatusTracker:
    """Owns per-rack status records and applies the transition table."""

    def __init__(
        self,
        store: StatusStore,
        ledger: HistoryLedger,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock

    def get_record(self, rack_id: str) -> Optional[StatusRecord]:
        return self.store.get_status_record(rack_id)

    def get_status(self, rack_id: str) -> RackStatus:
        """Current status; a rack never materialized reads as PLACEHOLDER."""
        record = self.store.get_status_record(rack_id)
        return record.status if record else RackStatus.PLACEHOLDER

    def materialize(self, rack_id: str, remote_ref: Optional[str] = None) -> StatusRecord:
        """
        Create the status record for a new rack worksheet.

        Existing records are returned untouched. New racks always start as
        PLACEHOLDER; a successful pull moves them to SYNCED.
        """
        record = self.store.get_status_record(rack_id)
        if record is not None:
            return record
        record = StatusRecord(rack_id=rack_id, status=RackStatus.PLACEHOLDER, remote_ref=remote_ref)
        self.store.save_status_record(record)
        logger.info(f"Rack {rack_id} materialized as PLACEHOLDER")
        return record

    def forget(self, rack_id: str) -> None:
        """Drop the status record when its worksheet is deleted. History stays."""
        self.store.delete_status_record(rack_id)
        logger.info(f"Rack {rack_id} status record deleted")

    def transition(
        self,
        rack_id: str,
        event: EventType,
        summary: str,
        details: Optional[Dict[str, Any]] = None,
        remote_ref: Optional[str] = None
    ) -> TransitionOutcome:
        """
        Apply ``event`` to a rack and record history where required.

        Args:
            rack_id: Rack item number
            event: Transition trigger
            summary: Ledger summary line
            details: Ledger details
            remote_ref: New remote reference to store. Never cleared here;
                an ERROR keeps whatever reference was already known.

        Returns:
            TransitionOutcome with before/after status and the logged event
        """
        record = self.materialize(rack_id)
        before = record.status
        after = next_status(before, event)

        dirty = after != before
        record.status = after
        if remote_ref and remote_ref != record.remote_ref and event != EventType.ERROR:
            record.remote_ref = remote_ref
            dirty = True
        if event in REFRESH_EVENTS:
            record.last_refreshed = self.clock()
            dirty = True
        if dirty:
            self.store.save_status_record(record)

        outcome = TransitionOutcome(status_before=before, status_after=after)
        if after != before or event in ALWAYS_LOGGED:
            outcome.history_event = self.ledger.record(
                rack_item_number=rack_id,
                event_type=event,
                status_before=before,
                status_after=after,
                summary=summary,
                details=details
            )
        elif (before, event) not in TRANSITIONS:
            logger.debug(f"Ignored {event.name} for rack {rack_id} in status {before.name}")

        return outcome
