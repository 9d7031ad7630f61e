"""
History ledger: the append-only audit trail of reconciliation actions.

The ledger is independent of the BOM data and of the live status record. It
is the durable answer to "what happened to this rack" even if the status
record is later reset or lost.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models import EventType, HistoryEvent, RackStatus, utcnow
from ..store.base import LedgerStore

logger = logging.getLogger(__name__)


class HistoryLedger:
    """Append and query history events through a ``LedgerStore``."""

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def record(
        self,
        rack_item_number: str,
        event_type: EventType,
        status_before: Optional[RackStatus],
        status_after: Optional[RackStatus],
        summary: str,
        details: Optional[Dict[str, Any]] = None
    ) -> HistoryEvent:
        """
        Build an immutable event, append it and return it.

        Args:
            rack_item_number: Rack the event belongs to
            event_type: Action that produced the event
            status_before: Status before the action
            status_after: Status after the action
            summary: One-line human-readable digest
            details: Raw counts and diagnostics

        Returns:
            The appended HistoryEvent
        """
        event = HistoryEvent(
            timestamp=self.clock(),
            rack_item_number=rack_item_number,
            event_type=event_type,
            status_before=status_before,
            status_after=status_after,
            summary=summary,
            details=dict(details or {})
        )
        self.store.append_event(event)
        logger.info(
            f"History: {rack_item_number} {event_type.name} "
            f"{status_before.name if status_before else '-'} -> "
            f"{status_after.name if status_after else '-'}: {summary}"
        )
        return event

    def events(
        self,
        rack_item_number: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[HistoryEvent]:
        """Events in append order, filtered by rack and/or type."""
        return self.store.list_events(rack_item_number=rack_item_number, event_type=event_type)

    def latest(self, rack_item_number: str) -> Optional[HistoryEvent]:
        events = self.events(rack_item_number=rack_item_number)
        return events[-1] if events else None
