"""In-process stores for tests and dry runs."""

from dataclasses import replace
from typing import Dict, List, Optional

from ..models import EventType, HistoryEvent, StatusRecord
from .base import LedgerStore, StatusStore


class InMemoryStatusStore(StatusStore):
    """Status records kept in a dict; copies in and out so callers can't alias."""

    def __init__(self):
        self._records: Dict[str, StatusRecord] = {}

    def get_status_record(self, rack_id: str) -> Optional[StatusRecord]:
        record = self._records.get(rack_id)
        return replace(record) if record else None

    def save_status_record(self, record: StatusRecord) -> None:
        self._records[record.rack_id] = replace(record)

    def delete_status_record(self, rack_id: str) -> None:
        self._records.pop(rack_id, None)


class InMemoryLedgerStore(LedgerStore):
    """Append-only list of events."""

    def __init__(self):
        self._events: List[HistoryEvent] = []

    def append_event(self, event: HistoryEvent) -> None:
        self._events.append(event)

    def list_events(
        self,
        rack_item_number: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[HistoryEvent]:
        return [
            e for e in self._events
            if (rack_item_number is None or e.rack_item_number == rack_item_number)
            and (event_type is None or e.event_type == event_type)
        ]
