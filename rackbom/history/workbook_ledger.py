"""
Ledger store kept as a sheet inside the operator's workbook.

One row per event with the columns of ``HISTORY_COLUMNS``. Rows are only
ever appended; ``details`` is stored as JSON text.
"""

import json
from datetime import datetime
from typing import List, Optional

from openpyxl import Workbook

from ..models import EventType, HistoryEvent, RackStatus
from ..schema import DEFAULT_HISTORY_SHEET, HISTORY_COLUMNS
from ..store.base import LedgerStore


class WorkbookLedgerStore(LedgerStore):
    """Append-only event table on a workbook sheet."""

    def __init__(
        self,
        workbook: Workbook,
        sheet_name: str = DEFAULT_HISTORY_SHEET,
        path: Optional[str] = None
    ):
        """
        Args:
            workbook: Open openpyxl workbook shared with the BOM store
            sheet_name: Name of the history sheet (created if missing)
            path: If given, the workbook is saved after every append
        """
        self.workbook = workbook
        self.sheet_name = sheet_name
        self.path = path

    def _sheet(self):
        if self.sheet_name in self.workbook.sheetnames:
            return self.workbook[self.sheet_name]
        ws = self.workbook.create_sheet(self.sheet_name)
        for col_idx, header in enumerate(HISTORY_COLUMNS, start=1):
            ws.cell(row=1, column=col_idx, value=header)
        return ws

    def append_event(self, event: HistoryEvent) -> None:
        ws = self._sheet()
        ws.append([
            event.timestamp.isoformat(),
            event.rack_item_number,
            event.event_type.name,
            event.status_before.name if event.status_before else None,
            event.status_after.name if event.status_after else None,
            event.summary,
            json.dumps(event.details, sort_keys=True, default=str),
        ])
        if self.path:
            self.workbook.save(self.path)

    def list_events(
        self,
        rack_item_number: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[HistoryEvent]:
        if self.sheet_name not in self.workbook.sheetnames:
            return []

        events = []
        for row in self.workbook[self.sheet_name].iter_rows(min_row=2, values_only=True):
            if not row or row[0] is None:
                continue
            timestamp, rack_id, type_name, before, after, summary, details = row[:7]
            if rack_item_number is not None and rack_id != rack_item_number:
                continue
            if event_type is not None and type_name != event_type.name:
                continue
            events.append(HistoryEvent(
                timestamp=datetime.fromisoformat(str(timestamp)),
                rack_item_number=rack_id,
                event_type=EventType[type_name],
                status_before=RackStatus[before] if before else None,
                status_after=RackStatus[after] if after else None,
                summary=summary or "",
                details=json.loads(details) if details else {}
            ))
        return events
