"""
Persistence interfaces for rack status records, the history ledger and the
rack worksheets.

The engine only talks to these interfaces. Implement them with whatever
backs the deployment: in-memory stores for tests, the workbook, or Postgres.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..models import BOMLine, BOMSnapshot, EventType, HistoryEvent, StatusRecord

if TYPE_CHECKING:
    from ..positions import OverviewGrid


class StatusStore:
    """
    Abstract store holding one status record per rack.

    ``save`` is an upsert; ``delete`` is only called when the rack
    worksheet itself is deleted.
    """

    def get_status_record(self, rack_id: str) -> Optional[StatusRecord]:
        """
        Fetch the status record for a rack.

        Returns:
            The record, or None if the rack was never materialized
        """
        raise NotImplementedError

    def save_status_record(self, record: StatusRecord) -> None:
        """Insert or replace the record for ``record.rack_id``."""
        raise NotImplementedError

    def delete_status_record(self, rack_id: str) -> None:
        """Remove the record; missing records are ignored."""
        raise NotImplementedError


class LedgerStore:
    """
    Abstract append-only event table.

    Implementations must never update or delete an appended event.
    """

    def append_event(self, event: HistoryEvent) -> None:
        """Append one event to the end of the table."""
        raise NotImplementedError

    def list_events(
        self,
        rack_item_number: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[HistoryEvent]:
        """
        Read events in append order, optionally filtered.

        Args:
            rack_item_number: Only events for this rack
            event_type: Only events of this type

        Returns:
            Matching events, oldest first
        """
        raise NotImplementedError


class LocalBOMStore:
    """
    Abstract access to the rack worksheets of the operator's workbook.

    Row-level writes (``update_fields``, ``delete_lines``, ``append_lines``)
    must touch only the cells they name so formatting and user-added columns
    elsewhere survive a merge.
    """

    def read_metadata(self, rack_id: str) -> Dict[str, Any]:
        """
        Read the rack's metadata header.

        Returns:
            Dictionary with rack_item_number, rack_name and remote_ref
        """
        raise NotImplementedError

    def write_remote_reference(self, rack_id: str, remote_ref: Optional[str]) -> None:
        raise NotImplementedError

    def read_local_bom(self, rack_id: str) -> BOMSnapshot:
        """Read every data row as a local snapshot, in sheet order."""
        raise NotImplementedError

    def write_local_rows(self, rack_id: str, lines: List[BOMLine]) -> None:
        """Replace all data rows with ``lines`` (used when seeding from a pull)."""
        raise NotImplementedError

    def update_fields(
        self,
        rack_id: str,
        item_number: str,
        fields: Dict[str, Any],
        attributes: Dict[str, Any]
    ) -> None:
        """Overwrite only the given fields/attributes on the item's row."""
        raise NotImplementedError

    def delete_lines(self, rack_id: str, item_numbers: List[str]) -> None:
        """Delete the rows (and their formatting) of the given items."""
        raise NotImplementedError

    def append_lines(
        self,
        rack_id: str,
        lines: List[BOMLine],
        fill_colors: Optional[Dict[str, str]] = None
    ) -> None:
        """Append rows after the last data row, optionally filled per item."""
        raise NotImplementedError

    def read_overview_grid(self, sheet_name: Optional[str] = None) -> "OverviewGrid":
        """
        Read the position overview grid.

        Raises:
            NotFoundError: If the workbook has no overview sheet
        """
        raise NotImplementedError
