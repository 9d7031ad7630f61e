"""
Reconciliation engine: the inbound API for rack BOM synchronization.

refresh  - read both BOMs, diff, ask for review, merge if accepted
push     - send the local BOM (with position labels) to the PLM
pull     - seed a placeholder rack from its PLM assembly
record_edit / get_status / materialize_rack / forget_rack / history

Every action runs synchronously for one rack at a time. Any failure moves
the rack to ERROR and writes the diagnostic message to the history ledger;
the caller only gets a generic one-line message.
"""

import logging
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from .config import Settings
from .diff.bom_diff import Delta, diff_boms
from .diff.change_summary import describe_delta, summarize_delta
from .errors import MergeError, NotFoundError, ReconciliationError, TransientNetworkError
from .history.ledger import HistoryLedger
from .merge.applier import MergeApplier
from .models import (
    EditEvent,
    EventType,
    HistoryEvent,
    RackStatus,
    ReconcileResult,
    StatusRecord,
    utcnow,
)
from .positions import PositionMap, aggregate_positions, apply_position_attribute
from .status.tracker import StatusTracker
from .store.base import LedgerStore, LocalBOMStore, StatusStore

logger = logging.getLogger(__name__)

Decision = Union[bool, "Future[bool]"]


@dataclass
class ReviewRequest:
    """What the operator is asked to accept or decline."""
    rack_id: str
    delta: Delta
    changes: List[str] = field(default_factory=list)
    remote_empty: bool = False


def await_decision(decision: Decision, timeout: Optional[float]) -> bool:
    """
    Resolve a reviewer's answer.

    A Future is waited on for at most ``timeout`` seconds; running out of
    time counts as a decline and cancels the future.
    """
    if isinstance(decision, Future):
        try:
            return bool(decision.result(timeout=timeout))
        except FutureTimeoutError:
            decision.cancel()
            logger.warning(f"No decision within {timeout}s; treating as declined")
            return False
    return bool(decision)


class ReconciliationEngine:
    """Coordinates stores, the PLM client, the diff engine and the tracker."""

    def __init__(
        self,
        local_store: LocalBOMStore,
        remote_source,
        status_store: StatusStore,
        ledger_store: LedgerStore,
        settings: Optional[Settings] = None,
        reviewer: Optional[Callable[[ReviewRequest], Decision]] = None,
        confirm_fetch: Optional[Callable[[str, str], Decision]] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Args:
            local_store: Rack worksheets
            remote_source: Object with fetch_bom, push_bom and find_item
                (normally a PLMClient)
            status_store: Per-rack status records
            ledger_store: Append-only history table
            settings: Configuration; defaults when omitted
            reviewer: Decides whether a non-empty delta is applied. Without
                one, differences are reported and declined.
            confirm_fetch: Pre-flight check before the (slow) remote fetch
            clock: Time source for status and history timestamps
        """
        self.settings = settings or Settings()
        self.local_store = local_store
        self.remote_source = remote_source
        self.ledger = HistoryLedger(ledger_store, clock=clock)
        self.tracker = StatusTracker(status_store, self.ledger, clock=clock)
        self.applier = MergeApplier(local_store, self.settings.category_colors)
        self.reviewer = reviewer
        self.confirm_fetch = confirm_fetch
        # Racks with an action in progress; a second action is refused
        self._active: Set[str] = set()
        # Racks whose rows the engine itself is writing; edits are not operator edits
        self._writing: Set[str] = set()
        # Operator edits that arrived while a refresh was waiting for review
        self._edited_during: Dict[str, Tuple[int, int]] = {}

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _result(self, rack_id: str, success: bool, message: str) -> ReconcileResult:
        return ReconcileResult(success=success, message=message, status=self.tracker.get_status(rack_id))

    def _busy(self, rack_id: str) -> ReconcileResult:
        logger.warning(f"Rack {rack_id}: reconciliation already in progress")
        return self._result(rack_id, False, "Another reconciliation is running for this rack.")

    def _fail(self, rack_id: str, action: str, exc: Exception) -> ReconcileResult:
        """Move the rack to ERROR, keep the detail in the ledger, return a generic message."""
        logger.error(f"{action} failed for rack {rack_id}: {exc}", exc_info=True)
        details: Dict[str, Any] = {
            "action": action,
            "error_type": type(exc).__name__,
            "message": str(exc),
        }
        if isinstance(exc, MergeError):
            details["partial"] = exc.partial
        self.tracker.transition(rack_id, EventType.ERROR, summary=f"{action} failed", details=details)

        if isinstance(exc, ReconciliationError):
            message = exc.user_message
        else:
            message = ReconciliationError.user_message
        return ReconcileResult(success=False, message=message, status=RackStatus.ERROR)

    def _remote_ref(self, rack_id: str, record: Optional[StatusRecord]) -> str:
        if record and record.remote_ref:
            return record.remote_ref
        remote_ref = self.local_store.read_metadata(rack_id).get("remote_ref")
        if not remote_ref:
            raise NotFoundError(f"Rack {rack_id} has no remote reference")
        return remote_ref

    def _confirmed(self, rack_id: str, remote_ref: str) -> bool:
        if self.confirm_fetch is None:
            return True
        return await_decision(self.confirm_fetch(rack_id, remote_ref), self.settings.review_timeout_seconds)

    def _review(self, request: ReviewRequest) -> bool:
        if self.reviewer is None:
            return False
        return await_decision(self.reviewer(request), self.settings.review_timeout_seconds)

    def _positions_for(self, rack_id: str) -> PositionMap:
        """Positions of racks placed under ``rack_id`` on the overview sheet."""
        try:
            grid = self.local_store.read_overview_grid()
        except NotFoundError:
            return {}
        return aggregate_positions(grid, parent=rack_id, token=self.settings.position_token)

    def _local_edit(self, rack_id: str, first: int, last: int) -> RackStatus:
        outcome = self.tracker.transition(
            rack_id,
            EventType.LOCAL_EDIT,
            summary=f"Local edit to rows {first}-{last}",
            details={"first_row": first, "last_row": last}
        )
        return outcome.status_after

    def _replay_edits(self, rack_id: str) -> None:
        """Re-mark a rack edited while an action that ends SYNCED was running."""
        edited = self._edited_during.pop(rack_id, None)
        if edited:
            logger.info(f"Rack {rack_id} was edited during the action; marking it LOCAL_MODIFIED")
            self._local_edit(rack_id, *edited)

    # -------------------------------------------------------------------------
    # Inbound operations
    # -------------------------------------------------------------------------

    def get_status(self, rack_id: str) -> RackStatus:
        return self.tracker.get_status(rack_id)

    def materialize_rack(self, rack_id: str, remote_id: Optional[str] = None) -> StatusRecord:
        """Create the status record (PLACEHOLDER) for a new rack worksheet."""
        return self.tracker.materialize(rack_id, remote_ref=remote_id)

    def forget_rack(self, rack_id: str) -> None:
        """Drop the status record of a deleted worksheet. History is kept."""
        self.tracker.forget(rack_id)

    def history(
        self,
        rack_id: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[HistoryEvent]:
        return self.ledger.events(rack_item_number=rack_id, event_type=event_type)

    def record_edit(self, event: EditEvent) -> RackStatus:
        """
        Handle a host change notification.

        Only edits touching BOM data rows count. Notifications caused by the
        engine's own row writes (a merge or a pull) are ignored. An operator
        edit made during a refresh review or a push is recorded at once and
        again after the action ends SYNCED, so the rack keeps showing local
        changes the action did not cover.
        """
        rack_id = event.rack_id
        rows = event.edited_rows
        if rack_id in self._writing or len(rows) == 0:
            return self.tracker.get_status(rack_id)
        if max(rows) < self.settings.data_start_row:
            return self.tracker.get_status(rack_id)
        if self.tracker.get_record(rack_id) is None:
            return RackStatus.PLACEHOLDER

        first = max(min(rows), self.settings.data_start_row)
        last = max(rows)
        if rack_id in self._active:
            pending = self._edited_during.get(rack_id)
            if pending:
                first_pending, last_pending = pending
                self._edited_during[rack_id] = (min(first, first_pending), max(last, last_pending))
            else:
                self._edited_during[rack_id] = (first, last)
        return self._local_edit(rack_id, first, last)

    def pull(self, rack_id: str, remote_id: Optional[str] = None) -> ReconcileResult:
        """
        Seed a PLACEHOLDER (or ERROR) rack from its PLM assembly.

        Args:
            rack_id: Rack item number
            remote_id: PLM id chosen by the operator; when omitted the stored
                reference is used, else the rack's item number is looked up
        """
        if rack_id in self._active:
            return self._busy(rack_id)

        status = self.tracker.get_status(rack_id)
        if status not in (RackStatus.PLACEHOLDER, RackStatus.ERROR):
            return self._result(rack_id, False, "Rack is already linked. Use refresh instead.")

        self._active.add(rack_id)
        try:
            record = self.tracker.materialize(rack_id)
            if not remote_id:
                try:
                    remote_id = self._remote_ref(rack_id, record)
                except NotFoundError:
                    remote_id = self.remote_source.find_item(rack_id)

            remote = self.remote_source.fetch_bom(remote_id)
            if not remote.lines:
                raise NotFoundError(f"Remote assembly {remote_id} has no BOM lines")

            self._writing.add(rack_id)
            try:
                self.local_store.write_local_rows(rack_id, remote.lines)
                self.local_store.write_remote_reference(rack_id, remote_id)
            finally:
                self._writing.discard(rack_id)
            count = len(remote.lines)
            self.tracker.transition(
                rack_id,
                EventType.PULL,
                summary=f"Pulled {count} lines",
                details={"lines": count, "remote_ref": remote_id},
                remote_ref=remote_id
            )
            return self._result(rack_id, True, f"Pulled {count} lines")
        except Exception as exc:
            return self._fail(rack_id, "Pull", exc)
        finally:
            self._active.discard(rack_id)
            self._edited_during.pop(rack_id, None)

    def refresh(self, rack_id: str) -> ReconcileResult:
        """
        Compare the rack with the PLM and merge the differences if accepted.

        Returns:
            success=True when the refresh completed, whether changes were
            applied, declined or absent
        """
        if rack_id in self._active:
            return self._busy(rack_id)

        record = self.tracker.get_record(rack_id)
        if record is None or record.status == RackStatus.PLACEHOLDER:
            return self._result(rack_id, False, "Rack has not been pulled yet.")

        self._active.add(rack_id)
        try:
            remote_ref = self._remote_ref(rack_id, record)
            if not self._confirmed(rack_id, remote_ref):
                logger.info(f"Refresh of rack {rack_id} cancelled before fetch")
                return self._result(rack_id, False, "Refresh cancelled.")

            local = self.local_store.read_local_bom(rack_id)
            remote = self.remote_source.fetch_bom(remote_ref)
            delta = diff_boms(local, remote, self.settings.tracked_attributes)

            if delta.is_empty():
                summary, details = summarize_delta(delta)
                self.tracker.transition(rack_id, EventType.NO_CHANGES, summary=summary, details=details)
                return self._result(rack_id, True, "No changes")

            remote_empty = not remote.lines
            if remote_empty:
                logger.warning(f"Remote BOM for rack {rack_id} is empty; all {len(local)} lines would be removed")

            request = ReviewRequest(
                rack_id=rack_id,
                delta=delta,
                changes=describe_delta(delta),
                remote_empty=remote_empty
            )
            if not self._review(request):
                summary, details = summarize_delta(delta, "declined")
                details["remote_empty"] = remote_empty
                self.tracker.transition(rack_id, EventType.REFRESH_DECLINED, summary=summary, details=details)
                return self._result(rack_id, True, summary)

            self._writing.add(rack_id)
            try:
                self.applier.apply(rack_id, local, delta)
            finally:
                self._writing.discard(rack_id)
            summary, details = summarize_delta(delta, "applied")
            details["remote_empty"] = remote_empty
            self.tracker.transition(rack_id, EventType.REFRESH_ACCEPTED, summary=summary, details=details)
            self._replay_edits(rack_id)
            return self._result(rack_id, True, summary)
        except Exception as exc:
            return self._fail(rack_id, "Refresh", exc)
        finally:
            self._active.discard(rack_id)
            self._edited_during.pop(rack_id, None)

    def push(self, rack_id: str, position_map: Optional[PositionMap] = None) -> ReconcileResult:
        """
        Push the local BOM to the PLM.

        Args:
            rack_id: Rack item number
            position_map: Positions to attach; when omitted they are derived
                from the overview sheet row for this rack
        """
        if rack_id in self._active:
            return self._busy(rack_id)

        self._active.add(rack_id)
        try:
            record = self.tracker.get_record(rack_id)
            remote_ref = self._remote_ref(rack_id, record)
            local = self.local_store.read_local_bom(rack_id)

            if position_map is None:
                position_map = self._positions_for(rack_id)
            lines = apply_position_attribute(local.lines, position_map, self.settings.position_attribute)

            rack_name = self.local_store.read_metadata(rack_id).get("rack_name")
            attributes = {"name": rack_name} if rack_name else {}
            result = self.remote_source.push_bom(remote_ref, lines, attributes)
            if not result.success:
                raise TransientNetworkError(f"Push to {remote_ref} rejected: {result.error}")

            placed = sum(1 for line in lines if line.item_number in position_map)
            self.tracker.transition(
                rack_id,
                EventType.PUSH,
                summary=f"Pushed {len(lines)} lines",
                details={"lines": len(lines), "positioned": placed, "remote_ref": remote_ref},
                remote_ref=remote_ref
            )
            self._replay_edits(rack_id)
            return self._result(rack_id, True, f"Pushed {len(lines)} lines")
        except Exception as exc:
            return self._fail(rack_id, "Push", exc)
        finally:
            self._active.discard(rack_id)
            self._edited_during.pop(rack_id, None)
