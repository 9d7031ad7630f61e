#!/usr/bin/env python3
"""Example: Refresh one rack worksheet against the PLM.

Reads PLM credentials and options from the environment (or a .env file),
diffs the rack against its remote assembly, prints the changes and asks
on the console whether to apply them.
"""

from rackbom import (
    InMemoryStatusStore,
    PLMClient,
    RackStatus,
    ReconciliationEngine,
    Settings,
    WorkbookBOMStore,
    WorkbookLedgerStore,
    configure_logging,
)
from rackbom.models import StatusRecord


def console_review(request):
    """Print the pending changes and ask the operator."""
    print(f"\n{len(request.changes)} change(s) for rack {request.rack_id}:")
    for line in request.changes:
        print(f"  {line}")
    if request.remote_empty:
        print("  WARNING: the remote BOM is empty; every local line would be removed")
    return input("Apply these changes? [y/N] ").strip().lower() == "y"


def refresh_rack(workbook_path: str, rack_id: str):
    """Refresh ``rack_id`` in the workbook at ``workbook_path``.

    Status records are kept in memory for this run; the rack is assumed to
    have been pulled already, so it starts as SYNCED.

    Args:
        workbook_path: Path to the .xlsx workbook
        rack_id: Rack item number
    """
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    local = WorkbookBOMStore.open(
        workbook_path,
        data_start_row=settings.data_start_row,
        tracked_attributes=settings.tracked_attributes,
    )
    ledger = WorkbookLedgerStore(local.workbook, path=workbook_path)
    status = InMemoryStatusStore()
    remote_ref = local.read_metadata(rack_id).get("remote_ref")
    status.save_status_record(StatusRecord(rack_id, RackStatus.SYNCED, remote_ref=remote_ref))

    engine = ReconciliationEngine(
        local_store=local,
        remote_source=PLMClient.from_settings(settings),
        status_store=status,
        ledger_store=ledger,
        settings=settings,
        reviewer=console_review,
    )

    result = engine.refresh(rack_id)
    print(f"\n{'OK' if result.success else 'FAILED'}: {result.message}")
    print(f"Rack status: {result.status.name if result.status else '-'}")
    return result


if __name__ == "__main__":
    import sys

    if len(sys.argv) < 3:
        print("Usage: python refresh_rack.py <workbook.xlsx> <rack_item_number>")
        print("\nExample:")
        print("  python refresh_rack.py racks.xlsx RACK-001")
        sys.exit(1)

    result = refresh_rack(sys.argv[1], sys.argv[2])
    sys.exit(0 if result.success else 1)
