"""
Tests for applying accepted deltas to a rack worksheet.

These tests verify that:
1. apply(L, diff(L, R)) matches R on every tracked field
2. Only changed cells are written; user columns survive
3. Added rows get the category fill color
4. A failing row write stops the merge and reports what was applied
"""

import pytest
from openpyxl import Workbook

from rackbom.adapters.workbook_store import WorkbookBOMStore
from rackbom.diff.bom_diff import diff_boms
from rackbom.errors import MergeError
from rackbom.merge.applier import MergeApplier, apply_delta
from rackbom.models import BOMLine, BOMSnapshot, Origin
from rackbom.schema import TRACKED_FIELDS


# =============================================================================
# FIXTURES
# =============================================================================

RACK = "RACK-001"


def make_line(item_number: str, quantity: int = 1, category: str = "Server", **kwargs) -> BOMLine:
    """Helper to create BOMLine objects for testing."""
    return BOMLine(item_number=item_number, quantity=quantity, category=category, **kwargs)


def make_snapshot(lines: list, origin: Origin) -> BOMSnapshot:
    for idx, line in enumerate(lines, start=1):
        line.line_number = idx
    return BOMSnapshot(lines=lines, origin=origin)


@pytest.fixture
def store():
    """Workbook store with one rack holding [X 2, Y 1] and a user Notes column."""
    store = WorkbookBOMStore(Workbook(), tracked_attributes=["Vendor"])
    store.create_rack_sheet(RACK, "Compute rack A", "guid-1")
    store.write_local_rows(RACK, [
        make_line("X", 2, description="Switch", attributes={"Vendor": "Acme"}),
        make_line("Y", 1, description="PDU"),
    ])
    ws = store._sheet(RACK)
    notes_col = ws.max_column + 1
    ws.cell(row=store.header_row, column=notes_col, value="Notes")
    ws.cell(row=store.data_start_row, column=notes_col, value="keep me")
    return store


class FailingStore(WorkbookBOMStore):
    """Store whose append fails for one item number."""

    fail_on = "BAD"

    def append_lines(self, rack_id, lines, fill_colors=None):
        if any(line.item_number == self.fail_on for line in lines):
            raise IOError("disk full")
        super().append_lines(rack_id, lines, fill_colors)


# =============================================================================
# PURE APPLY
# =============================================================================

class TestApplyDelta:
    """apply_delta computes the merged snapshot without writing."""

    def test_apply_matches_remote(self):
        """apply(L, diff(L, R)) equals R on the tracked fields."""
        local = make_snapshot([
            make_line("A", 1, description="old"),
            make_line("B", 2),
            make_line("C", 1, attributes={"Vendor": "X"}),
        ], Origin.LOCAL)
        remote = make_snapshot([
            make_line("C", 1, attributes={"Vendor": "Y"}),
            make_line("A", 3, description="new", lifecycle_phase="Production"),
            make_line("D", 5, category="Cable"),
        ], Origin.REMOTE)

        merged = apply_delta(local, diff_boms(local, remote, ["Vendor"]))

        assert sorted(merged.item_numbers()) == sorted(remote.item_numbers())
        for remote_line in remote.lines:
            merged_line = merged.get(remote_line.item_number)
            for name in TRACKED_FIELDS:
                assert getattr(merged_line, name) == getattr(remote_line, name)
            assert merged_line.attributes.get("Vendor") == remote_line.attributes.get("Vendor")

    def test_renumbers_lines(self):
        local = make_snapshot([make_line("A"), make_line("B")], Origin.LOCAL)
        remote = make_snapshot([make_line("B"), make_line("C")], Origin.REMOTE)

        merged = apply_delta(local, diff_boms(local, remote))

        assert merged.item_numbers() == ["B", "C"]
        assert [line.line_number for line in merged.lines] == [1, 2]

    def test_does_not_mutate_input(self):
        local = make_snapshot([make_line("A", 1)], Origin.LOCAL)
        remote = make_snapshot([make_line("A", 4)], Origin.REMOTE)

        apply_delta(local, diff_boms(local, remote))

        assert local.get("A").quantity == 1


# =============================================================================
# WORKBOOK MERGE
# =============================================================================

class TestMergeApplier:
    """MergeApplier writes into the worksheet."""

    def test_apply_writes_changes(self, store):
        local = store.read_local_bom(RACK)
        remote = make_snapshot([
            make_line("X", 3, description="Switch", attributes={"Vendor": "Acme"}),
            make_line("Z", 1, category="Cable"),
        ], Origin.REMOTE)
        delta = diff_boms(local, remote, ["Vendor"])

        MergeApplier(store).apply(RACK, local, delta)
        after = store.read_local_bom(RACK)

        assert after.item_numbers() == ["X", "Z"]
        assert after.get("X").quantity == 3
        assert after.get("Z").category == "Cable"

    def test_user_columns_preserved(self, store):
        """Cells outside the changed fields are never touched."""
        local = store.read_local_bom(RACK)
        remote = make_snapshot([
            make_line("X", 5, description="Switch", attributes={"Vendor": "Acme"}),
            make_line("Y", 1, description="PDU"),
        ], Origin.REMOTE)

        MergeApplier(store).apply(RACK, local, diff_boms(local, remote, ["Vendor"]))

        ws = store._sheet(RACK)
        notes_col = ws.max_column
        assert ws.cell(row=store.header_row, column=notes_col).value == "Notes"
        assert ws.cell(row=store.data_start_row, column=notes_col).value == "keep me"

    def test_added_rows_colored_by_category(self, store):
        local = store.read_local_bom(RACK)
        remote = make_snapshot([
            make_line("X", 2, description="Switch", attributes={"Vendor": "Acme"}),
            make_line("Y", 1, description="PDU"),
            make_line("Z", 1, category="Cable"),
            make_line("W", 1, category="Unknown"),
        ], Origin.REMOTE)

        applier = MergeApplier(store, {"cable": "FFCC00"})
        applier.apply(RACK, local, diff_boms(local, remote, ["Vendor"]))

        ws = store._sheet(RACK)
        z_row = store.data_start_row + 2
        w_row = store.data_start_row + 3
        assert ws.cell(row=z_row, column=1).value == "Z"
        assert ws.cell(row=z_row, column=1).fill.start_color.rgb.endswith("FFCC00")
        assert ws.cell(row=w_row, column=1).value == "W"
        assert ws.cell(row=w_row, column=1).fill.fill_type is None

    def test_fill_color_lookup_is_case_insensitive(self):
        applier = MergeApplier(None, {"Cable": "FFCC00"})
        assert applier.fill_color_for(" CABLE ") == "FFCC00"
        assert applier.fill_color_for("Server") is None

    def test_partial_failure(self):
        failing = FailingStore(Workbook())
        failing.create_rack_sheet(RACK)
        failing.write_local_rows(RACK, [make_line("X", 1), make_line("Y", 1)])
        local = failing.read_local_bom(RACK)
        remote = make_snapshot([
            make_line("X", 2),
            make_line("OK", 1),
            make_line("BAD", 1),
        ], Origin.REMOTE)

        with pytest.raises(MergeError) as excinfo:
            MergeApplier(failing).apply(RACK, local, diff_boms(local, remote))

        partial = excinfo.value.partial
        assert partial["modified"] == 1
        assert partial["removed"] == 1
        assert partial["added"] == 1
        assert partial["failed_item"] == "BAD"
        assert partial["failed_stage"] == "append"
        # No rollback: rows written before the failure stay written
        assert failing.read_local_bom(RACK).item_numbers() == ["X", "OK"]
