"""
Unit tests for change classification and ledger summaries.

These tests verify that:
1. Classification is deterministic (same inputs -> same outputs)
2. Rules are applied in order (first match wins)
3. Evidence is preserved on modification events
4. Summary lines and counts match the delta
"""

import pytest

from rackbom.diff.bom_diff import Delta, FieldChange, ModifiedLine
from rackbom.diff.change_summary import (
    ChangeEventType,
    Severity,
    classify_delta,
    describe_delta,
    summarize_delta,
)
from rackbom.models import BOMLine


# =============================================================================
# FIXTURES
# =============================================================================

def make_field_change(change_type: str, field: str, old_value=None, new_value=None) -> FieldChange:
    """Helper to create FieldChange objects for testing."""
    return FieldChange(type=change_type, field=field, old_value=old_value, new_value=new_value)


def make_modified(item_number: str, *changes) -> ModifiedLine:
    """Helper to create ModifiedLine objects for testing."""
    return ModifiedLine(item_number=item_number, changed_fields=list(changes))


@pytest.fixture
def mixed_delta():
    return Delta(
        added=[BOMLine(item_number="NEW-1", quantity=2)],
        removed=[BOMLine(item_number="OLD-1")],
        modified=[
            make_modified("QTY-1", make_field_change("QUANTITY_CHANGED", "quantity", 1, 4)),
            make_modified("DESC-1", make_field_change("FIELD_CHANGED", "description", "a", "b")),
        ],
        unchanged_count=7
    )


# =============================================================================
# CLASSIFICATION TESTS
# =============================================================================

class TestClassification:
    """Rule ordering and event types."""

    def test_added_and_removed_are_high_severity(self, mixed_delta):
        result = classify_delta(mixed_delta)

        added = result.events_by_type(ChangeEventType.LINE_ADDED)
        removed = result.events_by_type(ChangeEventType.LINE_REMOVED)
        assert [e.item_number for e in added] == ["NEW-1"]
        assert [e.item_number for e in removed] == ["OLD-1"]
        assert all(e.severity == Severity.HIGH for e in added + removed)
        assert added[0].summary == "Added x2"

    def test_event_order(self, mixed_delta):
        """Events come out added, removed, then modified."""
        result = classify_delta(mixed_delta)
        assert [e.item_number for e in result.events] == ["NEW-1", "OLD-1", "QTY-1", "DESC-1"]

    def test_quantity_wins_over_descriptive(self):
        """Quantity rule is checked before the descriptive rule."""
        delta = Delta(modified=[make_modified(
            "A",
            make_field_change("FIELD_CHANGED", "name", "x", "y"),
            make_field_change("QUANTITY_CHANGED", "quantity", 1, 2),
        )])
        event = classify_delta(delta).events[0]

        assert event.event_type == ChangeEventType.QUANTITY_CHANGED
        assert event.severity == Severity.MEDIUM
        assert len(event.evidence) == 2

    def test_lifecycle(self):
        delta = Delta(modified=[make_modified(
            "A", make_field_change("FIELD_CHANGED", "lifecycle_phase", "Production", "Obsolete")
        )])
        event = classify_delta(delta).events[0]

        assert event.event_type == ChangeEventType.LIFECYCLE_CHANGED
        assert event.summary == "Lifecycle changed: Production -> Obsolete"

    def test_attribute_fallback(self):
        delta = Delta(modified=[make_modified(
            "A", make_field_change("ATTRIBUTE_CHANGED", "Vendor", "X", "Y")
        )])
        event = classify_delta(delta).events[0]

        assert event.event_type == ChangeEventType.ATTRIBUTE_CHANGED
        assert event.severity == Severity.LOW

    def test_deterministic(self, mixed_delta):
        first = [e.to_dict() for e in classify_delta(mixed_delta).events]
        second = [e.to_dict() for e in classify_delta(mixed_delta).events]
        assert first == second


# =============================================================================
# SUMMARY TESTS
# =============================================================================

class TestSummaries:
    """Ledger summary line and details counts."""

    def test_no_changes(self):
        summary, details = summarize_delta(Delta(unchanged_count=3))

        assert summary == "No changes"
        assert details["total"] == 0
        assert details["unchanged"] == 3

    def test_counts(self, mixed_delta):
        summary, details = summarize_delta(mixed_delta, "applied")

        assert summary == "4 changes applied"
        assert details["added"] == 1
        assert details["removed"] == 1
        assert details["modified"] == 2
        assert details["unchanged"] == 7
        assert details["high_severity_count"] == 2
        assert details["events_by_type"] == {
            "LINE_ADDED": 1,
            "LINE_REMOVED": 1,
            "QUANTITY_CHANGED": 1,
            "DESCRIPTIVE_CHANGED": 1,
        }

    def test_singular(self):
        delta = Delta(added=[BOMLine(item_number="A")])
        summary, _ = summarize_delta(delta, "declined")
        assert summary == "1 change declined"

    def test_describe(self, mixed_delta):
        lines = describe_delta(mixed_delta)

        assert lines[0] == "NEW-1: Added x2"
        assert lines[1] == "OLD-1: Removed"
        assert lines[2] == "QTY-1: Quantity changed: 1 -> 4"
        assert lines[3] == "DESC-1: Updated: description"
