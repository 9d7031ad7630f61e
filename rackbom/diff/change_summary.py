"""
Change classification and summaries for BOM deltas.

ARCHITECTURE:
- bom_diff.py answers "What changed?"
- this module answers "What kind of change is this?" and produces the
  one-line digest and raw counts stored in the history ledger

Classification is deterministic: ordered rules, first match wins, every event
carries its field-level evidence.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from .bom_diff import Delta, FieldChange, ModifiedLine


class ChangeEventType(Enum):
    """
    Change event types, intentionally few.

    When no specific rule applies the change is an ATTRIBUTE_CHANGED.
    """
    LINE_ADDED = auto()           # Component only on the remote BOM
    LINE_REMOVED = auto()         # Component only on the local BOM
    QUANTITY_CHANGED = auto()
    LIFECYCLE_CHANGED = auto()    # Lifecycle phase moved (e.g. Production -> Obsolete)
    DESCRIPTIVE_CHANGED = auto()  # Name, description or category
    ATTRIBUTE_CHANGED = auto()    # Tracked PLM attribute


class Severity(Enum):
    """Potential impact of a change on the physical rack build."""
    HIGH = auto()    # Component appears or disappears
    MEDIUM = auto()  # Quantity or lifecycle affects ordering
    LOW = auto()     # Text or attribute only


@dataclass
class ChangeEvent:
    """A typed change for one item number, with its evidence."""
    item_number: str
    event_type: ChangeEventType
    severity: Severity
    evidence: List[FieldChange] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "item_number": self.item_number,
            "event_type": self.event_type.name,
            "severity": self.severity.name,
            "evidence": [
                {"field": e.field, "old_value": e.old_value, "new_value": e.new_value}
                for e in self.evidence
            ],
            "summary": self.summary,
        }


@dataclass
class ClassificationResult:
    """All events for one delta, plus the counts the ledger stores."""
    events: List[ChangeEvent]
    added_count: int
    removed_count: int
    modified_count: int

    @property
    def total_changes(self) -> int:
        return self.added_count + self.removed_count + self.modified_count

    def events_by_type(self, event_type: ChangeEventType) -> List[ChangeEvent]:
        """Filter events by type."""
        return [e for e in self.events if e.event_type == event_type]

    def events_by_severity(self, severity: Severity) -> List[ChangeEvent]:
        """Filter events by severity."""
        return [e for e in self.events if e.severity == severity]


# =============================================================================
# CLASSIFICATION RULES
# =============================================================================
# Ordered, explicit rules for modified lines. First match wins.

DESCRIPTIVE_FIELDS = {"name", "description", "category"}


def _classify_quantity(modified: ModifiedLine) -> Optional[ChangeEvent]:
    for change in modified.changed_fields:
        if change.type == "QUANTITY_CHANGED":
            return ChangeEvent(
                item_number=modified.item_number,
                event_type=ChangeEventType.QUANTITY_CHANGED,
                severity=Severity.MEDIUM,
                evidence=modified.changed_fields,
                summary=f"Quantity changed: {change.old_value} -> {change.new_value}"
            )
    return None


def _classify_lifecycle(modified: ModifiedLine) -> Optional[ChangeEvent]:
    for change in modified.changed_fields:
        if change.type == "FIELD_CHANGED" and change.field == "lifecycle_phase":
            return ChangeEvent(
                item_number=modified.item_number,
                event_type=ChangeEventType.LIFECYCLE_CHANGED,
                severity=Severity.MEDIUM,
                evidence=modified.changed_fields,
                summary=f"Lifecycle changed: {change.old_value or '-'} -> {change.new_value or '-'}"
            )
    return None


def _classify_descriptive(modified: ModifiedLine) -> Optional[ChangeEvent]:
    fields = [
        c.field for c in modified.changed_fields
        if c.type == "FIELD_CHANGED" and c.field in DESCRIPTIVE_FIELDS
    ]
    if not fields:
        return None
    return ChangeEvent(
        item_number=modified.item_number,
        event_type=ChangeEventType.DESCRIPTIVE_CHANGED,
        severity=Severity.LOW,
        evidence=modified.changed_fields,
        summary=f"Updated: {', '.join(fields)}"
    )


def _classify_attribute(modified: ModifiedLine) -> Optional[ChangeEvent]:
    if not modified.changed_fields:
        return None
    keys = [c.field for c in modified.changed_fields]
    return ChangeEvent(
        item_number=modified.item_number,
        event_type=ChangeEventType.ATTRIBUTE_CHANGED,
        severity=Severity.LOW,
        evidence=modified.changed_fields,
        summary=f"Attributes changed: {', '.join(keys)}"
    )


# CRITICAL: Order matters - first match wins
CLASSIFICATION_RULES = [
    _classify_quantity,
    _classify_lifecycle,
    _classify_descriptive,
    _classify_attribute,  # Fallback - always matches a non-empty modification
]


def _classify_modified(modified: ModifiedLine) -> Optional[ChangeEvent]:
    for rule in CLASSIFICATION_RULES:
        event = rule(modified)
        if event is not None:
            return event
    return None


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================

def classify_delta(delta: Delta) -> ClassificationResult:
    """
    Classify a Delta into typed ChangeEvents.

    Events are emitted added, then removed, then modified, each group in the
    delta's own (deterministic) order.
    """
    events: List[ChangeEvent] = []

    for line in delta.added:
        events.append(ChangeEvent(
            item_number=line.item_number,
            event_type=ChangeEventType.LINE_ADDED,
            severity=Severity.HIGH,
            summary=f"Added x{line.quantity}"
        ))

    for line in delta.removed:
        events.append(ChangeEvent(
            item_number=line.item_number,
            event_type=ChangeEventType.LINE_REMOVED,
            severity=Severity.HIGH,
            summary="Removed"
        ))

    for modified in delta.modified:
        event = _classify_modified(modified)
        if event:
            events.append(event)

    return ClassificationResult(
        events=events,
        added_count=len(delta.added),
        removed_count=len(delta.removed),
        modified_count=len(delta.modified)
    )


def summarize_delta(delta: Delta, outcome: str = "found"):
    """
    Produce the ledger ``summary`` line and ``details`` counts for a delta.

    Args:
        delta: The diff result
        outcome: Verb describing what happened to the changes
            ("found", "applied", "declined")

    Returns:
        Tuple of (summary, details)
    """
    result = classify_delta(delta)

    by_type: Dict[str, int] = {}
    for event in result.events:
        type_name = event.event_type.name
        by_type[type_name] = by_type.get(type_name, 0) + 1

    total = result.total_changes
    if total == 0:
        summary = "No changes"
    else:
        noun = "change" if total == 1 else "changes"
        summary = f"{total} {noun} {outcome}"

    details = {
        "added": result.added_count,
        "removed": result.removed_count,
        "modified": result.modified_count,
        "unchanged": delta.unchanged_count,
        "total": total,
        "events_by_type": by_type,
        "high_severity_count": len(result.events_by_severity(Severity.HIGH)),
    }
    return summary, details


def describe_delta(delta: Delta) -> List[str]:
    """One line per change, for review prompts."""
    return [f"{e.item_number}: {e.summary}" for e in classify_delta(delta).events]
