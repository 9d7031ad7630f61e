"""
Core data model for rack BOM reconciliation.

A rack BOM is held twice: once in the operator's workbook (``local``) and once
in the PLM system of record (``remote``). Both sides are loaded into
``BOMSnapshot`` objects so the diff engine never has to care where a line came
from. Identity is the item number alone; row position is never semantic.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional

from .errors import ValidationError


def utcnow() -> datetime:
    """Timezone-aware current time used for every persisted timestamp."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class Origin(Enum):
    """Where a snapshot was read from."""
    LOCAL = "local"
    REMOTE = "remote"


class RackStatus(Enum):
    """
    Synchronization state of one rack worksheet.

    Persisted by name; only the status tracker may change it.
    """
    PLACEHOLDER = auto()     # Worksheet exists, no remote counterpart yet
    SYNCED = auto()          # Local and remote agreed at last check
    LOCAL_MODIFIED = auto()  # Operator edited BOM rows since last sync
    ARENA_MODIFIED = auto()  # Remote differs and the operator declined the update
    ERROR = auto()           # Last reconciliation action failed


class EventType(Enum):
    """
    Reconciliation actions.

    Used both as status-tracker transition triggers and as the ``event_type``
    of history ledger entries.
    """
    PULL = auto()
    LOCAL_EDIT = auto()
    NO_CHANGES = auto()
    REFRESH_DECLINED = auto()
    REFRESH_ACCEPTED = auto()
    PUSH = auto()
    ERROR = auto()


# =============================================================================
# BOM LINES AND SNAPSHOTS
# =============================================================================

SCALAR_TYPES = (str, int, float, bool, type(None))


def coerce_quantity(value: Any) -> int:
    """
    Normalize a raw quantity cell or payload value to a positive integer.

    Missing, blank and zero quantities default to 1. Whole floats ("2.0")
    become ints; anything else non-positive or fractional is rejected.

    Raises:
        ValidationError: If the value cannot represent a positive integer
    """
    if value is None:
        return 1
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 1
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Quantity is not numeric: {value!r}")

    if number == 0:
        return 1
    if number < 0 or number != int(number):
        raise ValidationError(f"Quantity must be a positive integer: {value!r}")
    return int(number)


@dataclass
class BOMLine:
    """
    One child component of a rack assembly.

    ``attributes`` holds extra PLM attributes (scalar values only). Two lines
    are the same component iff their item numbers match.
    """
    item_number: str
    name: str = ""
    description: str = ""
    category: str = ""
    lifecycle_phase: str = ""
    quantity: int = 1
    attributes: Dict[str, Any] = field(default_factory=dict)
    line_number: int = 0

    def validate(self) -> None:
        """
        Check the line's own invariants.

        Raises:
            ValidationError: On empty item number, bad quantity or a
                non-scalar attribute value
        """
        if not isinstance(self.item_number, str) or not self.item_number.strip():
            raise ValidationError(f"BOM line has an empty item number (line {self.line_number})")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValidationError(
                f"Item {self.item_number}: quantity must be a positive integer, got {self.quantity!r}"
            )
        for key, value in self.attributes.items():
            if not isinstance(key, str):
                raise ValidationError(f"Item {self.item_number}: attribute key {key!r} is not text")
            if not isinstance(value, SCALAR_TYPES):
                raise ValidationError(
                    f"Item {self.item_number}: attribute '{key}' has non-scalar value {type(value).__name__}"
                )


def aggregate_duplicate_lines(lines: Iterable[BOMLine]) -> List[BOMLine]:
    """
    Collapse lines that share an item number into one line with summed quantity.

    The first occurrence keeps its position and descriptive fields. Used on
    remote payloads, which may list the same child more than once.
    """
    merged: Dict[str, BOMLine] = {}
    order: List[str] = []
    for line in lines:
        key = line.item_number
        if key in merged:
            merged[key].quantity += line.quantity
        else:
            merged[key] = BOMLine(
                item_number=line.item_number,
                name=line.name,
                description=line.description,
                category=line.category,
                lifecycle_phase=line.lifecycle_phase,
                quantity=line.quantity,
                attributes=dict(line.attributes),
                line_number=line.line_number,
            )
            order.append(key)
    return [merged[key] for key in order]


@dataclass
class BOMSnapshot:
    """
    Ordered BOM lines read from one side at one point in time.

    Construction validates every line and rejects duplicate item numbers;
    callers aggregate duplicates before building a snapshot.
    """
    lines: List[BOMLine]
    origin: Origin
    timestamp: datetime = field(default_factory=utcnow)
    _index: Dict[str, BOMLine] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        for line in self.lines:
            line.validate()
            if line.item_number in self._index:
                raise ValidationError(
                    f"Duplicate item number {line.item_number} in {self.origin.value} snapshot"
                )
            self._index[line.item_number] = line

    def __len__(self) -> int:
        return len(self.lines)

    def item_numbers(self) -> List[str]:
        return [line.item_number for line in self.lines]

    def index(self) -> Dict[str, BOMLine]:
        """Item number -> line lookup, insertion-ordered."""
        return dict(self._index)

    def get(self, item_number: str) -> Optional[BOMLine]:
        return self._index.get(item_number)


# =============================================================================
# STATUS, HISTORY AND REQUEST/RESPONSE VALUES
# =============================================================================

@dataclass
class StatusRecord:
    """Persisted synchronization state of one rack."""
    rack_id: str
    status: RackStatus
    remote_ref: Optional[str] = None
    last_refreshed: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryEvent:
    """
    Immutable ledger entry.

    ``summary`` is a one-line digest; ``details`` carries raw counts and, for
    failures, the diagnostic message.
    """
    timestamp: datetime
    rack_item_number: str
    event_type: EventType
    status_before: Optional[RackStatus]
    status_after: Optional[RackStatus]
    summary: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "rack_item_number": self.rack_item_number,
            "event_type": self.event_type.name,
            "status_before": self.status_before.name if self.status_before else None,
            "status_after": self.status_after.name if self.status_after else None,
            "summary": self.summary,
            "details": dict(self.details),
        }


@dataclass
class EditEvent:
    """A host change notification: which rows of which rack were edited."""
    rack_id: str
    edited_rows: range


@dataclass
class ReconcileResult:
    """Outcome returned by inbound engine operations."""
    success: bool
    message: str
    status: Optional[RackStatus] = None


@dataclass
class PushResult:
    """Outcome of writing a BOM to the PLM."""
    success: bool
    error: Optional[str] = None
