"""
BOM diff engine for comparing a local rack BOM against the remote one.

This module implements an identity-first diff that:
- Uses item_number as the only identity (never row position)
- Compares a fixed, ordered set of tracked fields per matched item
- Emits only the fields that actually differ
- Orders every result list deterministically

CORE PRINCIPLES:
1. Operators care about components, not rows
2. The diff reports the arithmetic truth; interpretation is the caller's job
3. Unchanged fields must NEVER appear in a modification
4. Same inputs always produce the same output
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..models import BOMLine, BOMSnapshot
from ..schema import TRACKED_FIELDS


@dataclass
class FieldChange:
    """
    A single field-level difference on a matched item.

    ``type`` is ``"FIELD_CHANGED"`` for the standard tracked fields,
    ``"QUANTITY_CHANGED"`` for quantity and ``"ATTRIBUTE_CHANGED"`` for
    configured tracked attributes (``field`` then holds the attribute key).
    """
    type: str
    field: str
    old_value: Any
    new_value: Any

    @property
    def is_attribute(self) -> bool:
        return self.type == "ATTRIBUTE_CHANGED"


@dataclass
class ModifiedLine:
    """An item present on both sides whose tracked fields differ."""
    item_number: str
    changed_fields: List[FieldChange]


@dataclass
class Delta:
    """
    Complete diff result between a local and a remote snapshot.

    Invariant: an item number appears in at most one of the three lists.
    """
    modified: List[ModifiedLine] = field(default_factory=list)
    added: List[BOMLine] = field(default_factory=list)      # remote-only
    removed: List[BOMLine] = field(default_factory=list)    # local-only
    unchanged_count: int = 0

    def is_empty(self) -> bool:
        return not (self.modified or self.added or self.removed)

    @property
    def total_changes(self) -> int:
        return len(self.modified) + len(self.added) + len(self.removed)

    def item_numbers(self) -> List[str]:
        """Every item number touched by this delta."""
        return (
            [m.item_number for m in self.modified]
            + [line.item_number for line in self.added]
            + [line.item_number for line in self.removed]
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "modified": [
                {
                    "item_number": m.item_number,
                    "changed_fields": [
                        {
                            "type": c.type,
                            "field": c.field,
                            "old_value": c.old_value,
                            "new_value": c.new_value,
                        }
                        for c in m.changed_fields
                    ],
                }
                for m in self.modified
            ],
            "added": [line.item_number for line in self.added],
            "removed": [line.item_number for line in self.removed],
            "unchanged_count": self.unchanged_count,
        }


def _canonical_text(value: Any) -> str:
    """Trim for comparison; None and blank compare equal. Case is preserved."""
    if value is None:
        return ""
    return str(value).strip()


def _quantities_differ(a: Any, b: Any) -> bool:
    try:
        return float(a) != float(b)
    except (TypeError, ValueError):
        return _canonical_text(a) != _canonical_text(b)


def diff_line(
    local: BOMLine,
    remote: BOMLine,
    tracked_attributes: Sequence[str] = ()
) -> List[FieldChange]:
    """
    Field-level diff between the local and remote versions of one item.

    Fields are compared in the fixed order of ``TRACKED_FIELDS`` followed by
    ``tracked_attributes`` in the order given. Quantity is compared
    numerically, everything else as trimmed, case-sensitive text.

    Args:
        local: The item as it appears in the workbook
        remote: The item as the PLM reports it
        tracked_attributes: Extra attribute keys to compare

    Returns:
        Only the differing fields, in comparison order
    """
    changes = []

    for name in TRACKED_FIELDS:
        old = getattr(local, name)
        new = getattr(remote, name)
        if name == "quantity":
            if _quantities_differ(old, new):
                changes.append(FieldChange(
                    type="QUANTITY_CHANGED",
                    field=name,
                    old_value=old,
                    new_value=new
                ))
        elif _canonical_text(old) != _canonical_text(new):
            changes.append(FieldChange(
                type="FIELD_CHANGED",
                field=name,
                old_value=old,
                new_value=new
            ))

    for key in tracked_attributes:
        old = local.attributes.get(key)
        new = remote.attributes.get(key)
        if _canonical_text(old) != _canonical_text(new):
            changes.append(FieldChange(
                type="ATTRIBUTE_CHANGED",
                field=key,
                old_value=old,
                new_value=new
            ))

    return changes


def diff_boms(
    local: BOMSnapshot,
    remote: BOMSnapshot,
    tracked_attributes: Optional[Sequence[str]] = None
) -> Delta:
    """
    Compare a local snapshot with a remote snapshot.

    Steps:
    1. Index both snapshots by item number
    2. Remote-only items are ``added``
    3. Local-only items are ``removed``
    4. Items on both sides are compared field by field
    5. ``added`` and ``modified`` follow remote line order, ``removed``
       follows local order

    An empty remote snapshot is NOT special-cased: every local line comes
    back as removed, and the caller decides whether that means "the remote
    has no BOM".

    Args:
        local: Snapshot read from the workbook
        remote: Snapshot fetched from the PLM
        tracked_attributes: Extra attribute keys to compare (configured)

    Returns:
        Delta with modified, added and removed lines
    """
    tracked_attributes = list(tracked_attributes or [])

    # Step 1: identity index (dicts keep insertion order, so iteration is stable)
    local_index = local.index()
    remote_index = remote.index()

    delta = Delta()

    # Steps 2 and 4: walk remote order once
    for remote_line in remote.lines:
        local_line = local_index.get(remote_line.item_number)
        if local_line is None:
            delta.added.append(remote_line)
            continue

        changes = diff_line(local_line, remote_line, tracked_attributes)
        if changes:
            delta.modified.append(ModifiedLine(
                item_number=remote_line.item_number,
                changed_fields=changes
            ))
        else:
            delta.unchanged_count += 1

    # Step 3: local-only, in local order
    for local_line in local.lines:
        if local_line.item_number not in remote_index:
            delta.removed.append(local_line)

    return delta
