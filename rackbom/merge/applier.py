"""
Merge applier: writes an accepted delta back into the rack worksheet.

Policy:
- modified: only the fields named in ``changed_fields`` are overwritten;
  every other cell on the row, and every column the operator added, is
  left alone
- removed: the whole row goes, formatting included
- added: appended after the last data row, filled with the category color
  when a coloring rule exists for the category

Writes happen in that order, one row at a time. The first failing write
stops the merge and raises MergeError with the counts already applied.
Rows written before the failure stay written: there is no rollback.
"""

import logging
from dataclasses import replace
from typing import Dict, Optional

from ..diff.bom_diff import Delta
from ..errors import MergeError
from ..models import BOMSnapshot, Origin
from ..store.base import LocalBOMStore

logger = logging.getLogger(__name__)


def apply_delta(local: BOMSnapshot, delta: Delta) -> BOMSnapshot:
    """
    Compute the snapshot that results from applying ``delta`` to ``local``.

    Pure: nothing is written. Kept lines retain their order, added lines
    follow in delta order, and line numbers are renumbered from 1.
    """
    changes = {m.item_number: m.changed_fields for m in delta.modified}
    removed = {line.item_number for line in delta.removed}

    lines = []
    for line in local.lines:
        if line.item_number in removed:
            continue
        field_changes = changes.get(line.item_number)
        if field_changes:
            attributes = dict(line.attributes)
            updates = {}
            for change in field_changes:
                if change.is_attribute:
                    if change.new_value is None:
                        attributes.pop(change.field, None)
                    else:
                        attributes[change.field] = change.new_value
                else:
                    updates[change.field] = change.new_value
            line = replace(line, attributes=attributes, **updates)
        else:
            line = replace(line, attributes=dict(line.attributes))
        lines.append(line)

    for added in delta.added:
        lines.append(replace(added, attributes=dict(added.attributes)))

    lines = [replace(line, line_number=idx) for idx, line in enumerate(lines, start=1)]
    return BOMSnapshot(lines=lines, origin=Origin.LOCAL)


class MergeApplier:
    """Applies deltas to a LocalBOMStore, row by row."""

    def __init__(self, store: LocalBOMStore, category_colors: Optional[Dict[str, str]] = None):
        self.store = store
        self.category_colors = {
            name.strip().lower(): color for name, color in (category_colors or {}).items()
        }

    def fill_color_for(self, category: str) -> Optional[str]:
        """Coloring rule for a category, or None to keep the default background."""
        return self.category_colors.get((category or "").strip().lower())

    def apply(self, rack_id: str, local: BOMSnapshot, delta: Delta) -> BOMSnapshot:
        """
        Write ``delta`` into the rack's worksheet.

        Args:
            rack_id: Rack worksheet to write
            local: Snapshot the delta was computed against
            delta: Accepted changes

        Returns:
            The resulting local snapshot

        Raises:
            ValidationError: If the resulting snapshot would be invalid
                (checked before the first write)
            MergeError: If a row write fails; ``partial`` holds the counts
                of rows already written
        """
        result = apply_delta(local, delta)
        applied = {"modified": 0, "removed": 0, "added": 0}

        def fail(stage: str, item_number: str, exc: Exception):
            logger.error(
                f"Merge into rack {rack_id} failed at {stage} {item_number}: {exc}",
                exc_info=True
            )
            raise MergeError(
                f"{stage} {item_number} failed: {exc}",
                partial=dict(applied, failed_item=item_number, failed_stage=stage)
            ) from exc

        for modified in delta.modified:
            fields = {}
            attributes = {}
            for change in modified.changed_fields:
                if change.is_attribute:
                    attributes[change.field] = change.new_value
                else:
                    fields[change.field] = change.new_value
            try:
                self.store.update_fields(rack_id, modified.item_number, fields, attributes)
            except Exception as exc:
                fail("update", modified.item_number, exc)
            applied["modified"] += 1

        for line in delta.removed:
            try:
                self.store.delete_lines(rack_id, [line.item_number])
            except Exception as exc:
                fail("delete", line.item_number, exc)
            applied["removed"] += 1

        for line in delta.added:
            color = self.fill_color_for(line.category)
            try:
                self.store.append_lines(
                    rack_id, [line], {line.item_number: color} if color else None
                )
            except Exception as exc:
                fail("append", line.item_number, exc)
            applied["added"] += 1

        logger.info(
            f"Merged into rack {rack_id}: {applied['modified']} updated, "
            f"{applied['removed']} removed, {applied['added']} added"
        )
        return result
