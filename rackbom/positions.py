"""
Position aggregation from the overview grid.

The overview sheet lays parent assemblies out as rows and physical
installation positions as columns; each cell names the rack(s) installed
there. This module turns that grid into a ``PositionMap`` (rack item number
-> ordered position labels) and attaches the formatted labels to BOM lines
before a push.

Column order on the sheet IS the physical order, so labels are never sorted
alphabetically, and header text is kept exactly as typed (trimmed only).
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConsistencyError
from .models import BOMLine

logger = logging.getLogger(__name__)

PositionMap = Dict[str, List[str]]

DEFAULT_POSITION_TOKEN = "pos"

# Cells may list several racks: "RACK-001, RACK-002" or one per line
_CELL_SEPARATORS = re.compile(r'[,;\n]+')


@dataclass
class OverviewRow:
    """One parent assembly and the cell values to the right of it."""
    parent: str
    cells: List[Optional[str]] = field(default_factory=list)


@dataclass
class OverviewGrid:
    """
    The overview sheet as plain values.

    ``headers[i]`` labels ``row.cells[i]`` for every row.
    """
    headers: List[Optional[str]]
    rows: List[OverviewRow] = field(default_factory=list)


def position_columns(
    headers: List[Optional[str]],
    token: str = DEFAULT_POSITION_TOKEN
) -> List[Tuple[int, str]]:
    """
    Find position columns by case-insensitive prefix match on ``token``.

    Returns:
        (column index, trimmed header text) pairs in sheet order
    """
    token_lower = token.lower()
    columns = []
    for idx, header in enumerate(headers):
        if header is None:
            continue
        label = str(header).strip()
        if label and label.lower().startswith(token_lower):
            columns.append((idx, label))
    return columns


def split_cell(value: Optional[str]) -> List[str]:
    """Rack item numbers named in one grid cell."""
    if value is None:
        return []
    return [part.strip() for part in _CELL_SEPARATORS.split(str(value)) if part.strip()]


def aggregate_positions(
    grid: OverviewGrid,
    parent: Optional[str] = None,
    token: str = DEFAULT_POSITION_TOKEN
) -> PositionMap:
    """
    Build the PositionMap for one parent row, or for the whole grid.

    A rack placed under the same label more than once is listed once. Labels
    are ordered by the column they come from.

    Args:
        grid: Overview grid values
        parent: Only aggregate this parent's row(s); None means every row
        token: Position column prefix

    Returns:
        Rack item number -> position labels in column order
    """
    columns = position_columns(grid.headers, token)
    found: Dict[str, Dict[str, int]] = {}

    for row in grid.rows:
        if parent is not None and row.parent.strip() != parent.strip():
            continue
        for col_idx, label in columns:
            value = row.cells[col_idx] if col_idx < len(row.cells) else None
            for rack in split_cell(value):
                labels = found.setdefault(rack, {})
                if label not in labels:
                    labels[label] = col_idx

    return {
        rack: [label for label, _ in sorted(labels.items(), key=lambda item: item[1])]
        for rack, labels in found.items()
    }


def positions_by_parent(
    grid: OverviewGrid,
    token: str = DEFAULT_POSITION_TOKEN
) -> Dict[str, PositionMap]:
    """PositionMap per parent assembly, parents in sheet order."""
    result: Dict[str, PositionMap] = {}
    for row in grid.rows:
        parent = row.parent.strip()
        if parent and parent not in result:
            result[parent] = aggregate_positions(grid, parent=parent, token=token)
    return result


def format_positions(labels: Iterable[str]) -> str:
    return ", ".join(labels)


def implied_quantity(position_map: PositionMap, rack_item_number: str) -> int:
    """Number of positions a rack occupies; 0 if it is not placed at all."""
    return len(position_map.get(rack_item_number, []))


def check_consistency(lines: Iterable[BOMLine], position_map: PositionMap) -> None:
    """
    Require BOM quantity == number of positions for every placed line.

    Lines whose item number is not in the map are not checked.

    Raises:
        ConsistencyError: Listing every disagreeing line
    """
    mismatches = []
    for line in lines:
        if line.item_number not in position_map:
            continue
        expected = implied_quantity(position_map, line.item_number)
        if line.quantity != expected:
            mismatches.append(
                f"{line.item_number}: BOM quantity {line.quantity}, positions {expected}"
            )
    if mismatches:
        raise ConsistencyError("Position/quantity mismatch: " + "; ".join(mismatches))


def apply_position_attribute(
    lines: Iterable[BOMLine],
    position_map: PositionMap,
    attribute: str = "Position"
) -> List[BOMLine]:
    """
    Copy ``lines`` with the formatted position labels set on placed lines.

    Consistency is checked first, so nothing is produced for a push that
    would be rejected.

    Raises:
        ConsistencyError: If any placed line's quantity disagrees
    """
    lines = list(lines)
    check_consistency(lines, position_map)

    result = []
    placed = 0
    for line in lines:
        labels = position_map.get(line.item_number)
        if labels:
            attributes = dict(line.attributes)
            attributes[attribute] = format_positions(labels)
            line = replace(line, attributes=attributes)
            placed += 1
        result.append(line)
    logger.debug(f"Position attribute set on {placed} of {len(result)} lines")
    return result
