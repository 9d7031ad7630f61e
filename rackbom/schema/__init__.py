"""Rack worksheet layout, tracked fields and header name variations."""

from typing import Dict, List, Optional
import re

# Fields compared by the diff engine, in comparison order.
# Attribute columns configured as tracked are compared after these.
TRACKED_FIELDS = [
    "name",
    "description",
    "category",
    "lifecycle_phase",
    "quantity",
]

# Standard rack BOM columns, in the order a fresh worksheet is laid out
STANDARD_HEADERS = ["item_number"] + TRACKED_FIELDS

# Display text used when a worksheet is written from scratch
DISPLAY_HEADERS = {
    "item_number": "Item Number",
    "name": "Name",
    "description": "Description",
    "category": "Category",
    "lifecycle_phase": "Lifecycle Phase",
    "quantity": "Quantity",
}

# Mapping of common column name variations to standard headers
COLUMN_MAPPINGS = {
    "item_number": [
        "item number", "item_number", "itemnumber", "item no", "item_no",
        "item #", "item#", "part number", "part_number", "part no",
        "pn", "p/n"
    ],
    "name": [
        "name", "item name", "item_name", "part name", "part_name", "title"
    ],
    "description": [
        "description", "item description", "part description", "desc"
    ],
    "category": [
        "category", "category name", "category_name", "item category"
    ],
    "lifecycle_phase": [
        "lifecycle phase", "lifecycle_phase", "lifecycle", "phase",
        "lifecycle status"
    ],
    "quantity": [
        "quantity", "qty", "qty.", "count", "amount"
    ],
}

# Metadata header block at the top of every rack worksheet.
# Column A holds the label, column B the value.
METADATA_ROWS = {
    "rack_item_number": 1,
    "rack_name": 2,
    "remote_ref": 3,
}

METADATA_LABELS = {
    "rack_item_number": "Rack Item Number",
    "rack_name": "Rack Name",
    "remote_ref": "Remote Reference",
}

# First BOM data row; the column header row sits directly above it
DEFAULT_DATA_START_ROW = 6

# Append-only event table layout (workbook and database backends)
HISTORY_COLUMNS = [
    "timestamp",
    "rackId",
    "eventType",
    "statusBefore",
    "statusAfter",
    "summary",
    "details",
]

DEFAULT_HISTORY_SHEET = "History"
DEFAULT_OVERVIEW_SHEET = "Overview"


def _normalize_header(text: str) -> str:
    return re.sub(r'[\s_\-]+', ' ', text.lower().strip())


_VARIATION_TO_STANDARD: Dict[str, str] = {}
for _standard, _variations in COLUMN_MAPPINGS.items():
    for _variation in _variations:
        _VARIATION_TO_STANDARD[_normalize_header(_variation)] = _standard


def match_header(header: Optional[str]) -> Optional[str]:
    """Map a worksheet column header to a standard field name, or None.

    Only exact matches after whitespace/underscore normalization count; a
    header the operator added for their own notes must never be mistaken
    for a tracked column.
    """
    if header is None:
        return None
    text = str(header)
    if not text.strip():
        return None
    return _VARIATION_TO_STANDARD.get(_normalize_header(text))


def attribute_header_key(header: str, tracked_attributes: List[str]) -> Optional[str]:
    """Return the tracked attribute a header names (case-insensitive), if any."""
    normalized = _normalize_header(str(header))
    for attribute in tracked_attributes:
        if _normalize_header(attribute) == normalized:
            return attribute
    return None
