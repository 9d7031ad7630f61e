"""
openpyxl-backed Local BOM Store.

Each rack lives on its own worksheet:

    row 1   Rack Item Number | RACK-001
    row 2   Rack Name        | Compute rack A
    row 3   Remote Reference | <PLM id>
    row N-1 column headers   (Item Number, Name, ..., user columns)
    row N.. BOM data rows    (N = data_start_row)

Columns are located by header text, so operators may reorder them or add
their own columns; those extra columns are never read or written. Writes
set cell values only, leaving cell styles in place.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import openpyxl
from openpyxl import Workbook
from openpyxl.styles import PatternFill

from ..errors import NotFoundError, ValidationError
from ..models import BOMLine, BOMSnapshot, Origin, coerce_quantity
from ..positions import OverviewGrid, OverviewRow
from ..schema import (
    DEFAULT_DATA_START_ROW,
    DEFAULT_OVERVIEW_SHEET,
    DISPLAY_HEADERS,
    METADATA_LABELS,
    METADATA_ROWS,
    STANDARD_HEADERS,
    attribute_header_key,
    match_header,
)
from ..store.base import LocalBOMStore

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


class WorkbookBOMStore(LocalBOMStore):
    """Rack worksheets in an openpyxl workbook."""

    def __init__(
        self,
        workbook: Workbook,
        path: Optional[str] = None,
        data_start_row: int = DEFAULT_DATA_START_ROW,
        tracked_attributes: Optional[List[str]] = None,
        overview_sheet: str = DEFAULT_OVERVIEW_SHEET
    ):
        """
        Args:
            workbook: Open workbook
            path: Where to save after writes (None keeps changes in memory)
            data_start_row: First BOM data row on rack sheets
            tracked_attributes: Attribute columns read into ``BOMLine.attributes``
            overview_sheet: Name of the position overview sheet
        """
        if data_start_row < 2:
            raise ValueError("data_start_row must leave room for a header row")
        self.workbook = workbook
        self.path = path
        self.data_start_row = data_start_row
        self.tracked_attributes = list(tracked_attributes or [])
        self.overview_sheet = overview_sheet

    @classmethod
    def open(cls, path: str, **kwargs) -> "WorkbookBOMStore":
        """Load an existing .xlsx file, keeping formatting."""
        if not Path(path).exists():
            raise FileNotFoundError(f"Workbook not found: {path}")
        return cls(openpyxl.load_workbook(path), path=path, **kwargs)

    def save(self) -> None:
        if self.path:
            self.workbook.save(self.path)

    @property
    def header_row(self) -> int:
        return self.data_start_row - 1

    # -------------------------------------------------------------------------
    # Sheet and column lookup
    # -------------------------------------------------------------------------

    def _find_sheet(self, rack_id: str):
        """Sheet whose metadata item number is ``rack_id``, else one titled ``rack_id``."""
        id_row = METADATA_ROWS["rack_item_number"]
        for ws in self.workbook.worksheets:
            if _text(ws.cell(row=id_row, column=2).value) == rack_id:
                return ws
        if rack_id in self.workbook.sheetnames:
            return self.workbook[rack_id]
        return None

    def _sheet(self, rack_id: str):
        ws = self._find_sheet(rack_id)
        if ws is None:
            raise NotFoundError(f"No worksheet for rack {rack_id}")
        return ws

    def _column_map(self, ws) -> Dict[str, int]:
        """
        Map tracked keys to column numbers from the header row.

        Standard fields use their field name; tracked attributes use
        ``"attr:<key>"``. Unknown headers are skipped.
        """
        columns: Dict[str, int] = {}
        for cell in ws[self.header_row]:
            if cell.value is None:
                continue
            standard = match_header(cell.value)
            if standard and standard not in columns:
                columns[standard] = cell.column
                continue
            attribute = attribute_header_key(cell.value, self.tracked_attributes)
            if attribute and f"attr:{attribute}" not in columns:
                columns[f"attr:{attribute}"] = cell.column
        return columns

    def _ensure_column(self, ws, columns: Dict[str, int], key: str) -> int:
        """Return the column for ``key``, adding a header after the last used column if needed."""
        if key in columns:
            return columns[key]
        col = ws.max_column + 1
        header = key[len("attr:"):] if key.startswith("attr:") else DISPLAY_HEADERS[key]
        ws.cell(row=self.header_row, column=col, value=header)
        columns[key] = col
        logger.info(f"Sheet '{ws.title}': added missing column '{header}'")
        return col

    def _data_rows(self, ws, columns: Dict[str, int]) -> Dict[str, int]:
        """Item number -> row number for every non-blank data row."""
        if "item_number" not in columns:
            raise ValidationError(f"Sheet '{ws.title}' has no Item Number column")
        item_col = columns["item_number"]
        rows: Dict[str, int] = {}
        for row in range(self.data_start_row, ws.max_row + 1):
            item = _text(ws.cell(row=row, column=item_col).value)
            if not item:
                continue
            if item in rows:
                raise ValidationError(f"Duplicate item number {item} on sheet '{ws.title}'")
            rows[item] = row
        return rows

    def _last_data_row(self, ws, columns: Dict[str, int]) -> int:
        rows = self._data_rows(ws, columns)
        return max(rows.values()) if rows else self.header_row

    def _write_line(self, ws, row: int, columns: Dict[str, int], line: BOMLine) -> None:
        for key in STANDARD_HEADERS:
            col = self._ensure_column(ws, columns, key)
            ws.cell(row=row, column=col, value=getattr(line, key))
        for attribute in self.tracked_attributes:
            if attribute in line.attributes:
                col = self._ensure_column(ws, columns, f"attr:{attribute}")
                ws.cell(row=row, column=col, value=line.attributes[attribute])

    # -------------------------------------------------------------------------
    # Rack sheets
    # -------------------------------------------------------------------------

    def rack_ids(self) -> List[str]:
        """Item numbers of every rack sheet (sheets with a metadata header)."""
        id_row = METADATA_ROWS["rack_item_number"]
        ids = []
        for ws in self.workbook.worksheets:
            if _text(ws.cell(row=id_row, column=1).value) == METADATA_LABELS["rack_item_number"]:
                rack_id = _text(ws.cell(row=id_row, column=2).value)
                if rack_id:
                    ids.append(rack_id)
        return ids

    def create_rack_sheet(
        self,
        rack_id: str,
        rack_name: str = "",
        remote_ref: Optional[str] = None
    ) -> None:
        """Lay out an empty rack worksheet (metadata block and headers)."""
        if self._find_sheet(rack_id) is not None:
            raise ValidationError(f"Rack {rack_id} already has a worksheet")
        ws = self.workbook.create_sheet(rack_id[:31])
        values = {"rack_item_number": rack_id, "rack_name": rack_name, "remote_ref": remote_ref}
        for key, row in METADATA_ROWS.items():
            ws.cell(row=row, column=1, value=METADATA_LABELS[key])
            ws.cell(row=row, column=2, value=values[key])
        headers = [DISPLAY_HEADERS[key] for key in STANDARD_HEADERS] + self.tracked_attributes
        for col_idx, header in enumerate(headers, start=1):
            ws.cell(row=self.header_row, column=col_idx, value=header)
        self.save()
        logger.info(f"Created worksheet for rack {rack_id}")

    def delete_rack_sheet(self, rack_id: str) -> None:
        self.workbook.remove(self._sheet(rack_id))
        self.save()

    def read_metadata(self, rack_id: str) -> Dict[str, Any]:
        ws = self._sheet(rack_id)
        return {
            key: _text(ws.cell(row=row, column=2).value) or None
            for key, row in METADATA_ROWS.items()
        }

    def write_remote_reference(self, rack_id: str, remote_ref: Optional[str]) -> None:
        ws = self._sheet(rack_id)
        ws.cell(row=METADATA_ROWS["remote_ref"], column=2, value=remote_ref)
        self.save()

    def read_local_bom(self, rack_id: str) -> BOMSnapshot:
        ws = self._sheet(rack_id)
        columns = self._column_map(ws)
        lines = []
        for position, (item, row) in enumerate(self._data_rows(ws, columns).items(), start=1):
            def value(key):
                col = columns.get(key)
                return ws.cell(row=row, column=col).value if col else None

            attributes = {}
            for attribute in self.tracked_attributes:
                raw = value(f"attr:{attribute}")
                if raw is not None:
                    attributes[attribute] = raw

            try:
                quantity = coerce_quantity(value("quantity"))
            except ValidationError as e:
                raise ValidationError(f"Sheet '{ws.title}' row {row}: {e}")

            lines.append(BOMLine(
                item_number=item,
                name=_text(value("name")),
                description=_text(value("description")),
                category=_text(value("category")),
                lifecycle_phase=_text(value("lifecycle_phase")),
                quantity=quantity,
                attributes=attributes,
                line_number=position
            ))
        return BOMSnapshot(lines=lines, origin=Origin.LOCAL)

    def write_local_rows(self, rack_id: str, lines: List[BOMLine]) -> None:
        ws = self._sheet(rack_id)
        columns = self._column_map(ws)
        existing = self._data_rows(ws, columns) if "item_number" in columns else {}
        if existing:
            first = min(existing.values())
            ws.delete_rows(first, max(existing.values()) - first + 1)
        for offset, line in enumerate(lines):
            self._write_line(ws, self.data_start_row + offset, columns, line)
        self.save()
        logger.info(f"Rack {rack_id}: wrote {len(lines)} BOM rows")

    def update_fields(
        self,
        rack_id: str,
        item_number: str,
        fields: Dict[str, Any],
        attributes: Dict[str, Any]
    ) -> None:
        ws = self._sheet(rack_id)
        columns = self._column_map(ws)
        row = self._data_rows(ws, columns).get(item_number)
        if row is None:
            raise NotFoundError(f"Item {item_number} not found on rack {rack_id}")
        for key, new_value in fields.items():
            col = self._ensure_column(ws, columns, key)
            ws.cell(row=row, column=col, value=new_value)
        for key, new_value in attributes.items():
            col = self._ensure_column(ws, columns, f"attr:{key}")
            ws.cell(row=row, column=col, value=new_value)
        self.save()

    def delete_lines(self, rack_id: str, item_numbers: List[str]) -> None:
        ws = self._sheet(rack_id)
        rows = self._data_rows(ws, self._column_map(ws))
        missing = [item for item in item_numbers if item not in rows]
        if missing:
            raise NotFoundError(f"Items not found on rack {rack_id}: {', '.join(missing)}")
        # Bottom-up so earlier row numbers stay valid
        for row in sorted((rows[item] for item in item_numbers), reverse=True):
            ws.delete_rows(row)
        self.save()

    def append_lines(
        self,
        rack_id: str,
        lines: List[BOMLine],
        fill_colors: Optional[Dict[str, str]] = None
    ) -> None:
        ws = self._sheet(rack_id)
        columns = self._column_map(ws)
        fill_colors = fill_colors or {}
        row = self._last_data_row(ws, columns) + 1
        for line in lines:
            # Shift anything below the data block (totals, notes) down
            if any(cell.value is not None for cell in ws[row]):
                ws.insert_rows(row)
            self._write_line(ws, row, columns, line)
            color = fill_colors.get(line.item_number)
            if color:
                fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
                for col in columns.values():
                    ws.cell(row=row, column=col).fill = fill
            row += 1
        self.save()

    # -------------------------------------------------------------------------
    # Overview grid
    # -------------------------------------------------------------------------

    def read_overview_grid(self, sheet_name: Optional[str] = None) -> OverviewGrid:
        """
        Read the overview sheet: header row 1, parent in column A.

        Raises:
            NotFoundError: If the sheet does not exist
        """
        name = sheet_name or self.overview_sheet
        if name not in self.workbook.sheetnames:
            raise NotFoundError(f"Overview sheet '{name}' not found")
        ws = self.workbook[name]

        rows = list(ws.iter_rows(values_only=True))
        if not rows:
            return OverviewGrid(headers=[])
        headers = [None if h is None else str(h) for h in rows[0][1:]]

        grid = OverviewGrid(headers=headers)
        for values in rows[1:]:
            parent = _text(values[0]) if values else ""
            if not parent:
                continue
            grid.rows.append(OverviewRow(
                parent=parent,
                cells=[None if v is None else str(v) for v in values[1:]]
            ))
        return grid
