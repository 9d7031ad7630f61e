"""Adapters for the workbook (local side) and the PLM (remote side)."""

from .plm_client import PLMClient
from .workbook_store import WorkbookBOMStore

__all__ = ["PLMClient", "WorkbookBOMStore"]
