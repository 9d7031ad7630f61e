"""Append-only history of reconciliation actions."""

from .ledger import HistoryLedger
from .workbook_ledger import WorkbookLedgerStore

__all__ = ["HistoryLedger", "WorkbookLedgerStore"]
