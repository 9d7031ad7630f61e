"""Persistence for rack status records and history events."""

from .base import StatusStore, LedgerStore, LocalBOMStore
from .memory import InMemoryStatusStore, InMemoryLedgerStore
from .postgres_client import PostgresStore

__all__ = [
    "StatusStore",
    "LedgerStore",
    "LocalBOMStore",
    "InMemoryStatusStore",
    "InMemoryLedgerStore",
    "PostgresStore",
]
