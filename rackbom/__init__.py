from .engine import ReconciliationEngine, ReviewRequest, await_decision
from .config import Settings, configure_logging
from .models import BOMLine, BOMSnapshot, EditEvent, EventType, RackStatus, ReconcileResult
from .adapters import PLMClient, WorkbookBOMStore
from .history import WorkbookLedgerStore
from .store import InMemoryLedgerStore, InMemoryStatusStore, PostgresStore
from .schema import STANDARD_HEADERS, COLUMN_MAPPINGS

__all__ = [
    "ReconciliationEngine", "ReviewRequest", "await_decision",
    "Settings", "configure_logging",
    "BOMLine", "BOMSnapshot", "EditEvent", "EventType", "RackStatus", "ReconcileResult",
    "PLMClient", "WorkbookBOMStore", "WorkbookLedgerStore",
    "InMemoryLedgerStore", "InMemoryStatusStore", "PostgresStore",
    "STANDARD_HEADERS", "COLUMN_MAPPINGS",
]
