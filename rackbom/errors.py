"""
Error taxonomy for rack BOM reconciliation.

Every failure raised during a reconciliation action belongs to one of these
classes. The engine maps each class to a short, generic message for the
caller and keeps the full diagnostic text in the history ledger only.
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for all reconciliation failures."""

    # Generic one-line message shown to the operator
    user_message = "Reconciliation failed. See the rack history for details."


class NotFoundError(ReconciliationError):
    """Remote assembly, attribute or remote reference is missing."""

    user_message = "Remote assembly not found. Check the rack's remote reference."


class ValidationError(ReconciliationError):
    """Snapshot is malformed; rejected before any write."""

    user_message = "BOM data is invalid. Fix the rack sheet and try again."


class TransientNetworkError(ReconciliationError):
    """Fetch or push against the PLM failed. Never retried automatically."""

    user_message = "Could not reach the PLM system. Try again in a moment."


class ConsistencyError(ReconciliationError):
    """Position-derived quantity disagrees with the BOM quantity."""

    user_message = "Rack positions do not match BOM quantities. Push blocked."


class MergeError(ReconciliationError):
    """
    A row write failed part-way through a merge.

    Rows written before the failure are NOT rolled back; ``partial`` carries
    the counts of what was already applied so the ledger can record it.
    """

    user_message = "Applying remote changes failed part-way. Review the rack sheet."

    def __init__(self, message: str, partial: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.partial = partial or {}
