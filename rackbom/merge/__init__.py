"""Applying accepted deltas to the local workbook."""

from .applier import MergeApplier, apply_delta

__all__ = ["MergeApplier", "apply_delta"]
