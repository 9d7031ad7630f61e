"""BOM diff module for comparing local and remote rack BOMs."""

from .bom_diff import (
    diff_boms,
    diff_line,
    Delta,
    ModifiedLine,
    FieldChange,
)

from .change_summary import (
    # Classification
    classify_delta,
    summarize_delta,
    describe_delta,
    # Enums
    ChangeEventType,
    Severity,
    # Data classes
    ChangeEvent,
    ClassificationResult,
)

__all__ = [
    # Layer 1: field-level diff
    "diff_boms",
    "diff_line",
    "Delta",
    "ModifiedLine",
    "FieldChange",
    # Layer 2: change classification
    "classify_delta",
    "summarize_delta",
    "describe_delta",
    "ChangeEventType",
    "Severity",
    "ChangeEvent",
    "ClassificationResult",
]
