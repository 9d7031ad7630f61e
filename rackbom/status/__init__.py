"""Rack synchronization status tracking."""

from .tracker import (
    StatusTracker,
    TransitionOutcome,
    TRANSITIONS,
    ALWAYS_LOGGED,
    next_status,
)

__all__ = [
    "StatusTracker",
    "TransitionOutcome",
    "TRANSITIONS",
    "ALWAYS_LOGGED",
    "next_status",
]
