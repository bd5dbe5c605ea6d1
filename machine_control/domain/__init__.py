"""
Domain layer - Business rules independent of storage and transport.

Contains:
- Machine status lifecycle
- Read-through record cache
- Keyed locks for per-machine and per-location serialization
"""

from .cache import ReadThroughCache
from .locks import KeyedLock
from .status_lifecycle import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    TRANSITIONS,
    allowed_targets,
    can_transition,
    ensure_transition,
    is_terminal,
)


__all__ = [
    # Cache
    "ReadThroughCache",
    # Locks
    "KeyedLock",
    # Status Lifecycle
    "INITIAL_STATUS",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "allowed_targets",
    "can_transition",
    "ensure_transition",
    "is_terminal",
]
