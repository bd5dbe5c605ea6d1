"""
Keyed asyncio locks.

Hands out one ``asyncio.Lock`` per key so read-modify-write sequences on
the same machine (or the same location) never interleave. Locks are held
weakly and disappear once no task holds or waits on them.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Hashable


class KeyedLock:
    """Registry of asyncio locks keyed by an arbitrary hashable value."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def __call__(self, key: Hashable) -> asyncio.Lock:
        """
        Get the lock for ``key``.

        Usage:
            async with locks(machine_id):
                ...
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: Hashable) -> bool:
        """Check if some task currently holds the lock for ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
