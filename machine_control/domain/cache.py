"""
Read-through cache of machine records.

Process-local mapping of machine id to the last record observed from the
store. The cache is never authoritative: the coordinator writes to it only
after the store accepted a change. There is no TTL and no eviction.
"""

from __future__ import annotations

from typing import Generic, Hashable, Optional, TypeVar


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ReadThroughCache(Generic[K, V]):
    """
    Unbounded key-value cache.

    Makes no atomicity promise across a ``get`` followed by a ``put``;
    callers serialize writers to the same key themselves.
    """

    def __init__(self) -> None:
        self._entries: dict[K, V] = {}

    def get(self, key: K) -> Optional[V]:
        """Get the cached value for ``key``, or None on a miss."""
        return self._entries.get(key)

    def put(self, key: K, value: V) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        self._entries[key] = value

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
