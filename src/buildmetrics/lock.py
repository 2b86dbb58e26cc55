"""Per-key mutual exclusion.

Provides a mechanism to serialize work on the same key (a job) while work on
different keys proceeds in parallel.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass
class LockStatus:
    """Status of one key's lock."""

    key: Hashable
    held: bool
    acquisitions: int = 0


class _Entry:
    __slots__ = ("lock", "acquisitions")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.acquisitions = 0


class KeyedLock:
    """A lock per key, created on first use.

    Locks are never discarded, so the number of locks grows with the number
    of distinct keys ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _entry(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            return entry

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        entry = self._entry(key)
        with entry.lock:
            entry.acquisitions += 1
            yield

    def status(self, key: Hashable) -> LockStatus:
        """Check the current lock status for a key."""
        with self._guard:
            entry = self._entries.get(key)
        if entry is None:
            return LockStatus(key=key, held=False)
        return LockStatus(key=key, held=entry.lock.locked(), acquisitions=entry.acquisitions)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
