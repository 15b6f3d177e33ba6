"""
Keyed snapshot cache with time-to-live validity.

Entries hold whole-collection snapshots, never individual records: a write
always replaces the entire entry. The store is constructed explicitly and
passed to its consumers, so tests and tenants each get an isolated instance.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from copy import deepcopy
from dataclasses import dataclass
from threading import RLock
from typing import Any

from .exceptions import CacheClosedError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    One cached snapshot.

    Parameters
    ----------
    data:
        Private copies of the records as fetched, stored as a tuple.
    timestamp:
        Clock reading at write time, in seconds.
    """

    data: tuple[Any, ...]
    timestamp: float

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_valid(self, now: float, ttl_seconds: float) -> bool:
        return self.age(now) < ttl_seconds


class CacheStore:
    """
    Process-wide keyed snapshot store.

    Parameters
    ----------
    clock:
        Monotonic clock returning seconds. Tests inject a fake clock.

    Notes
    -----
    Stale entries are not removed by :meth:`read`; the next :meth:`write`
    overwrites them. Concurrent writes for one key are last-write-wins.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = RLock()
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheClosedError("Cache store has been closed.")

    def read(self, key: str, ttl_seconds: float) -> list[Any] | None:
        """
        Return a copy of the snapshot for ``key`` if younger than ``ttl_seconds``.

        Returns ``None`` when the entry is absent or stale.
        """
        with self._lock:
            self._ensure_open()
            entry = self._entries.get(key)
            now = self._clock()
        if entry is None:
            return None
        if not entry.is_valid(now, ttl_seconds):
            _LOGGER.debug("Cache entry %r is stale (age %.3fs)", key, entry.age(now))
            return None
        return deepcopy(list(entry.data))

    def write(self, key: str, data: Sequence[Any]) -> None:
        """Replace the entry for ``key`` with ``data`` stamped with the current time."""
        entry = CacheEntry(data=tuple(deepcopy(list(data))), timestamp=self._clock())
        with self._lock:
            self._ensure_open()
            self._entries[key] = entry

    def invalidate(self, key: str) -> bool:
        """Remove the entry for ``key``. Returns true when an entry existed."""
        with self._lock:
            self._ensure_open()
            return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._ensure_open()
            count = len(self._entries)
            self._entries.clear()
        _LOGGER.debug("Cache cleared (%d entries)", count)

    def stats(self) -> dict[str, Any]:
        """Return entry count and per-key ages without touching any entry."""
        with self._lock:
            now = self._clock()
            entries = [
                {"key": key, "age": entry.age(now)} for key, entry in self._entries.items()
            ]
        return {"size": len(entries), "entries": entries}

    def close(self) -> None:
        """Drop every entry and refuse further use."""
        with self._lock:
            self._entries.clear()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
