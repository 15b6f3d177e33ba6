"""
Thread-safe in-memory repository used as the default backend.

The repository owns the authoritative state for one collection. All writes go
through one lock and every successful mutation pushes a full snapshot to live
listeners, mirroring how a remote document store streams collection changes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from copy import deepcopy
from threading import RLock
from typing import Any

from .exceptions import not_found, validation_error
from .query import QueryEngine
from .records import Record, SearchCriteria, stamp_new_record, stamp_update
from .repository import DataCallback, ErrorCallback, Unsubscribe

_LOGGER = logging.getLogger(__name__)


class InMemoryCollectionRepository:
    """
    In-process implementation of :class:`~collection_sync.repository.CollectionRepository`.

    Notes
    -----
    * Records keep insertion order.
    * Reads return deep copies so caller code cannot mutate stored state.
    * Listener deliveries are scheduled on the running event loop when there
      is one, so ``subscribe`` and mutations never call back re-entrantly.
    * :meth:`bulk_delete` is all-or-nothing and silently skips ids that are
      already gone.
    """

    def __init__(
        self,
        collection: str,
        *,
        records: Iterable[Mapping[str, Any]] | None = None,
        engine: QueryEngine | None = None,
    ) -> None:
        self.collection = collection
        self._records: dict[str, Record] = {}
        self._listeners: dict[str, tuple[DataCallback, ErrorCallback]] = {}
        self._engine = engine or QueryEngine()
        self._lock = RLock()
        for payload in records or ():
            record = stamp_new_record(payload, record_id=payload.get("id"))
            self._records[record["id"]] = record

    # ------------------------------------------------------------------ #
    # Read API
    # ------------------------------------------------------------------ #

    def _snapshot(self) -> list[Record]:
        with self._lock:
            return deepcopy(list(self._records.values()))

    async def get_all(self) -> list[Record]:
        return self._snapshot()

    async def get_by_id(self, record_id: str) -> Record | None:
        with self._lock:
            record = self._records.get(str(record_id))
            return deepcopy(record) if record is not None else None

    async def search(self, criteria: SearchCriteria) -> list[Record]:
        items = self._snapshot()
        result = self._engine.search(items, criteria.query, criteria.fields)
        return list(self._engine.filter(result, criteria.filters))

    # ------------------------------------------------------------------ #
    # Mutation API
    # ------------------------------------------------------------------ #

    async def create(self, payload: Mapping[str, Any]) -> Record:
        if not isinstance(payload, Mapping):
            raise validation_error("payload", "must be a mapping of field values")
        with self._lock:
            record = stamp_new_record(payload)
            self._records[record["id"]] = record
            created = deepcopy(record)
        self._notify()
        return created

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Record:
        if not isinstance(partial, Mapping):
            raise validation_error("partial", "must be a mapping of field values")
        key = str(record_id)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise not_found(self.collection, key)
            merged = stamp_update(current, partial)
            self._records[key] = merged
            updated = deepcopy(merged)
        self._notify()
        return updated

    async def delete(self, record_id: str) -> None:
        key = str(record_id)
        with self._lock:
            if key not in self._records:
                raise not_found(self.collection, key)
            del self._records[key]
        self._notify()

    async def bulk_delete(self, record_ids: Sequence[str]) -> None:
        keys = [str(item) for item in record_ids]
        with self._lock:
            removed = [self._records.pop(key) for key in keys if key in self._records]
        if removed:
            self._notify()

    # ------------------------------------------------------------------ #
    # Live updates
    # ------------------------------------------------------------------ #

    def subscribe(self, on_data: DataCallback, on_error: ErrorCallback) -> Unsubscribe:
        subscription_id = uuid.uuid4().hex
        with self._lock:
            self._listeners[subscription_id] = (on_data, on_error)
        _LOGGER.debug("Listener %s attached to %s", subscription_id, self.collection)
        self._deliver(subscription_id, self._snapshot())

        def unsubscribe() -> None:
            with self._lock:
                removed = self._listeners.pop(subscription_id, None)
            if removed is not None:
                _LOGGER.debug("Listener %s detached from %s", subscription_id, self.collection)

        return unsubscribe

    def emit_error(self, error: BaseException) -> None:
        """Push ``error`` to every live listener, as a dropped upstream stream would."""
        with self._lock:
            targets = list(self._listeners.items())
        for subscription_id, (_, on_error) in targets:
            self._schedule(subscription_id, on_error, error)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _notify(self) -> None:
        with self._lock:
            subscription_ids = list(self._listeners)
        for subscription_id in subscription_ids:
            self._deliver(subscription_id, self._snapshot())

    def _deliver(self, subscription_id: str, snapshot: list[Record]) -> None:
        with self._lock:
            listener = self._listeners.get(subscription_id)
        if listener is None:
            return
        self._schedule(subscription_id, listener[0], snapshot)

    def _schedule(self, subscription_id: str, callback: Callable[[Any], None], payload: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._invoke(subscription_id, callback, payload)
            return
        loop.call_soon(self._invoke, subscription_id, callback, payload)

    def _invoke(self, subscription_id: str, callback: Callable[[Any], None], payload: Any) -> None:
        with self._lock:
            active = subscription_id in self._listeners
        if not active:
            return
        try:
            callback(payload)
        except Exception:  # noqa: BLE001 - listener bugs must not break the store
            _LOGGER.exception("Listener %s on %s raised", subscription_id, self.collection)
