"""
Repository protocol consumed by every core component.

Caches, subscriptions, mutations and services depend on this method surface
rather than on a concrete backend, so the in-memory store and the optional
Redis store are interchangeable.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from .records import Record, SearchCriteria

DataCallback = Callable[[list[Record]], None]
ErrorCallback = Callable[[BaseException], None]
Unsubscribe = Callable[[], None]


class CollectionRepository(Protocol):
    """
    Behavioral contract for one remote collection.

    All data methods are coroutines and suspend the caller until the store
    answers. :meth:`subscribe` never suspends: it registers callbacks and
    returns immediately; deliveries happen later, possibly from another
    thread.

    Failures are raised either as
    :class:`~collection_sync.exceptions.CollectionError` or as platform
    exceptions (``ConnectionError``, ``TimeoutError``, ``PermissionError``)
    which callers normalize.
    """

    collection: str
    """Logical collection name served by this repository."""

    async def get_all(self) -> list[Record]:
        """Return every record of the collection."""

    async def get_by_id(self, record_id: str) -> Record | None:
        """Return one record, or ``None`` when absent."""

    async def create(self, payload: Mapping[str, Any]) -> Record:
        """Create a record and return it with ``id`` and timestamps assigned."""

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Record:
        """Merge ``partial`` into a record and return the stored result."""

    async def delete(self, record_id: str) -> None:
        """Delete one record."""

    async def bulk_delete(self, record_ids: Sequence[str]) -> None:
        """Delete many records in one backend call."""

    async def search(self, criteria: SearchCriteria) -> list[Record]:
        """Return records matching a text query and structured filters."""

    def subscribe(self, on_data: DataCallback, on_error: ErrorCallback) -> Unsubscribe:
        """
        Start receiving full collection snapshots on every change.

        Returns a callable that stops delivery.
        """
