"""
Cache-first collection loading and per-consumer collection views.

:class:`CollectionLoader` is shared by every consumer: it serves valid cache
entries, otherwise fetches through the repository and writes the result back,
running at most one fetch per key at a time.

:class:`CollectionView` is what one consumer (a page, a widget, an HTTP
handler) holds. It tracks ``data``, ``loading`` and ``error`` and either
follows the live subscription for its key or loads once through the loader.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter
from collections.abc import Callable
from typing import Any

from .cache import CacheStore
from .exceptions import CollectionError, ErrorCode, normalize_error
from .records import Record
from .subscriptions import RepositoryResolver, Subscription, SubscriptionManager

_LOGGER = logging.getLogger(__name__)


class CollectionLoader:
    """
    Cache-first fetcher with per-key in-flight deduplication.

    Parameters
    ----------
    cache:
        Snapshot cache read before fetching and written after.
    resolve_repository:
        Returns the repository serving a collection key.
    """

    def __init__(self, cache: CacheStore, resolve_repository: RepositoryResolver) -> None:
        self._cache = cache
        self._resolve_repository = resolve_repository
        self._inflight: dict[str, asyncio.Task[list[Record]]] = {}
        self._fetch_counts: Counter[str] = Counter()
        self._lock = threading.RLock()

    async def load(self, key: str, ttl_seconds: float, *, force: bool = False) -> list[Record]:
        """
        Return the snapshot for ``key``.

        A valid cache entry is returned without any repository call. With
        ``force`` the entry is invalidated and a new fetch always starts.
        """
        if force:
            self._cache.invalidate(key)
        else:
            cached = self._cache.read(key, ttl_seconds)
            if cached is not None:
                _LOGGER.debug("Cache hit for %r (%d items)", key, len(cached))
                return cached

        with self._lock:
            task = None if force else self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._fetch(key))
                self._inflight[key] = task
                task.add_done_callback(lambda done, key=key: self._forget(key, done))
        items = await asyncio.shield(task)
        return list(items)

    async def _fetch(self, key: str) -> list[Record]:
        repository = self._resolve_repository(key)
        with self._lock:
            self._fetch_counts[key] += 1
        _LOGGER.debug("Fetching collection %r from repository", key)
        items = list(await repository.get_all())
        self._cache.write(key, items)
        _LOGGER.debug("Fetched %d items for %r", len(items), key)
        return items

    def _forget(self, key: str, task: asyncio.Task[list[Record]]) -> None:
        with self._lock:
            if self._inflight.get(key) is task:
                del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.debug("Fetch for %r failed: %s", key, task.exception())

    def fetch_count(self, key: str) -> int:
        """Return how many repository fetches were issued for ``key``."""
        with self._lock:
            return self._fetch_counts[key]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "inflight": sorted(self._inflight),
                "fetches": dict(self._fetch_counts),
            }


class CollectionView:
    """
    One consumer's view of a collection.

    Parameters
    ----------
    key:
        Collection key.
    loader:
        Shared cache-first loader used in one-shot mode.
    subscriptions:
        Shared subscription manager used in real-time mode.
    ttl_seconds:
        Cache TTL applied by one-shot loads.
    use_real_time:
        Follow the live subscription instead of loading once.
    fetch_on_start:
        When false, entering the view as an async context manager does not
        start it; call :meth:`start` explicitly.
    on_change:
        Called with the view after every state change.

    Notes
    -----
    After :meth:`close`, results of fetches still in flight are discarded and
    ``on_change`` is never called again.
    """

    def __init__(
        self,
        key: str,
        *,
        loader: CollectionLoader,
        subscriptions: SubscriptionManager,
        ttl_seconds: float,
        use_real_time: bool = True,
        fetch_on_start: bool = True,
        on_change: Callable[["CollectionView"], None] | None = None,
    ) -> None:
        self.key = key
        self.use_real_time = use_real_time
        self.fetch_on_start = fetch_on_start
        self.data: list[Record] | None = None
        self.loading = False
        self.error: CollectionError | None = None
        self._loader = loader
        self._subscriptions = subscriptions
        self._ttl_seconds = ttl_seconds
        self._on_change = on_change
        self._subscription: Subscription | None = None
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    async def start(self) -> None:
        """Subscribe (real-time mode) or load once (one-shot mode)."""
        if self.use_real_time:
            self._subscribe()
        else:
            await self._load(force=False)

    async def refetch(self) -> None:
        """
        Refresh the view.

        One-shot mode invalidates the cache entry and fetches again; real-time
        mode re-registers with the subscription manager.
        """
        if self.use_real_time:
            self._subscribe()
        else:
            await self._load(force=True)

    def close(self) -> None:
        """Detach from the subscription and stop all further updates."""
        self._alive = False
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    async def __aenter__(self) -> "CollectionView":
        if self.fetch_on_start:
            await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def _subscribe(self) -> None:
        if not self._alive:
            return
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._set_state(loading=True, error=None)
        _LOGGER.debug("Setting up real-time subscription for %r", self.key)
        self._subscription = self._subscriptions.subscribe(self.key, self._on_data, self._on_error)

    async def _load(self, *, force: bool) -> None:
        if not self._alive:
            return
        self._set_state(loading=True, error=None)
        try:
            items = await self._loader.load(self.key, self._ttl_seconds, force=force)
        except Exception as exc:  # noqa: BLE001 - exposed through ``error``
            if not self._alive:
                return
            _LOGGER.warning("Fetch failed for %r: %s", self.key, exc)
            self._set_state(
                loading=False,
                error=normalize_error(exc, ErrorCode.FETCH_FAILED, "Failed to fetch collection data"),
            )
            return
        if not self._alive:
            return
        self.data = items
        self._set_state(loading=False, error=None)

    def _on_data(self, items: list[Record]) -> None:
        if not self._alive:
            return
        self.data = items
        self._set_state(loading=False, error=None)

    def _on_error(self, error: CollectionError) -> None:
        if not self._alive:
            return
        self._set_state(loading=False, error=error)

    def _set_state(self, *, loading: bool, error: CollectionError | None) -> None:
        self.loading = loading
        self.error = error
        if self._on_change is not None and self._alive:
            self._on_change(self)
