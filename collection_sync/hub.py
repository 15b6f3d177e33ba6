"""
Runtime container wiring cache, subscriptions, loader and repositories.

One :class:`CollectionHub` is created per application (or per test, or per
tenant) and passed to whatever needs collection data. It owns exactly one
:class:`~collection_sync.cache.CacheStore`, so nothing is shared between
hubs.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any

from .backends import RepositoryBackend, create_repository
from .cache import CacheStore
from .collection import CollectionLoader, CollectionView
from .config import SyncConfig
from .mutations import MutationCoordinator, MutationErrorCallback, ProgressCallback, SuccessCallback
from .query import CollectionSearch, QueryEngine
from .records import FieldAccessor, Record
from .repository import CollectionRepository
from .service import CollectionService
from .subscriptions import SubscriptionManager

_LOGGER = logging.getLogger(__name__)

RepositoryFactory = Callable[[str], CollectionRepository]


class CollectionHub:
    """
    Entry point for collection synchronization.

    Parameters
    ----------
    config:
        Runtime configuration. Defaults to :class:`SyncConfig` defaults.
    repository_factory:
        Builds the repository for a collection key on first use. Defaults to
        the backend named by ``config.backend``.
    clock:
        Monotonic clock used by the cache.

    Examples
    --------
    ::

        hub = CollectionHub(SyncConfig(backend="memory"))
        view = hub.view("videos", use_real_time=False)
        await view.start()
        hub.close()
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        repository_factory: RepositoryFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SyncConfig()
        self._repository_factory = repository_factory or self._backend_repository
        self._repositories: dict[str, CollectionRepository] = {}
        self._engines: dict[str, QueryEngine] = {}
        self._lock = threading.RLock()
        self._closed = False
        self.cache = CacheStore(clock=clock)
        self.subscriptions = SubscriptionManager(self.cache, self.repository)
        self.loader = CollectionLoader(self.cache, self.repository)

    def _backend_repository(self, key: str) -> CollectionRepository:
        backend = RepositoryBackend.parse(self.config.backend)
        if backend is RepositoryBackend.REDIS:
            return create_repository(key, backend, config=self.config.redis)
        return create_repository(key, backend)

    # ------------------------------------------------------------------ #
    # Repositories and engines
    # ------------------------------------------------------------------ #

    def register(
        self,
        key: str,
        repository: CollectionRepository | None = None,
        *,
        accessor: FieldAccessor | None = None,
    ) -> None:
        """
        Bind a repository and/or a field accessor to ``key`` explicitly.

        Unbound keys get a repository from the factory and the default
        accessor.
        """
        with self._lock:
            if repository is not None:
                self._repositories[key] = repository
            if accessor is not None:
                self._engines[key] = QueryEngine(accessor)

    def repository(self, key: str) -> CollectionRepository:
        """Return the repository for ``key``, creating it on first use."""
        with self._lock:
            repository = self._repositories.get(key)
            if repository is None:
                repository = self._repository_factory(key)
                self._repositories[key] = repository
                _LOGGER.debug("Created repository for %r", key)
            return repository

    def engine(self, key: str) -> QueryEngine:
        """Return the query engine bound to ``key``."""
        with self._lock:
            engine = self._engines.get(key)
            if engine is None:
                engine = QueryEngine()
                self._engines[key] = engine
            return engine

    # ------------------------------------------------------------------ #
    # Consumer-facing factories
    # ------------------------------------------------------------------ #

    def view(
        self,
        key: str,
        *,
        use_real_time: bool = True,
        ttl_seconds: float | None = None,
        fetch_on_start: bool = True,
        on_change: Callable[[CollectionView], None] | None = None,
    ) -> CollectionView:
        """Return a new, not yet started, :class:`CollectionView`."""
        return CollectionView(
            key,
            loader=self.loader,
            subscriptions=self.subscriptions,
            ttl_seconds=self.config.cache.ttl_seconds if ttl_seconds is None else ttl_seconds,
            use_real_time=use_real_time,
            fetch_on_start=fetch_on_start,
            on_change=on_change,
        )

    async def load(self, key: str, *, force: bool = False) -> list[Record]:
        """Cache-first fetch of ``key`` using the configured TTL."""
        return await self.loader.load(key, self.config.cache.ttl_seconds, force=force)

    def invalidate(self, key: str) -> bool:
        return self.cache.invalidate(key)

    def mutations(
        self,
        key: str,
        *,
        on_success: SuccessCallback | None = None,
        on_error: MutationErrorCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> MutationCoordinator:
        """Return a new :class:`MutationCoordinator` for ``key``."""
        return MutationCoordinator(
            self.repository(key),
            collection=key,
            on_success=on_success,
            on_error=on_error,
            on_progress=on_progress,
            config=self.config.mutations,
        )

    def service(self, key: str) -> CollectionService:
        return CollectionService(self.repository(key), engine=self.engine(key))

    def search_state(self, key: str, search_fields: Sequence[str]) -> CollectionSearch:
        return CollectionSearch(search_fields, engine=self.engine(key))

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def sign_out(self) -> None:
        """Drop every subscription and every cached snapshot."""
        _LOGGER.info("Signing out: closing subscriptions and clearing cache")
        self.subscriptions.cancel_all()
        self.cache.invalidate_all()

    def close(self) -> None:
        """Release subscriptions, cache and backend resources. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            repositories = list(self._repositories.values())
        self.subscriptions.cancel_all()
        self.cache.close()
        for repository in repositories:
            close = getattr(repository, "close", None)
            if callable(close):
                close()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    def stats(self) -> dict[str, Any]:
        """Return cache, subscription and loader counters."""
        with self._lock:
            collections = sorted(self._repositories)
        cache_stats = {"size": 0, "entries": []} if self.cache.closed else self.cache.stats()
        subscription_stats = self.subscriptions.stats()
        loader_stats = self.loader.stats()
        return {
            "backend": str(self.config.backend),
            "collections": collections,
            "cache": cache_stats,
            "subscriptions": subscription_stats,
            "loader": loader_stats,
        }

    def health(self) -> dict[str, Any]:
        return {
            "status": "stopped" if self._closed else "ok",
            "backend": str(self.config.backend),
            "cache_ttl_seconds": self.config.cache.ttl_seconds,
        }

    def metrics_text(self) -> str:
        """Return Prometheus-style metrics payload as text."""
        stats = self.stats()
        lines = [
            f"collection_sync_cache_entries {stats['cache']['size']}",
            f"collection_sync_subscription_channels {stats['subscriptions']['channel_count']}",
            f"collection_sync_inflight_fetches {len(stats['loader']['inflight'])}",
        ]
        for key, count in sorted(stats["loader"]["fetches"].items()):
            lines.append(f'collection_sync_fetches_total{{collection="{key}"}} {count}')
        for key, channel in sorted(stats["subscriptions"]["channels"].items()):
            lines.append(f'collection_sync_consumers{{collection="{key}"}} {channel["consumers"]}')
            lines.append(
                f'collection_sync_upstream_emissions_total{{collection="{key}"}} {channel["emissions"]}'
            )
        return "\n".join(lines) + "\n"
