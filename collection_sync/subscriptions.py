"""
Fan-out of upstream live collection streams to many local consumers.

At most one upstream subscription is open per collection key. The first
consumer opens it, later consumers share it, and the last consumer to cancel
tears it down. Every upstream snapshot refreshes the cache entry for the key
before it is handed to consumers.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from .cache import CacheStore
from .exceptions import CacheClosedError, CollectionError, ErrorCode, normalize_error
from .records import Record
from .repository import CollectionRepository, Unsubscribe

_LOGGER = logging.getLogger(__name__)

RepositoryResolver = Callable[[str], CollectionRepository]
SnapshotCallback = Callable[[list[Record]], None]
ConsumerErrorCallback = Callable[[CollectionError], None]


@dataclass(slots=True)
class _Consumer:
    on_data: SnapshotCallback
    on_error: ConsumerErrorCallback | None


@dataclass(slots=True)
class _Channel:
    """Bookkeeping for one collection key's upstream stream."""

    key: str
    consumers: dict[str, _Consumer] = field(default_factory=dict)
    cancel_upstream: Unsubscribe | None = None
    opening: bool = False
    latest: list[Record] | None = None
    emissions: int = 0
    errors: int = 0


class Subscription:
    """
    Handle returned to one consumer.

    :meth:`cancel` detaches only this consumer and is safe to call twice.
    """

    def __init__(self, manager: "SubscriptionManager", channel: _Channel, consumer_id: str) -> None:
        self._manager = manager
        self._channel = channel
        self._consumer_id = consumer_id
        self._active = True

    @property
    def key(self) -> str:
        return self._channel.key

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._manager._release(self._channel, self._consumer_id)

    def __call__(self) -> None:
        self.cancel()


class SubscriptionManager:
    """
    Multiplexes one upstream stream per key into callbacks for many consumers.

    Parameters
    ----------
    cache:
        Cache refreshed with every upstream snapshot.
    resolve_repository:
        Returns the repository serving a collection key.

    Notes
    -----
    Upstream errors are delivered once to every consumer of the key and are
    never retried here; reconnecting is the caller's decision. Consumer
    bookkeeping is lock-protected because backends may deliver from a
    background thread.
    """

    def __init__(self, cache: CacheStore, resolve_repository: RepositoryResolver) -> None:
        self._cache = cache
        self._resolve_repository = resolve_repository
        self._channels: dict[str, _Channel] = {}
        self._lock = threading.RLock()

    def subscribe(
        self,
        key: str,
        on_data: SnapshotCallback,
        on_error: ConsumerErrorCallback | None = None,
    ) -> Subscription:
        """
        Register a consumer for ``key`` and return its :class:`Subscription`.

        If the key already emitted, ``on_data`` receives the latest snapshot
        before this call returns.
        """
        consumer_id = uuid.uuid4().hex
        consumer = _Consumer(on_data=on_data, on_error=on_error)
        with self._lock:
            channel = self._channels.get(key)
            if channel is None:
                channel = _Channel(key=key)
                self._channels[key] = channel
            channel.consumers[consumer_id] = consumer
            open_upstream = channel.cancel_upstream is None and not channel.opening
            if open_upstream:
                channel.opening = True
            latest = deepcopy(channel.latest) if channel.latest is not None else None

        subscription = Subscription(self, channel, consumer_id)
        if latest is not None:
            self._call_data(channel.key, consumer, latest)
        if open_upstream:
            self._open_upstream(channel)
        return subscription

    def _open_upstream(self, channel: _Channel) -> None:
        _LOGGER.debug("Opening upstream subscription for %r", channel.key)
        try:
            repository = self._resolve_repository(channel.key)
            cancel = repository.subscribe(
                lambda items: self._handle_data(channel, items),
                lambda exc: self._handle_error(channel, exc),
            )
        except Exception as exc:  # noqa: BLE001 - surfaced to consumers below
            with self._lock:
                channel.opening = False
            self._handle_error(channel, exc)
            return

        with self._lock:
            channel.opening = False
            keep = bool(channel.consumers) and self._channels.get(channel.key) is channel
            if keep:
                channel.cancel_upstream = cancel
        if not keep:
            _LOGGER.debug("All consumers of %r left while opening; closing upstream", channel.key)
            cancel()

    def _handle_data(self, channel: _Channel, items: list[Record]) -> None:
        snapshot = deepcopy(list(items))
        with self._lock:
            if self._channels.get(channel.key) is not channel:
                return
            channel.latest = snapshot
            channel.emissions += 1
            consumers = list(channel.consumers.values())
        try:
            self._cache.write(channel.key, snapshot)
        except CacheClosedError:
            _LOGGER.debug("Cache closed; dropping snapshot for %r", channel.key)
            return
        _LOGGER.debug(
            "Upstream update for %r: %d items to %d consumers",
            channel.key,
            len(snapshot),
            len(consumers),
        )
        for consumer in consumers:
            self._call_data(channel.key, consumer, deepcopy(snapshot))

    def _handle_error(self, channel: _Channel, exc: BaseException) -> None:
        error = normalize_error(
            exc, ErrorCode.OPERATION_FAILED, "Failed to subscribe to collection updates"
        )
        with self._lock:
            if self._channels.get(channel.key) is not channel:
                return
            channel.errors += 1
            consumers = list(channel.consumers.values())
        _LOGGER.warning("Upstream error for %r: %s", channel.key, exc)
        for consumer in consumers:
            if consumer.on_error is None:
                continue
            try:
                consumer.on_error(error)
            except Exception:  # noqa: BLE001 - one consumer must not starve the others
                _LOGGER.exception("Error callback for %r raised", channel.key)

    def _call_data(self, key: str, consumer: _Consumer, snapshot: list[Record]) -> None:
        try:
            consumer.on_data(snapshot)
        except Exception:  # noqa: BLE001 - one consumer must not starve the others
            _LOGGER.exception("Data callback for %r raised", key)

    def _release(self, channel: _Channel, consumer_id: str) -> None:
        with self._lock:
            if channel.consumers.pop(consumer_id, None) is None:
                return
            if channel.consumers:
                return
            if self._channels.get(channel.key) is channel:
                del self._channels[channel.key]
            cancel = channel.cancel_upstream
            channel.cancel_upstream = None
        if cancel is not None:
            _LOGGER.debug("Last consumer of %r left; closing upstream", channel.key)
            cancel()

    def cancel_all(self) -> None:
        """Detach every consumer and close every upstream subscription."""
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
            cancels = []
            for channel in channels:
                channel.consumers.clear()
                if channel.cancel_upstream is not None:
                    cancels.append(channel.cancel_upstream)
                    channel.cancel_upstream = None
        for cancel in cancels:
            cancel()

    def consumer_count(self, key: str) -> int:
        with self._lock:
            channel = self._channels.get(key)
            return len(channel.consumers) if channel is not None else 0

    def active_keys(self) -> list[str]:
        with self._lock:
            return [
                key
                for key, channel in self._channels.items()
                if channel.cancel_upstream is not None
            ]

    def stats(self) -> dict[str, Any]:
        """Return per-key consumer counts and emission/error counters."""
        with self._lock:
            channels = {
                key: {
                    "consumers": len(channel.consumers),
                    "upstream_open": channel.cancel_upstream is not None,
                    "emissions": channel.emissions,
                    "errors": channel.errors,
                }
                for key, channel in self._channels.items()
            }
        return {"channel_count": len(channels), "channels": channels}
