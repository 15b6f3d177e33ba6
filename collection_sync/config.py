"""
Configuration models for the collection synchronization layer.

This module centralizes all tunable runtime settings:

* snapshot cache time-to-live
* bulk mutation progress behavior
* repository backend selection
* Redis connection settings for the optional Redis backend

Values can be built explicitly or read from ``CSYNC_*`` environment variables
through :meth:`SyncConfig.from_env`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_CACHE_TTL_SECONDS = 5 * 60.0


@dataclass(slots=True)
class CacheConfig:
    """
    Snapshot cache settings.

    Parameters
    ----------
    ttl_seconds:
        Maximum age of a cached collection snapshot. The TTL only bounds the
        cost of repeated loads in a short window; live subscriptions keep data
        fresh independently of it.
    """

    ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ValueError("CacheConfig.ttl_seconds must be > 0.")


@dataclass(slots=True)
class MutationConfig:
    """
    Mutation coordinator settings.

    Parameters
    ----------
    report_progress_sequentially:
        When true and a progress callback is supplied, multi-item deletes run
        one id at a time so progress can be reported after each delete. When
        false, bulk deletes always use the repository's batch call.
    """

    report_progress_sequentially: bool = True


@dataclass(slots=True)
class RedisConfig:
    """
    Connection settings for the Redis repository backend.

    Parameters
    ----------
    redis_url:
        Redis URL used when a client is not directly supplied.
    namespace:
        Prefix for every Redis key and pub/sub channel the backend creates.
    socket_timeout:
        Seconds a command may wait on the socket before it times out.
    """

    redis_url: str = "redis://127.0.0.1:6379/0"
    namespace: str = "collection-sync"
    socket_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not self.namespace:
            raise ValueError("RedisConfig.namespace must be non-empty.")
        self.socket_timeout = float(self.socket_timeout)
        if self.socket_timeout <= 0:
            raise ValueError("RedisConfig.socket_timeout must be > 0.")


@dataclass(slots=True)
class SyncConfig:
    """
    Top-level runtime configuration used by :class:`~collection_sync.hub.CollectionHub`.

    Parameters
    ----------
    cache:
        Snapshot cache settings.
    mutations:
        Mutation coordinator settings.
    backend:
        Repository backend name (``"memory"`` or ``"redis"``).
    redis:
        Redis settings, only read when ``backend == "redis"``.
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    mutations: MutationConfig = field(default_factory=MutationConfig)
    backend: str = "memory"
    redis: RedisConfig = field(default_factory=RedisConfig)

    def __post_init__(self) -> None:
        if not str(self.backend).strip():
            raise ValueError("SyncConfig.backend must be non-empty.")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SyncConfig":
        """
        Build configuration from ``CSYNC_*`` environment variables.

        Recognized variables: ``CSYNC_BACKEND``, ``CSYNC_CACHE_TTL``,
        ``CSYNC_REDIS_URL`` and ``CSYNC_REDIS_NAMESPACE``. Blank values fall
        back to defaults.
        """
        env = os.environ if environ is None else environ

        def _get(name: str, default: str) -> str:
            value = str(env.get(name, "")).strip()
            return value if value else default

        raw_ttl = _get("CSYNC_CACHE_TTL", str(DEFAULT_CACHE_TTL_SECONDS))
        try:
            ttl_seconds = float(raw_ttl)
        except ValueError as exc:
            raise ValueError("Environment variable CSYNC_CACHE_TTL must be a number.") from exc

        defaults = RedisConfig()
        return cls(
            cache=CacheConfig(ttl_seconds=ttl_seconds),
            backend=_get("CSYNC_BACKEND", "memory").lower(),
            redis=RedisConfig(
                redis_url=_get("CSYNC_REDIS_URL", defaults.redis_url),
                namespace=_get("CSYNC_REDIS_NAMESPACE", defaults.namespace),
            ),
        )
