"""
Repository construction by backend name.

Each backend registers a builder that turns a collection key plus keyword
options into a :class:`~collection_sync.repository.CollectionRepository`.
Options a builder does not consume are rejected, so typos in bootstrap code
fail loudly instead of being ignored.
"""

from __future__ import annotations

import importlib.util
from collections.abc import Callable
from enum import Enum
from typing import Any

from .config import RedisConfig
from .exceptions import BackendConfigurationError, BackendNotAvailableError
from .memory import InMemoryCollectionRepository
from .repository import CollectionRepository


class RepositoryBackend(str, Enum):
    """
    Storage behind a collection repository.

    MEMORY
        Records held in this process; lost on exit.
    REDIS
        Records in a Redis hash, with writes announced over pub/sub.
    """

    MEMORY = "memory"
    REDIS = "redis"

    @classmethod
    def parse(cls, value: str | RepositoryBackend) -> RepositoryBackend:
        """Resolve a case-insensitive name, raising ``BackendConfigurationError``."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        for member in cls:
            if member.value == name:
                return member
        names = "/".join(member.value for member in cls)
        raise BackendConfigurationError(f"No repository backend named {value!r} (expected {names}).")


def _reject_leftovers(backend: RepositoryBackend, options: dict[str, Any]) -> None:
    if options:
        names = ", ".join(sorted(str(key) for key in options))
        raise BackendConfigurationError(f"The {backend.value} repository does not accept: {names}.")


def _build_memory(collection: str, options: dict[str, Any]) -> CollectionRepository:
    records = options.pop("records", None)
    _reject_leftovers(RepositoryBackend.MEMORY, options)
    return InMemoryCollectionRepository(collection, records=records)


def _build_redis(collection: str, options: dict[str, Any]) -> CollectionRepository:
    try:
        from collection_sync_redis import RedisCollectionRepository
    except ImportError as exc:
        raise BackendNotAvailableError(
            "Install the 'redis' distribution to store collections in Redis."
        ) from exc

    redis_client = options.pop("redis_client", None)
    config = options.pop("config", None)
    if config is None:
        settings = {
            name: options.pop(name)
            for name in ("redis_url", "namespace", "socket_timeout")
            if name in options
        }
        config = RedisConfig(**settings)
    _reject_leftovers(RepositoryBackend.REDIS, options)
    return RedisCollectionRepository(collection, config=config, redis_client=redis_client)


_BUILDERS: dict[RepositoryBackend, Callable[[str, dict[str, Any]], CollectionRepository]] = {
    RepositoryBackend.MEMORY: _build_memory,
    RepositoryBackend.REDIS: _build_redis,
}


def available_backends() -> tuple[str, ...]:
    """Names of the backends whose client libraries are importable here."""
    names = [RepositoryBackend.MEMORY.value]
    if importlib.util.find_spec("redis") is not None:
        names.append(RepositoryBackend.REDIS.value)
    return tuple(names)


def create_repository(
    collection: str,
    backend: str | RepositoryBackend = RepositoryBackend.MEMORY,
    **options: Any,
) -> CollectionRepository:
    """
    Build the repository serving ``collection`` on ``backend``.

    Parameters
    ----------
    collection:
        Collection key served by the repository.
    backend:
        ``"memory"`` or ``"redis"``, case-insensitive.
    options:
        ``records`` seeds the memory backend. The Redis backend takes either a
        ready :class:`~collection_sync.config.RedisConfig` as ``config`` or any
        of its fields (``redis_url``, ``namespace``, ``socket_timeout``), plus
        an optional ``redis_client``.
    """
    selected = RepositoryBackend.parse(backend)
    return _BUILDERS[selected](collection, dict(options))
