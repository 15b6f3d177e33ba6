"""
collection_sync
===============

Cached, live-synchronized access to remote record collections.

The package sits between application code and a remote record store and
provides:

* a TTL snapshot cache shared by every consumer of a collection key
* at most one upstream live subscription per key, fanned out to consumers
* a mutation coordinator with in-flight state and bulk delete progress
* a client-side search/filter/sort engine bound to a field accessor
* a collection service with CSV/JSON export and validated import
* a normalized error taxonomy (:class:`CollectionError`)

Repository backends are switchable with one parameter:

    from collection_sync import create_repository

    repository = create_repository("videos", backend="memory")
    repository = create_repository("videos", backend="redis", redis_url="redis://127.0.0.1:6379/0")

Typical usage::

    from collection_sync import CollectionHub, SyncConfig

    hub = CollectionHub(SyncConfig(backend="memory"))
    async with hub.view("videos") as view:
        print(view.data)
    hub.close()
"""

from .backends import RepositoryBackend, available_backends, create_repository
from .cache import CacheEntry, CacheStore
from .collection import CollectionLoader, CollectionView
from .config import CacheConfig, MutationConfig, RedisConfig, SyncConfig
from .exceptions import (
    BackendConfigurationError,
    BackendNotAvailableError,
    CacheClosedError,
    CollectionError,
    CollectionSyncError,
    ErrorCode,
    ErrorSeverity,
    UnsupportedFormatError,
    normalize_error,
)
from .exporting import ExportBlob, ExportFormat, export_csv, export_items, export_json
from .hub import CollectionHub
from .importing import ImportIssue, ImportResult, parse_csv, parse_json, process_import, validate_rows
from .memory import InMemoryCollectionRepository
from .mutations import MutationCoordinator, MutationState
from .query import CollectionSearch, QueryEngine, filter_items, search, search_filter_sort, sort_items
from .records import (
    FieldAccessor,
    FilterCriteria,
    FilterOperator,
    Record,
    SearchCriteria,
    SortCriteria,
    SortDirection,
    item_field,
)
from .repository import CollectionRepository
from .service import CollectionService
from .subscriptions import Subscription, SubscriptionManager

__all__ = [
    "BackendConfigurationError",
    "BackendNotAvailableError",
    "CacheClosedError",
    "CacheConfig",
    "CacheEntry",
    "CacheStore",
    "CollectionError",
    "CollectionHub",
    "CollectionLoader",
    "CollectionRepository",
    "CollectionSearch",
    "CollectionService",
    "CollectionSyncError",
    "CollectionView",
    "ErrorCode",
    "ErrorSeverity",
    "ExportBlob",
    "ExportFormat",
    "FieldAccessor",
    "FilterCriteria",
    "FilterOperator",
    "ImportIssue",
    "ImportResult",
    "InMemoryCollectionRepository",
    "MutationConfig",
    "MutationCoordinator",
    "MutationState",
    "QueryEngine",
    "Record",
    "RedisConfig",
    "RepositoryBackend",
    "SearchCriteria",
    "SortCriteria",
    "SortDirection",
    "Subscription",
    "SubscriptionManager",
    "SyncConfig",
    "UnsupportedFormatError",
    "available_backends",
    "create_repository",
    "export_csv",
    "export_items",
    "export_json",
    "filter_items",
    "item_field",
    "normalize_error",
    "parse_csv",
    "parse_json",
    "process_import",
    "search",
    "search_filter_sort",
    "sort_items",
    "validate_rows",
]
