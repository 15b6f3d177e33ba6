"""
Redis repository backend for collection_sync.

Redis acts as the shared remote store: records live in one hash per
collection, every mutation publishes a change notification, and live
subscribers re-read the collection when notified.

Users can either import this package directly:

    from collection_sync_redis import RedisCollectionRepository

    repository = RedisCollectionRepository("videos", redis_client=Redis())

or select it through the core backend factory:

    from collection_sync import create_repository
    repository = create_repository("videos", backend="redis", redis_url="redis://127.0.0.1:6379/0")
"""

from .repository import RedisCollectionRepository

__all__ = ["RedisCollectionRepository"]
