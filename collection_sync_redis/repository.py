"""
Redis-backed collection repository.

Data model
----------
* ``{namespace}:records:{collection}``: hash of record id -> JSON record
* ``{namespace}:order:{collection}``: sorted set keeping insertion order
* ``{namespace}:seq:{collection}``: insertion sequence counter
* ``{namespace}:changes:{collection}``: pub/sub channel notified on writes

Blocking redis-py calls run in worker threads via :func:`asyncio.to_thread`.
Live snapshots are read on the pub/sub worker thread and handed back to the
subscriber's event loop when one was running at subscribe time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from collection_sync.config import RedisConfig
from collection_sync.exceptions import network_error, not_found, timeout, validation_error
from collection_sync.query import QueryEngine
from collection_sync.records import Record, SearchCriteria, stamp_new_record, stamp_update
from collection_sync.repository import DataCallback, ErrorCallback, Unsubscribe
from redis import Redis
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

_LOGGER = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = ("created_at", "updated_at")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RedisCollectionRepository:
    """
    Redis implementation of :class:`~collection_sync.repository.CollectionRepository`.

    Parameters
    ----------
    collection:
        Collection key served by this repository.
    config:
        Connection URL and key namespace.
    redis_client:
        Optional preconfigured client. When omitted a client is built from
        ``config.redis_url`` and closed by :meth:`close`.

    Notes
    -----
    :meth:`bulk_delete` runs in one MULTI/EXEC transaction, so it either
    removes every listed id or none of them.
    """

    def __init__(
        self,
        collection: str,
        *,
        config: RedisConfig | None = None,
        redis_client: Redis | None = None,
        engine: QueryEngine | None = None,
    ) -> None:
        self.collection = collection
        self.config = config or RedisConfig()
        self._owns_client = redis_client is None
        self._redis = redis_client or Redis.from_url(
            self.config.redis_url, socket_timeout=self.config.socket_timeout
        )
        self._engine = engine or QueryEngine()
        self._lock = threading.RLock()
        self._listeners: dict[str, Callable[[], None]] = {}

    # ------------------------------------------------------------------ #
    # Key helpers
    # ------------------------------------------------------------------ #

    def _key_records(self) -> str:
        return f"{self.config.namespace}:records:{self.collection}"

    def _key_order(self) -> str:
        return f"{self.config.namespace}:order:{self.collection}"

    def _key_seq(self) -> str:
        return f"{self.config.namespace}:seq:{self.collection}"

    def _channel(self) -> str:
        return f"{self.config.namespace}:changes:{self.collection}"

    # ------------------------------------------------------------------ #
    # Serialization helpers
    # ------------------------------------------------------------------ #

    def _encode(self, record: Mapping[str, Any]) -> str:
        return json.dumps(dict(record), separators=(",", ":"), default=_json_default)

    def _decode(self, value: Any) -> Record | None:
        if value is None:
            return None
        raw = value.decode("utf-8") if isinstance(value, bytes) else str(value)
        record = json.loads(raw)
        for name in _TIMESTAMP_FIELDS:
            stamp = record.get(name)
            if isinstance(stamp, str):
                try:
                    record[name] = datetime.fromisoformat(stamp)
                except ValueError:
                    pass
        return record

    def _decode_text(self, value: bytes | str) -> str:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    # ------------------------------------------------------------------ #
    # Blocking operations
    # ------------------------------------------------------------------ #

    def _read_all(self) -> list[Record]:
        ids = [self._decode_text(item) for item in self._redis.zrange(self._key_order(), 0, -1)]
        if not ids:
            return []
        values = self._redis.hmget(self._key_records(), ids)
        return [record for record in (self._decode(value) for value in values) if record is not None]

    def _read_one(self, record_id: str) -> Record | None:
        return self._decode(self._redis.hget(self._key_records(), record_id))

    def _insert(self, payload: Mapping[str, Any]) -> Record:
        record = stamp_new_record(payload)
        sequence = int(self._redis.incr(self._key_seq()))
        pipe = self._redis.pipeline(transaction=True)
        pipe.hset(self._key_records(), record["id"], self._encode(record))
        pipe.zadd(self._key_order(), {record["id"]: sequence})
        pipe.execute()
        self._publish("create", [record["id"]])
        return record

    def _merge(self, record_id: str, partial: Mapping[str, Any]) -> Record:
        with self._lock:
            current = self._read_one(record_id)
            if current is None:
                raise not_found(self.collection, record_id)
            merged = stamp_update(current, partial)
            self._redis.hset(self._key_records(), record_id, self._encode(merged))
        self._publish("update", [record_id])
        return merged

    def _remove(self, record_id: str) -> None:
        removed = int(self._redis.hdel(self._key_records(), record_id))
        if removed == 0:
            raise not_found(self.collection, record_id)
        self._redis.zrem(self._key_order(), record_id)
        self._publish("delete", [record_id])

    def _remove_many(self, record_ids: list[str]) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.hdel(self._key_records(), *record_ids)
        pipe.zrem(self._key_order(), *record_ids)
        pipe.execute()
        self._publish("bulk_delete", record_ids)

    def _publish(self, action: str, record_ids: list[str]) -> None:
        message = json.dumps({"action": action, "ids": record_ids}, separators=(",", ":"))
        self._redis.publish(self._channel(), message)

    async def _run(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except RedisTimeoutError as exc:
            raise timeout(f"{operation} {self.collection}", self.config.socket_timeout) from exc
        except RedisError as exc:
            _LOGGER.warning("Redis %s on %r failed: %s", operation, self.collection, exc)
            raise network_error(exc) from exc

    # ------------------------------------------------------------------ #
    # Repository API
    # ------------------------------------------------------------------ #

    async def get_all(self) -> list[Record]:
        return await self._run("fetch all", self._read_all)

    async def get_by_id(self, record_id: str) -> Record | None:
        return await self._run("fetch", self._read_one, str(record_id))

    async def create(self, payload: Mapping[str, Any]) -> Record:
        if not isinstance(payload, Mapping):
            raise validation_error("payload", "must be a mapping of field values")
        return await self._run("create", self._insert, payload)

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Record:
        if not isinstance(partial, Mapping):
            raise validation_error("partial", "must be a mapping of field values")
        return await self._run("update", self._merge, str(record_id), partial)

    async def delete(self, record_id: str) -> None:
        await self._run("delete", self._remove, str(record_id))

    async def bulk_delete(self, record_ids: Sequence[str]) -> None:
        ids = [str(item) for item in record_ids]
        if not ids:
            return
        await self._run("bulk delete", self._remove_many, ids)

    async def search(self, criteria: SearchCriteria) -> list[Record]:
        items = await self.get_all()
        result = self._engine.search(items, criteria.query, criteria.fields)
        return list(self._engine.filter(result, criteria.filters))

    # ------------------------------------------------------------------ #
    # Live updates
    # ------------------------------------------------------------------ #

    def subscribe(self, on_data: DataCallback, on_error: ErrorCallback) -> Unsubscribe:
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        subscription_id = uuid.uuid4().hex
        stopped = threading.Event()

        def dispatch(callback: Callable[[Any], None], payload: Any) -> None:
            if stopped.is_set():
                return
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(_guarded, callback, payload)
            else:
                _guarded(callback, payload)

        def _guarded(callback: Callable[[Any], None], payload: Any) -> None:
            if not stopped.is_set():
                callback(payload)

        def emit_snapshot() -> None:
            try:
                snapshot = self._read_all()
            except RedisError as exc:
                dispatch(on_error, network_error(exc))
                return
            dispatch(on_data, snapshot)

        def on_message(message: dict[str, Any]) -> None:
            emit_snapshot()

        def on_thread_error(exc: BaseException, pubsub: Any, thread: Any) -> None:
            _LOGGER.warning("Redis listener for %r failed: %s", self.collection, exc)
            dispatch(on_error, network_error(exc))
            thread.stop()

        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        try:
            pubsub.subscribe(**{self._channel(): on_message})
        except RedisTimeoutError as exc:
            pubsub.close()
            raise timeout(f"subscribe {self.collection}", self.config.socket_timeout) from exc
        except RedisError as exc:
            pubsub.close()
            _LOGGER.warning("Redis subscribe on %r failed: %s", self.collection, exc)
            raise network_error(exc) from exc
        worker = pubsub.run_in_thread(
            sleep_time=0.05,
            daemon=True,
            exception_handler=on_thread_error,
        )
        threading.Thread(
            target=emit_snapshot,
            name=f"collection-sync-snapshot-{self.collection}",
            daemon=True,
        ).start()
        _LOGGER.debug("Redis listener %s attached to %r", subscription_id, self.collection)

        def unsubscribe() -> None:
            if stopped.is_set():
                return
            stopped.set()
            with self._lock:
                self._listeners.pop(subscription_id, None)
            worker.stop()
            pubsub.close()
            _LOGGER.debug("Redis listener %s detached from %r", subscription_id, self.collection)

        with self._lock:
            self._listeners[subscription_id] = unsubscribe
        return unsubscribe

    def close(self) -> None:
        """Stop every live listener and close the client if this repository created it."""
        with self._lock:
            listeners = list(self._listeners.values())
        for unsubscribe in listeners:
            unsubscribe()
        if self._owns_client:
            self._redis.close()
