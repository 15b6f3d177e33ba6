"""
Create/update/delete coordination with transient in-flight state.

The coordinator never raises across its boundary: repository failures are
normalized into :class:`~collection_sync.exceptions.CollectionError`, passed to
``on_error`` and turned into a ``None``/``False`` result. It does not touch
the cache either. A mutation becomes visible through the live subscription
for the key or through an explicit refetch.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .config import MutationConfig
from .exceptions import CollectionError, ErrorCode, normalize_error
from .records import Record
from .repository import CollectionRepository

_LOGGER = logging.getLogger(__name__)

SuccessCallback = Callable[[str], None]
MutationErrorCallback = Callable[[CollectionError, str], None]
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True, slots=True)
class MutationState:
    """Snapshot of which mutation kinds are currently in flight."""

    creating: bool = False
    updating: bool = False
    deleting: bool = False
    bulk_deleting: bool = False

    @property
    def busy(self) -> bool:
        return self.creating or self.updating or self.deleting or self.bulk_deleting


_OPERATIONS = {
    "create": ErrorCode.CREATE_FAILED,
    "update": ErrorCode.UPDATE_FAILED,
    "delete": ErrorCode.DELETE_FAILED,
    "bulkDelete": ErrorCode.DELETE_FAILED,
}

_MESSAGES = {
    "create": "Failed to create item",
    "update": "Failed to update item",
    "delete": "Failed to delete item",
    "bulkDelete": "Failed to bulk delete items",
}


class MutationCoordinator:
    """
    Issues writes against one repository and tracks in-flight state.

    Parameters
    ----------
    repository:
        Target repository.
    collection:
        Collection key, used for logging.
    on_success:
        Called with the operation name after each successful mutation.
    on_error:
        Called with the normalized error and the operation name.
    on_progress:
        Called as ``(completed, total)`` after each delete of a sequential
        bulk delete.
    on_state_change:
        Called with a fresh :class:`MutationState` whenever it changes.
    config:
        Bulk delete behavior.

    Notes
    -----
    In-flight state is counted per operation kind, so overlapping calls of
    the same kind keep the flag raised until the last one settles.

    A sequential bulk delete stops at the first failure. Ids deleted before
    the failure stay deleted and no further progress is reported.
    """

    def __init__(
        self,
        repository: CollectionRepository,
        *,
        collection: str | None = None,
        on_success: SuccessCallback | None = None,
        on_error: MutationErrorCallback | None = None,
        on_progress: ProgressCallback | None = None,
        on_state_change: Callable[[MutationState], None] | None = None,
        config: MutationConfig | None = None,
    ) -> None:
        self._repository = repository
        self.collection = collection or getattr(repository, "collection", "collection")
        self._on_success = on_success
        self._on_error = on_error
        self._on_progress = on_progress
        self._on_state_change = on_state_change
        self._config = config or MutationConfig()
        self._inflight = {name: 0 for name in _OPERATIONS}
        self._lock = threading.RLock()

    @property
    def state(self) -> MutationState:
        with self._lock:
            return MutationState(
                creating=self._inflight["create"] > 0,
                updating=self._inflight["update"] > 0,
                deleting=self._inflight["delete"] > 0,
                bulk_deleting=self._inflight["bulkDelete"] > 0,
            )

    def _enter(self, operation: str) -> None:
        with self._lock:
            self._inflight[operation] += 1
        self._emit_state()

    def _exit(self, operation: str) -> None:
        with self._lock:
            self._inflight[operation] -= 1
        self._emit_state()

    def _notify(self, name: str, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:  # noqa: BLE001 - keep reporting other callbacks
            _LOGGER.exception("%s callback for %r failed", name, self.collection)

    def _emit_state(self) -> None:
        self._notify("on_state_change", self._on_state_change, self.state)

    def _succeeded(self, operation: str) -> None:
        self._notify("on_success", self._on_success, operation)

    def _failed(self, operation: str, exc: BaseException) -> CollectionError:
        error = normalize_error(exc, _OPERATIONS[operation], _MESSAGES[operation])
        _LOGGER.warning(
            "%s on %r failed (%s): %s", operation, self.collection, error.code.value, exc
        )
        self._notify("on_error", self._on_error, error, operation)
        return error

    async def create(self, payload: Mapping[str, Any]) -> Record | None:
        """Create a record. Returns ``None`` on failure."""
        self._enter("create")
        try:
            record = await self._repository.create(payload)
        except Exception as exc:  # noqa: BLE001 - normalized and reported
            self._failed("create", exc)
            return None
        finally:
            self._exit("create")
        self._succeeded("create")
        return record

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Record | None:
        """Update a record. Returns ``None`` on failure."""
        self._enter("update")
        try:
            record = await self._repository.update(record_id, partial)
        except Exception as exc:  # noqa: BLE001 - normalized and reported
            self._failed("update", exc)
            return None
        finally:
            self._exit("update")
        self._succeeded("update")
        return record

    async def delete_one(self, record_id: str) -> bool:
        """Delete one record. Returns ``False`` on failure."""
        self._enter("delete")
        try:
            await self._repository.delete(record_id)
        except Exception as exc:  # noqa: BLE001 - normalized and reported
            self._failed("delete", exc)
            return False
        finally:
            self._exit("delete")
        self._succeeded("delete")
        return True

    async def bulk_delete(
        self,
        record_ids: Sequence[str],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """
        Delete many records. Returns ``False`` on failure.

        With a progress callback and more than one id, ids are deleted one at
        a time and progress is reported after each; otherwise the repository's
        batch delete is used.
        """
        ids = list(record_ids)
        progress = on_progress or self._on_progress
        sequential = (
            progress is not None
            and len(ids) > 1
            and self._config.report_progress_sequentially
        )
        self._enter("bulkDelete")
        try:
            if sequential:
                total = len(ids)
                for completed, record_id in enumerate(ids, start=1):
                    await self._repository.delete(record_id)
                    progress(completed, total)
            else:
                await self._repository.bulk_delete(ids)
        except Exception as exc:  # noqa: BLE001 - normalized and reported
            self._failed("bulkDelete", exc)
            return False
        finally:
            self._exit("bulkDelete")
        self._succeeded("bulkDelete")
        return True
