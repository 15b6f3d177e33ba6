"""
Shared fixtures for the unit tests: a controllable clock and repository doubles.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from collection_sync.memory import InMemoryCollectionRepository
from collection_sync.records import Record


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingRepository(InMemoryCollectionRepository):
    """
    In-memory repository that counts calls and can be told to fail or stall.

    ``gate`` (when set) holds every ``get_all`` until it is released, which
    lets tests start overlapping fetches.
    """

    def __init__(self, collection: str = "items", *, records: Sequence[Mapping[str, Any]] = ()) -> None:
        super().__init__(collection, records=records)
        self.get_all_calls = 0
        self.subscribe_calls = 0
        self.unsubscribe_calls = 0
        self.deleted: list[str] = []
        self.bulk_calls: list[list[str]] = []
        self.fail_get_all: BaseException | None = None
        self.fail_subscribe: BaseException | None = None
        self.fail_delete_on: set[str] = set()
        self.gate: asyncio.Event | None = None

    async def get_all(self) -> list[Record]:
        self.get_all_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_get_all is not None:
            raise self.fail_get_all
        return await super().get_all()

    async def delete(self, record_id: str) -> None:
        if record_id in self.fail_delete_on:
            raise RuntimeError(f"delete {record_id} refused")
        await super().delete(record_id)
        self.deleted.append(record_id)

    async def bulk_delete(self, record_ids: Sequence[str]) -> None:
        self.bulk_calls.append(list(record_ids))
        await super().bulk_delete(record_ids)

    def subscribe(self, on_data, on_error):
        self.subscribe_calls += 1
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        cancel = super().subscribe(on_data, on_error)

        def unsubscribe() -> None:
            self.unsubscribe_calls += 1
            cancel()

        return unsubscribe


def seed(count: int, prefix: str = "item") -> list[dict[str, Any]]:
    """Return ``count`` seed records with ids ``{prefix}-1..n``."""
    return [{"id": f"{prefix}-{index}", "title": f"Title {index}"} for index in range(1, count + 1)]


async def settle() -> None:
    """Let callbacks scheduled with ``call_soon`` run."""
    for _ in range(3):
        await asyncio.sleep(0)
