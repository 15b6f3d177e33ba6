"""
Mutation coordinator tests: in-flight state, callbacks and bulk delete progress.
"""

from __future__ import annotations

import asyncio
import unittest

from collection_sync.config import MutationConfig
from collection_sync.exceptions import ErrorCode
from collection_sync.mutations import MutationCoordinator, MutationState

from support import RecordingRepository, seed


class MutationCoordinatorTest(unittest.IsolatedAsyncioTestCase):
    """
    Validates that mutations never raise and report through callbacks.
    """

    def setUp(self) -> None:
        self.repository = RecordingRepository("videos", records=seed(5))
        self.successes: list[str] = []
        self.errors: list[tuple[object, str]] = []
        self.states: list[MutationState] = []
        self.coordinator = MutationCoordinator(
            self.repository,
            on_success=self.successes.append,
            on_error=lambda error, operation: self.errors.append((error, operation)),
            on_state_change=self.states.append,
        )

    async def test_create_update_delete_success(self) -> None:
        created = await self.coordinator.create({"title": "New"})
        self.assertEqual("New", created["title"])
        updated = await self.coordinator.update(created["id"], {"title": "Renamed"})
        self.assertEqual("Renamed", updated["title"])
        self.assertTrue(await self.coordinator.delete_one(created["id"]))
        self.assertEqual(["create", "update", "delete"], self.successes)
        self.assertEqual([], self.errors)
        self.assertFalse(self.coordinator.state.busy)

    async def test_failures_return_sentinels(self) -> None:
        self.assertIsNone(await self.coordinator.update("missing", {"title": "x"}))
        self.assertFalse(await self.coordinator.delete_one("missing"))
        self.assertIsNone(await self.coordinator.create(["not", "a", "mapping"]))

        operations = [operation for _, operation in self.errors]
        self.assertEqual(["update", "delete", "create"], operations)
        update_error = self.errors[0][0]
        self.assertIs(ErrorCode.NOT_FOUND, update_error.code)
        self.assertIs(ErrorCode.VALIDATION_ERROR, self.errors[2][0].code)
        self.assertEqual([], self.successes)

    async def test_raising_callbacks_stay_inside_the_coordinator(self) -> None:
        def broken(*args) -> None:
            raise RuntimeError("callback bug")

        coordinator = MutationCoordinator(
            self.repository,
            on_success=broken,
            on_error=broken,
            on_state_change=broken,
        )
        with self.assertLogs("collection_sync.mutations", level="ERROR"):
            created = await coordinator.create({"title": "x"})
            self.assertEqual("x", created["title"])
            self.assertIsNone(await coordinator.update("missing", {"title": "y"}))
            self.assertTrue(await coordinator.delete_one(created["id"]))
            self.assertTrue(await coordinator.bulk_delete(["item-1", "item-2"]))
        self.assertFalse(coordinator.state.busy)

    async def test_unexpected_failure_is_tagged_with_operation(self) -> None:
        self.repository.fail_delete_on = {"item-1"}
        self.assertFalse(await self.coordinator.delete_one("item-1"))
        error, operation = self.errors[0]
        self.assertEqual("delete", operation)
        self.assertIs(ErrorCode.DELETE_FAILED, error.code)
        self.assertIs(ErrorCode.OPERATION_FAILED, error.kind)
        self.assertEqual("Failed to delete item", error.message)

    async def test_state_flags_while_in_flight(self) -> None:
        release = asyncio.Event()
        original_create = self.repository.create

        async def slow_create(payload):
            await release.wait()
            return await original_create(payload)

        self.repository.create = slow_create
        first = asyncio.ensure_future(self.coordinator.create({"title": "a"}))
        second = asyncio.ensure_future(self.coordinator.create({"title": "b"}))
        await asyncio.sleep(0)
        self.assertTrue(self.coordinator.state.creating)
        self.assertFalse(self.coordinator.state.deleting)
        release.set()
        await first
        await second
        self.assertFalse(self.coordinator.state.creating)
        self.assertEqual(MutationState(creating=True), self.states[0])
        self.assertEqual(MutationState(), self.states[-1])

    async def test_bulk_delete_with_progress_is_sequential(self) -> None:
        progress: list[tuple[int, int]] = []
        ids = ["item-1", "item-2", "item-3"]
        result = await self.coordinator.bulk_delete(
            ids, on_progress=lambda done, total: progress.append((done, total))
        )
        self.assertTrue(result)
        self.assertEqual([(1, 3), (2, 3), (3, 3)], progress)
        self.assertEqual(ids, self.repository.deleted)
        self.assertEqual([], self.repository.bulk_calls)
        remaining = await self.repository.get_all()
        self.assertEqual(["item-4", "item-5"], [item["id"] for item in remaining])
        self.assertEqual(["bulkDelete"], self.successes)

    async def test_bulk_delete_without_progress_uses_batch(self) -> None:
        self.assertTrue(await self.coordinator.bulk_delete(["item-1", "item-2"]))
        self.assertEqual([["item-1", "item-2"]], self.repository.bulk_calls)
        self.assertEqual(3, len(await self.repository.get_all()))

    async def test_single_id_with_progress_uses_batch(self) -> None:
        progress: list[tuple[int, int]] = []
        await self.coordinator.bulk_delete(
            ["item-1"], on_progress=lambda done, total: progress.append((done, total))
        )
        self.assertEqual([["item-1"]], self.repository.bulk_calls)
        self.assertEqual([], progress)

    async def test_config_can_disable_sequential_progress(self) -> None:
        coordinator = MutationCoordinator(
            self.repository,
            on_progress=lambda done, total: None,
            config=MutationConfig(report_progress_sequentially=False),
        )
        await coordinator.bulk_delete(["item-1", "item-2"])
        self.assertEqual([["item-1", "item-2"]], self.repository.bulk_calls)

    async def test_sequential_bulk_delete_stops_at_first_failure(self) -> None:
        self.repository.fail_delete_on = {"item-2"}
        progress: list[tuple[int, int]] = []
        result = await self.coordinator.bulk_delete(
            ["item-1", "item-2", "item-3"],
            on_progress=lambda done, total: progress.append((done, total)),
        )
        self.assertFalse(result)
        self.assertEqual([(1, 3)], progress)
        self.assertEqual(["item-1"], self.repository.deleted)
        error, operation = self.errors[0]
        self.assertEqual("bulkDelete", operation)
        self.assertEqual("Failed to bulk delete items", error.message)
        self.assertFalse(self.coordinator.state.bulk_deleting)


if __name__ == "__main__":
    unittest.main()
