"""
Hub wiring, lifecycle and diagnostics tests.
"""

from __future__ import annotations

import unittest

from collection_sync.config import SyncConfig
from collection_sync.exceptions import BackendConfigurationError, CacheClosedError
from collection_sync.hub import CollectionHub
from collection_sync.memory import InMemoryCollectionRepository

from support import FakeClock, RecordingRepository, seed, settle


class CollectionHubTest(unittest.IsolatedAsyncioTestCase):
    """
    Validates repository resolution and hub-level diagnostics.
    """

    async def test_repositories_are_created_once_per_key(self) -> None:
        hub = CollectionHub()
        self.addCleanup(hub.close)
        first = hub.repository("videos")
        self.assertIsInstance(first, InMemoryCollectionRepository)
        self.assertIs(first, hub.repository("videos"))
        self.assertIsNot(first, hub.repository("photos"))

    async def test_custom_factory_and_accessor(self) -> None:
        created: list[str] = []

        def factory(key: str) -> RecordingRepository:
            created.append(key)
            return RecordingRepository(key, records=[{"id": "1", "meta": {"rank": 2}}])

        hub = CollectionHub(repository_factory=factory)
        self.addCleanup(hub.close)
        hub.register("videos", accessor=lambda item, name: item.get("meta", {}).get(name))
        results = await hub.service("videos").search_items(
            None, [], [{"field": "rank", "operator": "gt", "value": 1}]
        )
        self.assertEqual(["1"], [item["id"] for item in results])
        self.assertEqual(["videos"], created)
        search_state = hub.search_state("videos", ["rank"])
        search_state.set_query("2")
        self.assertEqual(1, len(search_state.results(await hub.load("videos"))))

    async def test_zero_ttl_view_always_fetches(self) -> None:
        repository = RecordingRepository("videos", records=seed(2))
        hub = CollectionHub(repository_factory=lambda key: repository)
        self.addCleanup(hub.close)
        await hub.load("videos")
        async with hub.view("videos", use_real_time=False, ttl_seconds=0) as view:
            self.assertEqual(2, len(view.data))
        self.assertEqual(2, repository.get_all_calls)

    async def test_unknown_backend_fails_on_first_use(self) -> None:
        hub = CollectionHub(SyncConfig(backend="cassandra"))
        self.addCleanup(hub.close)
        with self.assertRaises(BackendConfigurationError):
            hub.repository("videos")

    async def test_stats_health_and_metrics(self) -> None:
        hub = CollectionHub(clock=FakeClock())
        self.addCleanup(hub.close)
        hub.register("videos", RecordingRepository("videos", records=seed(2)))
        view = hub.view("videos")
        await view.start()
        await settle()

        stats = hub.stats()
        self.assertEqual("memory", stats["backend"])
        self.assertEqual(["videos"], stats["collections"])
        self.assertEqual(1, stats["cache"]["size"])
        self.assertEqual(1, stats["subscriptions"]["channels"]["videos"]["consumers"])
        self.assertEqual(
            {"status": "ok", "backend": "memory", "cache_ttl_seconds": 300.0}, hub.health()
        )

        metrics = hub.metrics_text()
        self.assertIn("collection_sync_subscription_channels 1", metrics)
        self.assertIn('collection_sync_consumers{collection="videos"} 1', metrics)
        self.assertTrue(metrics.endswith("\n"))
        view.close()

    async def test_close_releases_everything(self) -> None:
        hub = CollectionHub()
        repository = RecordingRepository("videos", records=seed(1))
        closed: list[bool] = []
        repository.close = lambda: closed.append(True)
        hub.register("videos", repository)
        view = hub.view("videos")
        await view.start()

        hub.close()
        hub.close()
        self.assertTrue(hub.closed)
        self.assertEqual([True], closed)
        self.assertEqual(1, repository.unsubscribe_calls)
        self.assertEqual("stopped", hub.health()["status"])
        self.assertEqual(0, hub.stats()["cache"]["size"])
        with self.assertRaises(CacheClosedError):
            await hub.load("videos")


if __name__ == "__main__":
    unittest.main()
