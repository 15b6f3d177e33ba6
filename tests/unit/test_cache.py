"""
Snapshot cache and cache-first loader behavior.
"""

from __future__ import annotations

import asyncio
import unittest

from collection_sync.cache import CacheStore
from collection_sync.collection import CollectionLoader
from collection_sync.exceptions import CacheClosedError

from support import FakeClock, RecordingRepository, seed

TTL = 300.0


class CacheStoreTest(unittest.TestCase):
    """
    Validates TTL reads, invalidation and lifecycle of :class:`CacheStore`.
    """

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = CacheStore(clock=self.clock)

    def test_missing_key_reads_none(self) -> None:
        self.assertIsNone(self.cache.read("videos", TTL))

    def test_entry_valid_until_ttl_elapses(self) -> None:
        """
        An entry is served while younger than the TTL and hidden afterwards.
        """
        self.cache.write("videos", [{"id": "a"}])
        self.clock.advance(TTL - 0.5)
        self.assertEqual([{"id": "a"}], self.cache.read("videos", TTL))
        self.clock.advance(0.5)
        self.assertIsNone(self.cache.read("videos", TTL))

    def test_stale_entry_is_kept_until_overwritten(self) -> None:
        self.cache.write("videos", [{"id": "a"}])
        self.clock.advance(TTL + 1)
        self.assertIsNone(self.cache.read("videos", TTL))
        self.assertEqual(1, self.cache.stats()["size"])
        self.cache.write("videos", [{"id": "b"}])
        self.assertEqual([{"id": "b"}], self.cache.read("videos", TTL))

    def test_read_returns_independent_list(self) -> None:
        self.cache.write("videos", [{"id": "a"}])
        first = self.cache.read("videos", TTL)
        first.append({"id": "intruder"})
        self.assertEqual([{"id": "a"}], self.cache.read("videos", TTL))

    def test_editing_a_read_record_leaves_entry_intact(self) -> None:
        source = [{"id": "a", "title": "orig"}]
        self.cache.write("videos", source)
        source[0]["title"] = "changed after write"
        self.cache.read("videos", TTL)[0]["title"] = "changed after read"
        self.assertEqual([{"id": "a", "title": "orig"}], self.cache.read("videos", TTL))

    def test_invalidate_and_invalidate_all(self) -> None:
        self.cache.write("videos", [])
        self.cache.write("photos", [])
        self.assertTrue(self.cache.invalidate("videos"))
        self.assertFalse(self.cache.invalidate("videos"))
        self.assertIsNone(self.cache.read("videos", TTL))
        self.cache.invalidate_all()
        self.assertIsNone(self.cache.read("photos", TTL))
        self.assertEqual(0, self.cache.stats()["size"])

    def test_stats_reports_ages(self) -> None:
        self.cache.write("videos", [])
        self.clock.advance(12.5)
        stats = self.cache.stats()
        self.assertEqual(1, stats["size"])
        self.assertEqual([{"key": "videos", "age": 12.5}], stats["entries"])

    def test_closed_cache_refuses_use(self) -> None:
        self.cache.write("videos", [])
        self.cache.close()
        self.assertTrue(self.cache.closed)
        with self.assertRaises(CacheClosedError):
            self.cache.read("videos", TTL)
        with self.assertRaises(CacheClosedError):
            self.cache.write("videos", [])

    def test_separate_stores_are_isolated(self) -> None:
        other = CacheStore(clock=self.clock)
        self.cache.write("videos", [{"id": "a"}])
        self.assertIsNone(other.read("videos", TTL))


class CollectionLoaderTest(unittest.IsolatedAsyncioTestCase):
    """
    Validates cache-first loading and in-flight fetch deduplication.
    """

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = CacheStore(clock=self.clock)
        self.repository = RecordingRepository("videos", records=seed(3))
        self.loader = CollectionLoader(self.cache, lambda key: self.repository)

    async def test_two_consumers_share_one_fetch(self) -> None:
        """
        Two loads inside the TTL window cost exactly one repository fetch.
        """
        first = await self.loader.load("videos", TTL)
        self.clock.advance(TTL / 2)
        second = await self.loader.load("videos", TTL)
        self.assertEqual(1, self.repository.get_all_calls)
        self.assertEqual(first, second)
        self.assertIsNot(first, second)

    async def test_concurrent_loads_are_deduplicated(self) -> None:
        self.repository.gate = asyncio.Event()
        tasks = [asyncio.ensure_future(self.loader.load("videos", TTL)) for _ in range(3)]
        await asyncio.sleep(0)
        self.assertEqual(["videos"], self.loader.stats()["inflight"])
        self.repository.gate.set()
        results = await asyncio.gather(*tasks)
        self.assertEqual(1, self.repository.get_all_calls)
        self.assertTrue(all(len(result) == 3 for result in results))
        self.assertEqual([], self.loader.stats()["inflight"])

    async def test_different_keys_are_fetched_separately(self) -> None:
        photos = RecordingRepository("photos", records=seed(2, prefix="photo"))
        repositories = {"videos": self.repository, "photos": photos}
        loader = CollectionLoader(self.cache, repositories.__getitem__)
        videos = await loader.load("videos", TTL)
        pictures = await loader.load("photos", TTL)
        self.assertEqual(1, self.repository.get_all_calls)
        self.assertEqual(1, photos.get_all_calls)
        self.assertTrue(all(item["id"].startswith("item-") for item in videos))
        self.assertTrue(all(item["id"].startswith("photo-") for item in pictures))

    async def test_expired_entry_triggers_refetch(self) -> None:
        await self.loader.load("videos", TTL)
        self.clock.advance(TTL + 1)
        await self.loader.load("videos", TTL)
        self.assertEqual(2, self.loader.fetch_count("videos"))

    async def test_force_bypasses_cache(self) -> None:
        await self.loader.load("videos", TTL)
        await self.loader.load("videos", TTL, force=True)
        self.assertEqual(2, self.repository.get_all_calls)

    async def test_failed_fetch_leaves_cache_empty(self) -> None:
        self.repository.fail_get_all = ConnectionError("offline")
        with self.assertRaises(ConnectionError):
            await self.loader.load("videos", TTL)
        self.assertIsNone(self.cache.read("videos", TTL))
        self.assertEqual([], self.loader.stats()["inflight"])


if __name__ == "__main__":
    unittest.main()
