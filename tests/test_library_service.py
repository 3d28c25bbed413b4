"""
Tests for cache-first library access, stale fallback and two-phase saves.
"""

import os
import sys
import unittest
from unittest.mock import AsyncMock

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from vorbis_core.cache.cache_metadata import ItemRecord
from vorbis_core.cache.item_cache import ItemCache
from vorbis_core.exceptions import AuthenticationRequired, UpstreamError, UpstreamTimeout
from vorbis_core.library.library_service import LibraryService
from vorbis_core.library.upstream_client import UpstreamLibraryClient
from vorbis_core.settings import CacheConfig

MINUTE = 60


class FakeClock:
    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLibraryClient:
    """Upstream library double with AsyncMock methods."""

    def __init__(self):
        self.fetch_item = AsyncMock()
        self.contains_saved = AsyncMock(return_value=[False])
        self.save_items = AsyncMock(return_value=None)
        self.remove_items = AsyncMock(return_value=None)
        self.fetch_saved_items = AsyncMock(return_value=[])
        self.fetch_playlist_items = AsyncMock(return_value=[])


def make_item(item_id='track1', **fields):
    defaults = dict(name='Song', artists='Artist', album='Album', duration_ms=180000, uri=f'uri:{item_id}')
    defaults.update(fields)
    return ItemRecord(id=item_id, **defaults)


class LibraryTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.cache = ItemCache(CacheConfig(metadata_ttl_seconds=10 * MINUTE, status_ttl_seconds=5 * MINUTE),
                               clock=self.clock)
        self.client = FakeLibraryClient()
        self.service = LibraryService(self.client, self.cache)


class TestIsSaved(LibraryTestCase):

    async def test_fetches_and_caches(self):
        self.client.contains_saved.return_value = [True]

        self.assertTrue(await self.service.is_saved('track1'))
        self.assertTrue(await self.service.is_saved('track1'))

        self.client.contains_saved.assert_awaited_once_with(['track1'])
        self.assertTrue(self.cache.get_status('track1'))

    async def test_refetches_after_status_ttl(self):
        self.cache.set_status('track1', True)
        self.clock.advance(6 * MINUTE)
        self.client.contains_saved.return_value = [False]

        self.assertFalse(await self.service.is_saved('track1'))
        self.client.contains_saved.assert_awaited_once()

    async def test_stale_status_used_on_network_error(self):
        self.cache.set_status('track1', True)
        self.clock.advance(6 * MINUTE)
        self.client.contains_saved.side_effect = UpstreamError("Network error")

        with self.assertLogs('vorbis_core.library', level='WARNING') as logs:
            self.assertTrue(await self.service.is_saved('track1'))
        self.assertIn('stale', logs.output[0])

    async def test_error_propagates_without_cached_value(self):
        self.client.contains_saved.side_effect = UpstreamTimeout("timed out")
        with self.assertRaises(UpstreamTimeout):
            await self.service.is_saved('track1')

    async def test_unexpected_errors_are_not_masked(self):
        self.cache.set_status('track1', True)
        self.clock.advance(6 * MINUTE)
        self.client.contains_saved.side_effect = RuntimeError("bug")
        with self.assertRaises(RuntimeError):
            await self.service.is_saved('track1')


class TestGetItem(LibraryTestCase):

    async def test_fetches_on_miss_and_caches(self):
        self.client.fetch_item.return_value = make_item()

        first = await self.service.get_item('track1')
        second = await self.service.get_item('track1')

        self.assertEqual(first, make_item())
        self.assertEqual(second, first)
        self.client.fetch_item.assert_awaited_once_with('track1')

    async def test_stale_metadata_on_failure(self):
        self.cache.set_metadata(make_item(name='Cached Name'))
        self.clock.advance(11 * MINUTE)
        self.client.fetch_item.side_effect = UpstreamError("503")

        with self.assertLogs('vorbis_core.library', level='WARNING'):
            record = await self.service.get_item('track1')
        self.assertEqual(record.name, 'Cached Name')

    async def test_auth_error_propagates_without_cache(self):
        self.client.fetch_item.side_effect = AuthenticationRequired("expired", status_code=401)
        with self.assertRaises(AuthenticationRequired):
            await self.service.get_item('track1')


class TestSetSaved(LibraryTestCase):

    async def test_commit(self):
        await self.service.set_saved('track1', True)

        self.client.save_items.assert_awaited_once_with(['track1'])
        self.assertTrue(self.cache.get_status('track1'))

    async def test_remove(self):
        self.cache.set_status('track1', True)
        await self.service.set_saved('track1', False)

        self.client.remove_items.assert_awaited_once_with(['track1'])
        self.assertFalse(self.cache.get_status('track1'))

    async def test_tentative_status_visible_while_in_flight(self):
        seen = []

        async def save(ids):
            seen.append(self.cache.get_status('track1'))

        self.client.save_items.side_effect = save
        await self.service.set_saved('track1', True)
        self.assertEqual(seen, [True])

    async def test_rollback_restores_live_previous_status(self):
        self.cache.set_status('track1', False)
        self.client.save_items.side_effect = UpstreamError("500")

        with self.assertLogs('vorbis_core.library', level='WARNING'):
            with self.assertRaises(UpstreamError):
                await self.service.set_saved('track1', True)

        self.assertFalse(self.cache.get_status('track1'))

    async def test_rollback_keeps_original_status_expiry(self):
        self.cache.set_status('track1', False)
        self.clock.advance(4 * MINUTE)
        self.client.save_items.side_effect = UpstreamError("500")

        with self.assertLogs('vorbis_core.library', level='WARNING'):
            with self.assertRaises(UpstreamError):
                await self.service.set_saved('track1', True)

        self.assertFalse(self.cache.get_status('track1'))
        self.clock.advance(2 * MINUTE)
        self.assertIsNone(self.cache.get_status('track1'))

    async def test_rollback_forgets_unknown_status(self):
        self.cache.set_metadata(make_item())
        self.client.save_items.side_effect = UpstreamError("500")

        with self.assertLogs('vorbis_core.library', level='WARNING'):
            with self.assertRaises(UpstreamError):
                await self.service.set_saved('track1', True)

        self.assertIsNone(self.cache.get_status('track1'))
        self.assertIsNone(self.cache.peek_status('track1'))
        self.assertIsNotNone(self.cache.get_metadata('track1'))

    async def test_rollback_does_not_revive_expired_status(self):
        self.cache.set_metadata(make_item())
        self.cache.set_status('track1', True)
        self.clock.advance(6 * MINUTE)
        self.client.remove_items.side_effect = UpstreamError("500")

        with self.assertLogs('vorbis_core.library', level='WARNING'):
            with self.assertRaises(UpstreamError):
                await self.service.set_saved('track1', False)

        self.assertIsNone(self.cache.get_status('track1'))

    async def test_toggle(self):
        self.cache.set_status('track1', True)
        self.assertFalse(await self.service.toggle_saved('track1'))
        self.client.remove_items.assert_awaited_once_with(['track1'])

    async def test_requires_item_id(self):
        with self.assertRaises(ValueError):
            await self.service.set_saved('', True)


class TestBulkLoads(LibraryTestCase):

    def test_fake_client_satisfies_protocol(self):
        self.assertIsInstance(FakeLibraryClient(), UpstreamLibraryClient)

    async def test_load_saved_items_warms_cache(self):
        self.client.fetch_saved_items.return_value = [make_item('a'), make_item('b')]

        records = await self.service.load_saved_items(limit=2)

        self.assertEqual([r.id for r in records], ['a', 'b'])
        self.client.fetch_saved_items.assert_awaited_once_with(2)
        self.assertEqual(self.service.get_cached_item('a').name, 'Song')
        self.assertTrue(self.service.get_cached_status('b'))

    async def test_load_playlist_items_caches_metadata_only(self):
        self.client.fetch_playlist_items.return_value = [make_item('p1')]

        await self.service.load_playlist_items('playlist42')

        self.client.fetch_playlist_items.assert_awaited_once_with('playlist42')
        self.assertIsNotNone(self.service.get_cached_item('p1'))
        self.assertIsNone(self.service.get_cached_status('p1'))


if __name__ == '__main__':
    unittest.main()
