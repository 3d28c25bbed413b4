"""
Cache-first access to the user's music library.

Reads go to the item cache first and to the upstream API only on a miss.
When the upstream fails, a stale cached value (even an expired one) stands
in for the answer; the error reaches the caller only when nothing is cached.

Saving and removing are two-phase: the new status is written to the cache
tentatively, then committed once the upstream confirms or rolled back to
what was there before if it fails.
"""

import logging
from typing import List, Optional

from .upstream_client import UpstreamLibraryClient
from ..cache.cache_metadata import ItemRecord
from ..cache.item_cache import ItemCache
from ..constants import STATUS_FACET
from ..exceptions import UpstreamError


class LibraryService:
    """Library reads and mutations on top of an ItemCache."""

    def __init__(self, client: UpstreamLibraryClient, item_cache: ItemCache):
        self.client = client
        self.item_cache = item_cache
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def get_item(self, item_id: str) -> ItemRecord:
        """Item metadata from cache, else upstream, else a stale cached copy."""
        # Read before get_metadata, which drops a fully expired entry
        stale = self.item_cache.peek_metadata(item_id)
        cached = self.item_cache.get_metadata(item_id)
        if cached is not None:
            return cached

        try:
            record = await self.client.fetch_item(item_id)
        except UpstreamError as e:
            if stale is not None:
                self._logger.warning(f"Using stale cached metadata for {item_id} due to API failure: {e}")
                return stale
            raise

        self.item_cache.set_metadata(record)
        return self.item_cache.get_metadata(item_id) or record

    async def is_saved(self, item_id: str) -> bool:
        """Whether item_id is in the user's library; cache first, stale value on API failure."""
        # Read before get_status, which drops a fully expired entry
        stale = self.item_cache.peek_status(item_id)
        cached = self.item_cache.get_status(item_id)
        if cached is not None:
            return cached

        try:
            flags = await self.client.contains_saved([item_id])
        except UpstreamError as e:
            if stale is not None:
                self._logger.warning(f"Using potentially stale cached status for {item_id} due to API failure: {e}")
                return stale
            raise

        saved = bool(flags[0]) if flags else False
        self.item_cache.set_status(item_id, saved)
        return saved

    async def set_saved(self, item_id: str, saved: bool) -> None:
        """
        Save or remove item_id, reflecting the change in the cache immediately.

        The cache holds the tentative status while the upstream call is in
        flight. On failure the previous status is restored with its original
        expiry (or forgotten if it had already expired) and the error is
        re-raised.
        """
        if not item_id:
            raise ValueError("item_id is required")

        previous = self.item_cache.peek_status(item_id)
        previous_clock = self.item_cache.status_clock(item_id)
        previous_live = previous is not None and not self.item_cache.is_expired(item_id, STATUS_FACET)

        self.item_cache.set_status(item_id, saved)
        try:
            if saved:
                await self.client.save_items([item_id])
            else:
                await self.client.remove_items([item_id])
        except Exception as e:
            self._rollback_status(item_id, previous if previous_live else None, previous_clock)
            self._logger.warning(f"Failed to {'save' if saved else 'remove'} {item_id}, rolled back: {e}")
            raise

        self.item_cache.set_status(item_id, saved)
        self._logger.info(f"{'Saved' if saved else 'Removed'} {item_id} {'to' if saved else 'from'} library")

    async def toggle_saved(self, item_id: str) -> bool:
        """Flip the saved status and return the new value."""
        new_status = not await self.is_saved(item_id)
        await self.set_saved(item_id, new_status)
        return new_status

    async def load_saved_items(self, limit: Optional[int] = None) -> List[ItemRecord]:
        """Fetch the saved library, caching metadata and a saved status for each item."""
        records = await self.client.fetch_saved_items(limit)
        for record in records:
            self.item_cache.set_metadata(record)
            self.item_cache.set_status(record.id, True)
        self._logger.info(f"Loaded {len(records)} saved items")
        return records

    async def load_playlist_items(self, playlist_id: str) -> List[ItemRecord]:
        """Fetch a playlist's tracks, caching their metadata."""
        records = await self.client.fetch_playlist_items(playlist_id)
        for record in records:
            self.item_cache.set_metadata(record)
        self._logger.info(f"Loaded {len(records)} items from playlist {playlist_id}")
        return records

    def get_cached_item(self, item_id: str) -> Optional[ItemRecord]:
        return self.item_cache.get_metadata(item_id)

    def get_cached_status(self, item_id: str) -> Optional[bool]:
        return self.item_cache.get_status(item_id)

    def _rollback_status(self, item_id: str, previous: Optional[bool], clock) -> None:
        if previous is None or clock is None:
            self.item_cache.clear_status(item_id)
        else:
            self.item_cache.restore_status(item_id, previous, clock)
