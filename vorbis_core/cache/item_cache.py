"""
Item cache: track metadata and library status with independent TTLs.

Metadata is durable and ages slowly; the "saved in library" status is derived
and ages quickly. Both live on one ItemRecord, each with its own clock, so a
status refresh never extends metadata freshness and vice versa.
"""

import time
import logging
import dataclasses
from typing import Callable, Optional, Tuple

from .bounded_cache import BoundedCache
from .cache_metadata import CacheEntry, ItemRecord, METADATA_FIELDS
from ..constants import METADATA_FACET, STATUS_FACET, TRACK_CACHE_STORAGE_KEY
from ..settings import CacheConfig, validate_cache_config
from ..storage.base import KeyValueStoreProtocol


class ItemCache:
    """Dual-TTL cache of ItemRecords backed by a BoundedCache."""

    def __init__(self,
                 config: Optional[CacheConfig] = None,
                 store: Optional[KeyValueStoreProtocol] = None,
                 storage_key: str = TRACK_CACHE_STORAGE_KEY,
                 clock: Callable[[], float] = time.time):
        self.config = config or CacheConfig()
        error = validate_cache_config(self.config)
        if error:
            raise ValueError(f"Invalid cache configuration: {error}")

        self._clock = clock
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._cache: BoundedCache[ItemRecord] = BoundedCache(
            facet_ttls={
                METADATA_FACET: self.config.metadata_ttl_seconds,
                STATUS_FACET: self.config.status_ttl_seconds,
            },
            max_size=self.config.max_size,
            store=store,
            storage_key=storage_key,
            enable_persistence=self.config.enable_persistence and store is not None,
            facet_fields={
                METADATA_FACET: METADATA_FIELDS,
                STATUS_FACET: ('status',),
            },
            encode_value=ItemRecord.to_dict,
            decode_value=ItemRecord.from_dict,
            clock=clock,
        )

        if self.config.enable_persistence and store is None:
            self._logger.warning("Cache persistence requested without a store; running in memory only")

    @property
    def bounded_cache(self) -> BoundedCache[ItemRecord]:
        return self._cache

    def set_metadata(self, item: ItemRecord) -> None:
        """
        Cache item metadata, refreshing the metadata clock only.

        A cached status that is still live is carried over; an expired one is
        dropped together with its clock.
        """
        if item is None or not item.id:
            self._logger.debug("set_metadata: item without id ignored")
            return

        status = None
        entry = self._cache.peek_entry(item.id)
        if entry is not None and STATUS_FACET in entry.expires_at:
            if entry.is_facet_expired(STATUS_FACET, self._clock()):
                self._cache.drop_facet(item.id, STATUS_FACET)
            else:
                status = entry.value.status

        record = dataclasses.replace(
            item,
            status=status,
            metadata_fetched_at=None,
            metadata_expires_at=None,
            status_checked_at=None,
            status_expires_at=None,
        )
        self._cache.set(item.id, record, METADATA_FACET)

    def set_status(self, key: str, status: bool) -> None:
        """Cache the library status, creating a minimal record when needed."""
        if not key:
            self._logger.debug("set_status: invalid key provided")
            return

        existing = self._cache.peek(key)
        if existing is not None:
            record = dataclasses.replace(existing, status=bool(status))
        else:
            record = ItemRecord(id=key, status=bool(status))
        self._cache.set(key, record, STATUS_FACET)

    def get_metadata(self, key: str) -> Optional[ItemRecord]:
        """Live metadata for key, with status included only when it is live too."""
        record = self._cache.get(key, METADATA_FACET)
        if record is None:
            return None
        entry = self._cache.peek_entry(key)
        if entry is None or entry.is_facet_expired(STATUS_FACET, self._clock()):
            record.status = None
        return self._with_clocks(record, entry)

    def get_status(self, key: str) -> Optional[bool]:
        record = self._cache.get(key, STATUS_FACET)
        return record.status if record is not None else None

    def peek_metadata(self, key: str) -> Optional[ItemRecord]:
        """Metadata regardless of expiry; used as an outage fallback."""
        entry = self._cache.peek_entry(key)
        if entry is None or METADATA_FACET not in entry.written_at:
            return None
        record = entry.value
        if STATUS_FACET not in entry.written_at:
            record.status = None
        return self._with_clocks(record, entry)

    def peek_status(self, key: str) -> Optional[bool]:
        """Status regardless of expiry; used as an outage fallback."""
        entry = self._cache.peek_entry(key)
        if entry is None or STATUS_FACET not in entry.written_at:
            return None
        return entry.value.status

    def status_clock(self, key: str) -> Optional[Tuple[float, float]]:
        """(written_at, expires_at) of the cached status, regardless of expiry."""
        entry = self._cache.peek_entry(key)
        if entry is None or STATUS_FACET not in entry.written_at:
            return None
        return entry.written_at[STATUS_FACET], entry.expires_at[STATUS_FACET]

    def restore_status(self, key: str, status: bool, clock: Tuple[float, float]) -> None:
        """Cache status again under a clock from status_clock, without a fresh TTL."""
        self.set_status(key, status)
        self._cache.restore_facet(key, STATUS_FACET, *clock)

    def clear_status(self, key: str) -> None:
        """Forget the cached status for key, keeping its metadata."""
        self._cache.drop_facet(key, STATUS_FACET)

    def update_item(self, key: str, **fields) -> None:
        """Partially update a cached record; only the facets touched are refreshed."""
        fields.pop('id', None)
        if not fields:
            return
        self._cache.update(key, fields)

    def has_item(self, key: str) -> bool:
        return self._cache.has(key)

    def delete(self, key: str) -> None:
        self._cache.delete(key)

    def clear(self) -> None:
        self._cache.clear()

    def cleanup(self) -> int:
        return self._cache.cleanup()

    def is_expired(self, key: str, kind: Optional[str] = None) -> bool:
        return self._cache.is_expired(key, kind)

    def size(self) -> int:
        return self._cache.size()

    def __len__(self) -> int:
        return self._cache.size()

    @staticmethod
    def _with_clocks(record: ItemRecord, entry: Optional[CacheEntry]) -> ItemRecord:
        if entry is None:
            return record
        record.metadata_fetched_at = entry.written_at.get(METADATA_FACET)
        record.metadata_expires_at = entry.expires_at.get(METADATA_FACET)
        record.status_checked_at = entry.written_at.get(STATUS_FACET)
        record.status_expires_at = entry.expires_at.get(STATUS_FACET)
        return record
