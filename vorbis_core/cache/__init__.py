"""
Dual-TTL, LRU-bounded caching for item metadata and library status.
"""

from .cache_metadata import CacheEntry, ItemRecord, METADATA_FIELDS
from .bounded_cache import BoundedCache
from .item_cache import ItemCache
from .cleanup_scheduler import CleanupScheduler

__all__ = [
    'CacheEntry',
    'ItemRecord',
    'METADATA_FIELDS',
    'BoundedCache',
    'ItemCache',
    'CleanupScheduler',
]
