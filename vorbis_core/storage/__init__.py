"""
Key-value storage abstraction layer for the vorbis core.

Persistence for the item cache, the exclusion set and pinned associations
goes through the KeyValueStoreProtocol, so the backend (memory, JSON file,
SQLite) can be swapped without touching the consumers.
"""

from vorbis_core.storage.base import (
    StorageBackend,
    KeyValueStoreProtocol,
)
from vorbis_core.storage.memory_store import InMemoryKeyValueStore
from vorbis_core.storage.file_store import JsonFileKeyValueStore
from vorbis_core.storage.sqlite_store import SQLiteKeyValueStore

__all__ = [
    "StorageBackend",
    "KeyValueStoreProtocol",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "SQLiteKeyValueStore",
]
