"""
Key-value store factory and configuration loading.

Reads the [Storage] section from settings.ini (env vars override)
and returns the appropriate store instance.
"""

import os
from dataclasses import dataclass
from typing import Optional

from vorbis_core.constants import DEFAULT_JSON_STORE_PATH, DEFAULT_SQLITE_PATH
from vorbis_core.settings import get_setting, read_settings
from vorbis_core.storage.base import StorageBackend


@dataclass
class StorageConfig:
    """All storage-related configuration."""
    backend: StorageBackend = StorageBackend.MEMORY
    json_path: str = DEFAULT_JSON_STORE_PATH
    sqlite_path: str = DEFAULT_SQLITE_PATH


def load_storage_config(config_path: Optional[str] = None) -> StorageConfig:
    """Load storage configuration from settings.ini with env var overrides."""
    parser = read_settings(config_path)

    backend_str = os.getenv("VORBIS_STORAGE_BACKEND") or get_setting(parser, "Storage", "backend", "memory")
    try:
        backend = StorageBackend(backend_str.lower())
    except ValueError:
        raise ValueError(
            f"Invalid storage backend '{backend_str}'. "
            f"Must be one of: {', '.join(b.value for b in StorageBackend)}"
        )

    json_path = os.getenv("VORBIS_JSON_STORE_PATH") or get_setting(parser, "Storage", "json_path", DEFAULT_JSON_STORE_PATH)
    sqlite_path = os.getenv("VORBIS_SQLITE_PATH") or get_setting(parser, "Storage", "sqlite_path", DEFAULT_SQLITE_PATH)

    return StorageConfig(
        backend=backend,
        json_path=json_path,
        sqlite_path=sqlite_path,
    )


def get_key_value_store(config: Optional[StorageConfig] = None):
    """Factory: return the configured key-value store instance."""
    if config is None:
        config = load_storage_config()

    if config.backend == StorageBackend.JSON_FILE:
        from vorbis_core.storage.file_store import JsonFileKeyValueStore
        return JsonFileKeyValueStore(config.json_path)

    if config.backend == StorageBackend.SQLITE:
        from vorbis_core.storage.sqlite_store import SQLiteKeyValueStore
        return SQLiteKeyValueStore(config.sqlite_path)

    from vorbis_core.storage.memory_store import InMemoryKeyValueStore
    return InMemoryKeyValueStore()
