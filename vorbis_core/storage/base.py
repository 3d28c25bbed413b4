"""
Core abstractions for key-value storage backends.

Defines the KeyValueStoreProtocol that every persistence backend must
implement. The cache, the exclusion set and the pinned association store
only ever talk to this protocol.
"""

from enum import Enum
from typing import Optional, Protocol, runtime_checkable


class StorageBackend(Enum):
    """Supported key-value store backends."""
    MEMORY = "memory"
    JSON_FILE = "json_file"
    SQLITE = "sqlite"


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """Protocol that all key-value stores must implement."""

    def get(self, key: str) -> Optional[str]:
        """Return the string stored under key, or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    def remove(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""
        ...
