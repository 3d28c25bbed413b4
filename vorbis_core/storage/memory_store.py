"""In-memory key-value store, used in tests and when persistence is disabled."""

from typing import Dict, Optional


class InMemoryKeyValueStore:
    """Dictionary-backed implementation of KeyValueStoreProtocol."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)
