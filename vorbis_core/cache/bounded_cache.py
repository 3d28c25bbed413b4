"""
Size-bounded, multi-facet TTL cache with LRU eviction.

Each entry carries one expiry clock per facet (for example "metadata" and
"status"). Writing a facet refreshes only that facet's clock. An entry is
removed by cleanup only once every facet has expired, while LRU eviction
ignores expiry entirely. When persistence is enabled the whole cache is
written through to a key-value store after every mutation.
"""

import copy
import json
import time
import logging
import dataclasses
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from .cache_metadata import CacheEntry
from ..exceptions import CacheCorruption, PersistenceWriteFailure
from ..storage.base import KeyValueStoreProtocol

V = TypeVar('V')


class BoundedCache(Generic[V]):
    """Dual-TTL (or n-TTL), LRU-bounded cache keyed by item identity."""

    def __init__(self,
                 facet_ttls: Mapping[str, float],
                 max_size: int,
                 store: Optional[KeyValueStoreProtocol] = None,
                 storage_key: Optional[str] = None,
                 enable_persistence: bool = False,
                 facet_fields: Optional[Mapping[str, Iterable[str]]] = None,
                 encode_value: Optional[Callable[[V], Any]] = None,
                 decode_value: Optional[Callable[[Any], V]] = None,
                 clock: Callable[[], float] = time.time):
        if max_size <= 0:
            raise ValueError("max_size must be greater than 0")
        if not facet_ttls:
            raise ValueError("at least one facet TTL is required")
        if enable_persistence and (store is None or not storage_key):
            raise ValueError("persistence requires a store and a storage_key")

        self.max_size = max_size
        self._facet_ttls: Dict[str, float] = dict(facet_ttls)
        self._facet_fields: Dict[str, frozenset] = {
            kind: frozenset(names) for kind, names in (facet_fields or {}).items()
        }
        self._store = store
        self._storage_key = storage_key
        self._persistence_enabled = enable_persistence
        self._encode_value = encode_value
        self._decode_value = decode_value
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self._load()

    @property
    def persistence_enabled(self) -> bool:
        return self._persistence_enabled

    @staticmethod
    def _valid_key(key) -> bool:
        return isinstance(key, str) and bool(key)

    def get(self, key: str, kind: Optional[str] = None) -> Optional[V]:
        """
        Return a copy of the cached value, or None on a miss.

        With kind, the named facet must be live. Without kind, at least one
        facet must be live. An entry found with every facet expired is
        deleted.
        """
        if not self._valid_key(key):
            self._logger.debug("get: invalid key provided")
            return None

        entry = self._entries.get(key)
        if entry is None:
            self._logger.debug(f"get: {key} not found in cache")
            return None

        now = self._clock()
        if entry.is_fully_expired(now):
            self._logger.debug(f"get: {key} fully expired, removing")
            del self._entries[key]
            self._persist()
            return None

        if kind is not None and entry.is_facet_expired(kind, now):
            self._logger.debug(f"get: {kind} facet of {key} expired")
            return None

        self._touch(key, entry, now)
        return copy.deepcopy(entry.value)

    def peek(self, key: str) -> Optional[V]:
        """Return a copy of the value regardless of expiry, without an LRU touch."""
        if not self._valid_key(key):
            return None
        entry = self._entries.get(key)
        return copy.deepcopy(entry.value) if entry is not None else None

    def peek_entry(self, key: str) -> Optional[CacheEntry[V]]:
        """Return a copy of the whole entry, including its clocks."""
        if not self._valid_key(key):
            return None
        entry = self._entries.get(key)
        return copy.deepcopy(entry) if entry is not None else None

    def set(self, key: str, value: V, kind: str) -> None:
        """Store value and refresh the clock of facet kind only."""
        if not self._valid_key(key):
            self._logger.debug("set: invalid key provided")
            return
        if kind not in self._facet_ttls:
            self._logger.warning(f"set: unknown facet '{kind}' for {key}, ignoring")
            return

        now = self._clock()
        entry = self._entries.pop(key, None)
        if entry is None:
            entry = CacheEntry(value=copy.deepcopy(value), created_at=now, last_accessed_at=now)
        else:
            entry.value = copy.deepcopy(value)
            entry.last_accessed_at = now

        self._refresh_facet(entry, kind, now)
        self._entries[key] = entry
        self._logger.debug(f"set: cached {key} ({kind})")

        self._enforce_max_size()
        self._persist()

    def update(self, key: str, partial: Mapping[str, Any], kind: Optional[str] = None) -> None:
        """
        Merge partial into an existing value.

        The facets refreshed are kind when given, otherwise every facet whose
        declared fields intersect the keys of partial. Missing keys are a
        no-op.
        """
        if not self._valid_key(key):
            self._logger.debug("update: invalid key provided")
            return

        entry = self._entries.get(key)
        if entry is None:
            self._logger.debug(f"update: {key} not found in cache")
            return

        now = self._clock()
        entry.value = self._merge(entry.value, partial)
        entry.last_accessed_at = now

        if kind is not None:
            touched = [kind] if kind in self._facet_ttls else []
        else:
            touched = [f for f, names in self._facet_fields.items() if names.intersection(partial)]
        for facet in touched:
            self._refresh_facet(entry, facet, now)

        self._entries[key] = self._entries.pop(key)
        self._logger.debug(f"update: updated {key}, refreshed facets {touched}")
        self._persist()

    def restore_facet(self, key: str, kind: str, written_at: float, expires_at: float) -> None:
        """Put back a facet clock taken from an earlier peek_entry."""
        entry = self._entries.get(key) if self._valid_key(key) else None
        if entry is None or kind not in self._facet_ttls:
            return
        entry.written_at[kind] = written_at
        entry.expires_at[kind] = expires_at
        self._persist()

    def drop_facet(self, key: str, kind: str) -> None:
        """Forget the clock of one facet, leaving it expired."""
        entry = self._entries.get(key) if self._valid_key(key) else None
        if entry is None:
            return
        entry.expires_at.pop(kind, None)
        entry.written_at.pop(kind, None)
        if not entry.expires_at:
            del self._entries[key]
        self._persist()

    def delete(self, key: str) -> None:
        if not self._valid_key(key):
            self._logger.debug("delete: invalid key provided")
            return
        if self._entries.pop(key, None) is not None:
            self._logger.debug(f"delete: removed {key} from cache")
            self._persist()

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        self._logger.debug(f"clear: cleared cache of {size} entries")

        if self._persistence_enabled:
            try:
                self._store.remove(self._storage_key)
            except Exception as e:
                failure = PersistenceWriteFailure(self._storage_key, str(e))
                self._logger.warning(f"{failure}; in-memory cache remains authoritative")

    def cleanup(self) -> int:
        """Remove entries whose facets are all expired and return how many were removed."""
        now = self._clock()
        removed_count = 0

        for key in list(self._entries.keys()):
            entry = self._entries.get(key)
            if entry is not None and entry.is_fully_expired(now):
                del self._entries[key]
                removed_count += 1

        if removed_count > 0:
            self._logger.info(f"Cleaned up {removed_count} expired cache entries")
            self._persist()

        return removed_count

    def is_expired(self, key: str, kind: Optional[str] = None) -> bool:
        if not self._valid_key(key):
            return True
        entry = self._entries.get(key)
        if entry is None:
            return True
        now = self._clock()
        if kind is not None:
            return entry.is_facet_expired(kind, now)
        return entry.is_fully_expired(now)

    def has(self, key: str) -> bool:
        """Whether key is present, regardless of expiry."""
        return self._valid_key(key) and key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _touch(self, key: str, entry: CacheEntry[V], now: float) -> None:
        entry.last_accessed_at = now
        self._entries[key] = self._entries.pop(key)

    def _refresh_facet(self, entry: CacheEntry[V], kind: str, now: float) -> None:
        entry.written_at[kind] = now
        entry.expires_at[kind] = now + self._facet_ttls[kind]

    @staticmethod
    def _merge(value, partial: Mapping[str, Any]):
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            known = {f.name for f in dataclasses.fields(value)}
            return dataclasses.replace(value, **{k: v for k, v in partial.items() if k in known})
        if isinstance(value, dict):
            merged = dict(value)
            merged.update(partial)
            return merged
        raise TypeError(f"cannot apply a partial update to {type(value).__name__}")

    def _enforce_max_size(self) -> int:
        """Evict least recently used entries until the cache is within max_size."""
        excess = len(self._entries) - self.max_size
        if excess <= 0:
            return 0

        # sorted() is stable, so insertion (recency) order breaks timestamp ties
        oldest_first = sorted(self._entries.items(), key=lambda item: item[1].last_accessed_at)
        for key, _ in oldest_first[:excess]:
            del self._entries[key]

        self._logger.debug(f"Evicted {excess} entries using LRU policy (max_size: {self.max_size})")
        return excess

    def _persist(self) -> None:
        """Write the whole cache through to the store; failures are logged only."""
        if not self._persistence_enabled:
            return
        try:
            payload = json.dumps([
                [key, entry.to_dict(self._encode_value)]
                for key, entry in self._entries.items()
            ])
            self._store.set(self._storage_key, payload)
        except Exception as e:
            failure = PersistenceWriteFailure(self._storage_key, str(e))
            self._logger.warning(f"{failure}; in-memory cache remains authoritative")

    def _load(self) -> None:
        """Load a persisted snapshot; a malformed snapshot is discarded."""
        if not self._persistence_enabled:
            return

        try:
            raw = self._store.get(self._storage_key)
        except Exception as e:
            self._logger.warning(f"Failed to read cache snapshot '{self._storage_key}': {e}")
            return

        if raw is None:
            return

        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"snapshot must be an array, got {type(data).__name__}")

            entries: Dict[str, CacheEntry[V]] = {}
            for pair in data:
                if not isinstance(pair, list) or len(pair) != 2 or not self._valid_key(pair[0]):
                    raise ValueError(f"malformed [key, entry] pair: {pair!r}")
                entries[pair[0]] = CacheEntry.from_dict(pair[1], self._decode_value)

        except (ValueError, TypeError, KeyError) as e:
            corruption = CacheCorruption(self._storage_key, str(e))
            self._logger.warning(f"{corruption}; discarding snapshot")
            self._entries = {}
            try:
                self._store.remove(self._storage_key)
            except Exception as remove_error:
                self._logger.warning(f"Failed to remove corrupted snapshot: {remove_error}")
            return

        self._entries = entries
        evicted = self._enforce_max_size()
        self._logger.info(f"Loaded {len(entries)} cache entries from '{self._storage_key}'"
                          + (f", evicted {evicted} over max_size" if evicted else ""))
