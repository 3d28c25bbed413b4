"""
Persistent set of video ids that must never be offered again.

Ids are added only by explicit caller action after a playback failure and are
never expired or removed automatically. The set is written through to the
key-value store as a JSON array on every change.
"""

import json
import logging
from typing import FrozenSet, Iterable, Optional, Set

from ..constants import VIDEO_BLACKLIST_STORAGE_KEY
from ..exceptions import CacheCorruption, PersistenceWriteFailure
from ..storage.base import KeyValueStoreProtocol


class ExclusionSet:
    """Blacklist of candidate ids, persisted verbatim."""

    def __init__(self,
                 store: Optional[KeyValueStoreProtocol] = None,
                 storage_key: str = VIDEO_BLACKLIST_STORAGE_KEY,
                 initial: Optional[Iterable[str]] = None):
        self._store = store
        self._storage_key = storage_key
        self._ids: Set[str] = set()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self._load()
        if initial:
            new_ids = {i for i in initial if i} - self._ids
            if new_ids:
                self._ids.update(new_ids)
                self._persist()

    def add(self, candidate_id: str) -> None:
        """Exclude candidate_id; adding an id twice changes nothing."""
        if not candidate_id:
            self._logger.debug("add: empty id ignored")
            return
        if candidate_id in self._ids:
            return
        self._ids.add(candidate_id)
        self._logger.info(f"Excluded video {candidate_id} ({len(self._ids)} excluded)")
        self._persist()

    def has(self, candidate_id: str) -> bool:
        return bool(candidate_id) and candidate_id in self._ids

    def remove(self, candidate_id: str) -> None:
        if candidate_id in self._ids:
            self._ids.discard(candidate_id)
            self._logger.info(f"Removed video {candidate_id} from exclusions")
            self._persist()

    def all(self) -> FrozenSet[str]:
        return frozenset(self._ids)

    def clear(self) -> None:
        """Administrative reset; nothing in the discovery flow calls this."""
        count = len(self._ids)
        self._ids.clear()
        self._logger.warning(f"Cleared {count} excluded videos")
        if self._store is None:
            return
        try:
            self._store.remove(self._storage_key)
        except Exception as e:
            self._logger.warning(f"{PersistenceWriteFailure(self._storage_key, str(e))}")

    def __contains__(self, candidate_id) -> bool:
        return self.has(candidate_id)

    def __len__(self) -> int:
        return len(self._ids)

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.set(self._storage_key, json.dumps(sorted(self._ids)))
        except Exception as e:
            failure = PersistenceWriteFailure(self._storage_key, str(e))
            self._logger.warning(f"{failure}; in-memory exclusions remain authoritative")

    def _load(self) -> None:
        if self._store is None:
            return
        try:
            raw = self._store.get(self._storage_key)
        except Exception as e:
            self._logger.warning(f"Failed to read exclusions '{self._storage_key}': {e}")
            return
        if raw is None:
            return

        try:
            data = json.loads(raw)
            if not isinstance(data, list) or not all(isinstance(i, str) for i in data):
                raise ValueError("exclusions must be a JSON array of strings")
        except ValueError as e:
            self._logger.warning(f"{CacheCorruption(self._storage_key, str(e))}; discarding exclusions")
            try:
                self._store.remove(self._storage_key)
            except Exception as remove_error:
                self._logger.warning(f"Failed to remove corrupted exclusions: {remove_error}")
            return

        self._ids = {i for i in data if i}
        self._logger.debug(f"Loaded {len(self._ids)} excluded videos")
