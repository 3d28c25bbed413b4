"""
Durable item to video associations chosen by the user.

Stored as one JSON object keyed by item id under the associations storage
key. A pinned association resolves discovery without searching.
"""

import json
import logging
from typing import Dict, List, Optional

from ..discovery_metadata import AssociationRecord, Candidate
from ...constants import VIDEO_ASSOCIATIONS_STORAGE_KEY
from ...exceptions import CacheCorruption, PersistenceWriteFailure
from ...storage.base import KeyValueStoreProtocol


class PinnedAssociationStore:
    """PinnedAssociationLookup backed by a key-value store."""

    def __init__(self, store: Optional[KeyValueStoreProtocol] = None,
                 storage_key: str = VIDEO_ASSOCIATIONS_STORAGE_KEY):
        self._store = store
        self._storage_key = storage_key
        self._records: Dict[str, AssociationRecord] = {}
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._load()

    def get(self, item_id: str) -> Optional[AssociationRecord]:
        if not item_id:
            return None
        return self._records.get(item_id)

    def pin(self, item_id: str, candidate: Candidate) -> AssociationRecord:
        """Associate item_id with candidate, replacing any previous pin."""
        if not item_id or not candidate.id:
            raise ValueError("item_id and candidate id are required")
        record = AssociationRecord(
            item_id=item_id,
            video_id=candidate.id,
            video_title=candidate.title,
            video_thumbnail=candidate.thumbnail_url,
        )
        self._records[item_id] = record
        self._logger.info(f"Pinned video {candidate.id} to item {item_id}")
        self._persist()
        return record

    def unpin(self, item_id: str) -> bool:
        if self._records.pop(item_id, None) is None:
            return False
        self._logger.info(f"Unpinned item {item_id}")
        self._persist()
        return True

    def all(self) -> List[AssociationRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            payload = {item_id: record.to_dict() for item_id, record in self._records.items()}
            self._store.set(self._storage_key, json.dumps(payload))
        except Exception as e:
            self._logger.warning(f"{PersistenceWriteFailure(self._storage_key, str(e))}")

    def _load(self) -> None:
        if self._store is None:
            return
        try:
            raw = self._store.get(self._storage_key)
        except Exception as e:
            self._logger.warning(f"Failed to read associations '{self._storage_key}': {e}")
            return
        if raw is None:
            return

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("associations must be a JSON object")
            records = {str(item_id): AssociationRecord.from_dict(value) for item_id, value in data.items()}
        except (ValueError, TypeError, KeyError) as e:
            self._logger.warning(f"{CacheCorruption(self._storage_key, str(e))}; discarding associations")
            try:
                self._store.remove(self._storage_key)
            except Exception as remove_error:
                self._logger.warning(f"Failed to remove corrupted associations: {remove_error}")
            return

        self._records = records
