"""
JSON file-backed key-value store.

All keys live in a single JSON object on disk. Writes go to a temporary
sibling file which then replaces the original, so a crash mid-write leaves
the previous snapshot intact.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional


class JsonFileKeyValueStore:
    """KeyValueStoreProtocol implementation persisting to one JSON file."""

    def __init__(self, path: str):
        self._path = Path(path)
        self._data: Dict[str, str] = {}
        self._loaded = False
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._logger.warning(f"Ignoring unreadable store file {self._path}: {e}")
            return
        if isinstance(payload, dict):
            self._data = {str(k): v for k, v in payload.items() if isinstance(v, str)}
        else:
            self._logger.warning(f"Ignoring store file {self._path}: top level is not an object")

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        tmp_path.write_text(json.dumps(self._data, ensure_ascii=True, separators=(",", ":")),
                            encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> Optional[str]:
        self._load()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._load()
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        self._load()
        if self._data.pop(key, None) is not None:
            self._flush()
