"""
Data structures for the item cache.

CacheEntry wraps any cached value with its access and per-facet expiry
bookkeeping. ItemRecord is the value the item cache stores: track metadata
plus the separately aged "saved in library" status.
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Generic, Optional, TypeVar

V = TypeVar('V')


@dataclass
class CacheEntry(Generic[V]):
    """A cached value and its bookkeeping. Mutated only by BoundedCache."""
    value: V
    created_at: float
    last_accessed_at: float
    expires_at: Dict[str, float] = field(default_factory=dict)
    written_at: Dict[str, float] = field(default_factory=dict)

    def is_facet_expired(self, kind: str, now: float) -> bool:
        """A facet that was never written counts as expired."""
        expires_at = self.expires_at.get(kind)
        return expires_at is None or now > expires_at

    def is_fully_expired(self, now: float) -> bool:
        """True when every facet of the entry is expired."""
        return all(now > expires_at for expires_at in self.expires_at.values())

    def to_dict(self, encode_value=None) -> Dict[str, Any]:
        return {
            'value': encode_value(self.value) if encode_value else self.value,
            'created_at': self.created_at,
            'last_accessed_at': self.last_accessed_at,
            'expires_at': dict(self.expires_at),
            'written_at': dict(self.written_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], decode_value=None) -> 'CacheEntry':
        """Rebuild an entry from its serialized form; raises on malformed input."""
        if not isinstance(data, dict):
            raise ValueError(f"cache entry must be an object, got {type(data).__name__}")
        expires_at = data.get('expires_at') or {}
        written_at = data.get('written_at') or {}
        if not isinstance(expires_at, dict) or not isinstance(written_at, dict):
            raise ValueError("expires_at and written_at must be objects")
        raw_value = data['value']
        return cls(
            value=decode_value(raw_value) if decode_value else raw_value,
            created_at=float(data['created_at']),
            last_accessed_at=float(data['last_accessed_at']),
            expires_at={str(k): float(v) for k, v in expires_at.items()},
            written_at={str(k): float(v) for k, v in written_at.items()},
        )


# Fields that belong to the metadata facet; everything except id and status.
METADATA_FIELDS = ('name', 'artists', 'album', 'duration_ms', 'uri', 'image', 'preview_url')


@dataclass
class ItemRecord:
    """Track metadata plus the derived saved-in-library status."""
    id: str
    name: str = ''
    artists: str = ''
    album: str = ''
    duration_ms: int = 0
    uri: str = ''
    image: Optional[str] = None
    preview_url: Optional[str] = None
    status: Optional[bool] = None

    # Filled in by ItemCache on reads; not part of the record's identity
    metadata_fetched_at: Optional[float] = field(default=None, compare=False)
    metadata_expires_at: Optional[float] = field(default=None, compare=False)
    status_checked_at: Optional[float] = field(default=None, compare=False)
    status_expires_at: Optional[float] = field(default=None, compare=False)

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the semantic fields; clock fields live on the CacheEntry."""
        data = asdict(self)
        for key in ('metadata_fetched_at', 'metadata_expires_at',
                    'status_checked_at', 'status_expires_at'):
            data.pop(key)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ItemRecord':
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError("item record must be an object with an id")
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
