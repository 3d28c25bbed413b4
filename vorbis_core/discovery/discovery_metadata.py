"""
Data structures for video discovery.

Candidates and resolutions are request-scoped: they live only for the
duration of one discovery call. AssociationRecord is the one durable shape,
stored by the pinned association store.
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..constants import (
    DEFAULT_MIN_QUALITY_SCORE,
    DEFAULT_MIN_CHANNEL_QUALITY,
    DEFAULT_QUALITY_WEIGHT,
    DEFAULT_RELEVANCE_WEIGHT,
)


class EmbedStatus(Enum):
    """Signal categories produced by an embeddability check."""
    EMBEDDABLE = "embeddable"
    NOT_EMBEDDABLE = "not_embeddable"
    PROVIDER_ERROR = "provider_error"


class RejectionReason(Enum):
    """Why the content filter rejected a candidate."""
    PROMOTIONAL = "promotional"
    LOW_CHANNEL_QUALITY = "low_channel_quality"
    LOW_QUALITY = "low_quality"
    DURATION_OUT_OF_RANGE = "duration_out_of_range"
    NOT_EMBEDDABLE = "not_embeddable"
    EMBED_CHECK_FAILED = "embed_check_failed"


class ResolutionKind(Enum):
    """Outcome of one discovery call."""
    RESOLVED = "resolved"
    NONE_EMBEDDABLE = "none_embeddable"
    NONE_FOUND = "none_found"
    FAILED = "failed"


class DiscoveryState(Enum):
    """States of the discovery orchestrator."""
    IDLE = "idle"
    CHECKING_PINNED = "checking_pinned"
    SEARCHING = "searching"
    FILTERING = "filtering"
    RESOLVED = "resolved"
    NONE_EMBEDDABLE = "none_embeddable"
    NONE_FOUND = "none_found"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    DiscoveryState.RESOLVED,
    DiscoveryState.NONE_EMBEDDABLE,
    DiscoveryState.NONE_FOUND,
    DiscoveryState.FAILED,
})


class FailureKind(Enum):
    """Classification of a FAILED resolution."""
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UPSTREAM = "upstream"
    UNEXPECTED = "unexpected"


@dataclass
class Candidate:
    """A single externally hosted video proposed for an item."""
    id: str
    title: str = ""
    channel: str = ""
    thumbnail_url: Optional[str] = None
    duration_sec: Optional[float] = None
    quality_score: Optional[float] = None
    embeddable: Optional[bool] = None       # None until checked
    restriction_reason: Optional[str] = None
    search_rank: int = 0                    # 0 is the provider's top result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], search_rank: int = 0) -> 'Candidate':
        """Build a candidate from a provider payload (camelCase or snake_case keys)."""
        def pick(*names):
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return None

        candidate_id = pick('id', 'videoId', 'video_id')
        if not candidate_id:
            raise ValueError("candidate payload has no id")

        duration = pick('duration_sec', 'durationSec', 'duration')
        quality = pick('quality_score', 'qualityScore')
        embeddable = pick('embeddable', 'isEmbeddable')
        return cls(
            id=str(candidate_id),
            title=pick('title') or "",
            channel=pick('channel', 'channelTitle', 'channelName') or "",
            thumbnail_url=pick('thumbnail_url', 'thumbnailUrl', 'thumbnail'),
            duration_sec=float(duration) if duration is not None else None,
            quality_score=float(quality) if quality is not None else None,
            embeddable=bool(embeddable) if embeddable is not None else None,
            restriction_reason=pick('restriction_reason', 'restrictionReason', 'reason'),
            search_rank=search_rank,
        )


@dataclass(frozen=True)
class EmbedCheck:
    """Result of asking the provider whether a candidate can be embedded."""
    status: EmbedStatus
    reason: Optional[str] = None

    @property
    def embeddable(self) -> bool:
        return self.status == EmbedStatus.EMBEDDABLE

    @classmethod
    def embeddable_result(cls) -> 'EmbedCheck':
        return cls(status=EmbedStatus.EMBEDDABLE)

    @classmethod
    def not_embeddable_result(cls, reason: Optional[str] = None) -> 'EmbedCheck':
        return cls(status=EmbedStatus.NOT_EMBEDDABLE, reason=reason)

    @classmethod
    def provider_error_result(cls, reason: str) -> 'EmbedCheck':
        return cls(status=EmbedStatus.PROVIDER_ERROR, reason=reason)


@dataclass
class FilterCriteria:
    """Thresholds and weights for the content filter."""
    min_quality_score: float = DEFAULT_MIN_QUALITY_SCORE
    min_channel_quality: float = DEFAULT_MIN_CHANNEL_QUALITY
    min_duration_sec: Optional[float] = None
    max_duration_sec: Optional[float] = None
    expected_duration_sec: Optional[float] = None
    expected_artist: Optional[str] = None
    require_embeddable: bool = True
    quality_weight: float = DEFAULT_QUALITY_WEIGHT
    relevance_weight: float = DEFAULT_RELEVANCE_WEIGHT


@dataclass(frozen=True)
class Rejection:
    """A rejected candidate and every cause that applied to it."""
    candidate: Candidate
    reasons: Tuple[RejectionReason, ...]

    @property
    def only_embeddability(self) -> bool:
        return self.reasons == (RejectionReason.NOT_EMBEDDABLE,)


@dataclass
class ScoredCandidate:
    """An accepted candidate with its ranking score."""
    candidate: Candidate
    score: float
    channel_quality: float


@dataclass
class FilterResult:
    """Accepted candidates, best first, plus the rejections."""
    accepted: List[ScoredCandidate] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    all_rejected_for_embedding: bool = False

    @property
    def best(self) -> Optional[Candidate]:
        return self.accepted[0].candidate if self.accepted else None

    @property
    def accepted_candidates(self) -> List[Candidate]:
        return [scored.candidate for scored in self.accepted]


@dataclass
class Resolution:
    """Tagged outcome of a discovery call."""
    kind: ResolutionKind
    item_id: str
    candidate: Optional[Candidate] = None
    pinned: bool = False
    error: Optional[BaseException] = None
    failure_kind: Optional[FailureKind] = None
    retryable: bool = False
    rejections: List[Rejection] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        return self.kind == ResolutionKind.RESOLVED

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    @classmethod
    def resolved(cls, item_id: str, candidate: Candidate, pinned: bool = False) -> 'Resolution':
        return cls(kind=ResolutionKind.RESOLVED, item_id=item_id, candidate=candidate, pinned=pinned)

    @classmethod
    def none_embeddable(cls, item_id: str, rejections: Optional[List[Rejection]] = None) -> 'Resolution':
        return cls(kind=ResolutionKind.NONE_EMBEDDABLE, item_id=item_id, rejections=rejections or [])

    @classmethod
    def none_found(cls, item_id: str, rejections: Optional[List[Rejection]] = None) -> 'Resolution':
        return cls(kind=ResolutionKind.NONE_FOUND, item_id=item_id, rejections=rejections or [])

    @classmethod
    def failed(cls, item_id: str, error: BaseException, failure_kind: FailureKind,
               retryable: bool) -> 'Resolution':
        return cls(kind=ResolutionKind.FAILED, item_id=item_id, error=error,
                   failure_kind=failure_kind, retryable=retryable)


@dataclass
class AssociationRecord:
    """A durable, caller-established mapping from an item to a video."""
    item_id: str
    video_id: str
    video_title: str = ""
    video_thumbnail: Optional[str] = None
    created_at: float = 0.0

    def __post_init__(self):
        if self.created_at == 0.0:
            self.created_at = time.time()

    def to_candidate(self) -> Candidate:
        return Candidate(
            id=self.video_id,
            title=self.video_title,
            thumbnail_url=self.video_thumbnail,
            embeddable=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'video_id': self.video_id,
            'video_title': self.video_title,
            'video_thumbnail': self.video_thumbnail,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssociationRecord':
        return cls(
            item_id=str(data['item_id']),
            video_id=str(data['video_id']),
            video_title=data.get('video_title') or "",
            video_thumbnail=data.get('video_thumbnail'),
            created_at=float(data.get('created_at') or 0.0),
        )
