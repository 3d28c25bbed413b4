"""
Candidate filtering and ranking.

filter_candidates is pure: it never calls a provider and never touches the
exclusion set. Every rejected candidate records all of the causes that
applied to it, so callers can tell "nothing suitable exists" apart from
"suitable videos exist but none can be embedded".
"""

import re
import logging
import unicodedata
from typing import Collection, Iterable, List, Optional

from .discovery_metadata import (
    Candidate,
    FilterCriteria,
    FilterResult,
    Rejection,
    RejectionReason,
    ScoredCandidate,
)
from ..constants import (
    DEFAULT_QUALITY_SCORE,
    DURATION_MATCH_BONUS,
    DURATION_MATCH_TOLERANCE_SECONDS,
)

logger = logging.getLogger(__name__)

_PROMOTIONAL_RE = re.compile(
    r"\b("
    r"ads?|advert(?:isement)?|sponsored|promo(?:tion|tional)?|commercial|"
    r"trailer|teaser|reaction|unboxing|giveaway"
    r")\b",
    re.IGNORECASE,
)

_HIGH_QUALITY_CHANNEL_RE = re.compile(r"(\s-\s*topic$|vevo|\bofficial\b|\brecords\b)", re.IGNORECASE)
_LOW_QUALITY_CHANNEL_RE = re.compile(
    r"\b(lyrics?|fan(?:s|made|page)?|nightcore|8d|re-?uploads?|karaoke|covers?|sped\s*up|slowed)\b",
    re.IGNORECASE,
)

HIGH_CHANNEL_QUALITY = 1.0
ARTIST_CHANNEL_QUALITY = 0.9
MEDIUM_CHANNEL_QUALITY = 0.5
LOW_CHANNEL_QUALITY = 0.1

# Share of the quality signal taken from the video itself vs. its channel
ITEM_QUALITY_SHARE = 0.7


def _normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    text = unicodedata.normalize("NFKD", str(value)).lower()
    return re.sub(r"[^a-z0-9]+", "", text)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def is_promotional(title: Optional[str]) -> bool:
    """True when the title looks like an ad, trailer, reaction or similar."""
    return bool(title) and _PROMOTIONAL_RE.search(title) is not None


def channel_quality(channel: Optional[str], expected_artist: Optional[str] = None) -> float:
    """
    Heuristic channel authority in [0, 1].

    Auto-generated "Topic" channels, VEVO and official channels rank high, as
    does a channel named after the expected artist. Lyric, fan and re-upload
    channels rank low. Anything else is medium.
    """
    if not channel:
        return MEDIUM_CHANNEL_QUALITY
    name = channel.strip()
    if _LOW_QUALITY_CHANNEL_RE.search(name):
        return LOW_CHANNEL_QUALITY
    if _HIGH_QUALITY_CHANNEL_RE.search(name):
        return HIGH_CHANNEL_QUALITY

    artist = _normalize(expected_artist.split(",")[0] if expected_artist else None)
    if artist and artist in _normalize(name):
        return ARTIST_CHANNEL_QUALITY
    return MEDIUM_CHANNEL_QUALITY


def relevance_from_rank(search_rank: int) -> float:
    """Earlier results are more relevant: rank 0 scores 1.0, then 1/2, 1/3, ..."""
    return 1.0 / (1 + max(0, search_rank))


def score_candidate(candidate: Candidate, criteria: FilterCriteria,
                    channel_score: Optional[float] = None) -> float:
    if channel_score is None:
        channel_score = channel_quality(candidate.channel, criteria.expected_artist)
    quality = clamp01(candidate.quality_score if candidate.quality_score is not None else DEFAULT_QUALITY_SCORE)
    blended_quality = ITEM_QUALITY_SHARE * quality + (1 - ITEM_QUALITY_SHARE) * channel_score

    score = (criteria.quality_weight * blended_quality
             + criteria.relevance_weight * relevance_from_rank(candidate.search_rank))

    if (criteria.expected_duration_sec is not None and candidate.duration_sec is not None
            and abs(candidate.duration_sec - criteria.expected_duration_sec) <= DURATION_MATCH_TOLERANCE_SECONDS):
        score += DURATION_MATCH_BONUS
    return score


def rejection_reasons(candidate: Candidate, criteria: FilterCriteria,
                      channel_score: float,
                      embed_check_failures: Collection[str] = ()) -> List[RejectionReason]:
    reasons = []

    if is_promotional(candidate.title):
        reasons.append(RejectionReason.PROMOTIONAL)

    if channel_score < criteria.min_channel_quality:
        reasons.append(RejectionReason.LOW_CHANNEL_QUALITY)

    quality = candidate.quality_score if candidate.quality_score is not None else DEFAULT_QUALITY_SCORE
    if quality < criteria.min_quality_score:
        reasons.append(RejectionReason.LOW_QUALITY)

    if candidate.duration_sec is not None:
        too_short = criteria.min_duration_sec is not None and candidate.duration_sec < criteria.min_duration_sec
        too_long = criteria.max_duration_sec is not None and candidate.duration_sec > criteria.max_duration_sec
        if too_short or too_long:
            reasons.append(RejectionReason.DURATION_OUT_OF_RANGE)

    if criteria.require_embeddable:
        if candidate.id in embed_check_failures:
            reasons.append(RejectionReason.EMBED_CHECK_FAILED)
        elif candidate.embeddable is False:
            reasons.append(RejectionReason.NOT_EMBEDDABLE)

    return reasons


def filter_candidates(candidates: Iterable[Candidate],
                      criteria: Optional[FilterCriteria] = None,
                      embed_check_failures: Collection[str] = ()) -> FilterResult:
    """
    Split candidates into ranked accepted ones and rejections.

    Candidates whose embeddability is still unknown are accepted on that
    criterion. Ids in embed_check_failures could not be checked and are
    rejected with EMBED_CHECK_FAILED, which does not count as an
    embeddability rejection.
    """
    criteria = criteria or FilterCriteria()
    accepted: List[ScoredCandidate] = []
    rejections: List[Rejection] = []

    for candidate in candidates:
        channel_score = channel_quality(candidate.channel, criteria.expected_artist)
        reasons = rejection_reasons(candidate, criteria, channel_score, embed_check_failures)
        if reasons:
            rejections.append(Rejection(candidate=candidate, reasons=tuple(reasons)))
            continue
        accepted.append(ScoredCandidate(
            candidate=candidate,
            score=score_candidate(candidate, criteria, channel_score),
            channel_quality=channel_score,
        ))

    accepted.sort(key=lambda scored: (-scored.score, scored.candidate.search_rank))

    all_rejected_for_embedding = (
        not accepted
        and bool(rejections)
        and all(rejection.only_embeddability for rejection in rejections)
    )

    logger.debug(f"Filtered candidates: {len(accepted)} accepted, {len(rejections)} rejected"
                 + (" (all for embeddability)" if all_rejected_for_embedding else ""))

    return FilterResult(
        accepted=accepted,
        rejections=rejections,
        all_rejected_for_embedding=all_rejected_for_embedding,
    )


class ContentFilter:
    """filter_candidates bound to a base set of criteria."""

    def __init__(self, criteria: Optional[FilterCriteria] = None):
        self.criteria = criteria or FilterCriteria()

    def filter(self, candidates: Iterable[Candidate],
               embed_check_failures: Collection[str] = (),
               **overrides) -> FilterResult:
        criteria = self.criteria
        if overrides:
            criteria = FilterCriteria(**{**vars(self.criteria), **overrides})
        return filter_candidates(candidates, criteria, embed_check_failures)
