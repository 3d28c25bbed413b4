"""
Video discovery orchestration.

Resolves one playable video per item: a pinned association short-circuits
the search; otherwise the search provider is queried, excluded ids are
dropped, embeddability is confirmed for the best unknown candidates and the
content filter picks the winner.

The orchestrator never retries on its own. When playback of a resolved video
fails, the caller excludes it (report_playback_failure does both steps) and
discovery runs again with the failing id filtered out.
"""

import asyncio
import inspect
import logging
from typing import Callable, Dict, FrozenSet, List, Optional

from .content_filter import ContentFilter
from .discovery_metadata import (
    AssociationRecord,
    Candidate,
    DiscoveryState,
    EmbedCheck,
    EmbedStatus,
    FailureKind,
    Resolution,
)
from .exclusion_set import ExclusionSet
from .providers.base import PinnedAssociationLookup, SearchProvider
from ..cache.cache_metadata import ItemRecord
from ..exceptions import InvalidStateTransition, RateLimited, UpstreamError, UpstreamTimeout
from ..settings import DiscoveryConfig

ALLOWED_TRANSITIONS: Dict[DiscoveryState, FrozenSet[DiscoveryState]] = {
    DiscoveryState.IDLE: frozenset({DiscoveryState.CHECKING_PINNED, DiscoveryState.FAILED}),
    DiscoveryState.CHECKING_PINNED: frozenset({
        DiscoveryState.SEARCHING, DiscoveryState.RESOLVED, DiscoveryState.FAILED,
    }),
    DiscoveryState.SEARCHING: frozenset({DiscoveryState.FILTERING, DiscoveryState.FAILED}),
    DiscoveryState.FILTERING: frozenset({
        DiscoveryState.RESOLVED, DiscoveryState.NONE_EMBEDDABLE,
        DiscoveryState.NONE_FOUND, DiscoveryState.FAILED,
    }),
}

# Terminal states are left only by a new external discover() call
_REENTRY_STATES = frozenset({DiscoveryState.CHECKING_PINNED, DiscoveryState.SEARCHING})
for _terminal in (DiscoveryState.RESOLVED, DiscoveryState.NONE_EMBEDDABLE,
                  DiscoveryState.NONE_FOUND, DiscoveryState.FAILED):
    ALLOWED_TRANSITIONS[_terminal] = _REENTRY_STATES


class DiscoveryOrchestrator:
    """Resolves a video for the current item with an explicit state machine."""

    def __init__(self,
                 provider: SearchProvider,
                 exclusion_set: ExclusionSet,
                 content_filter: Optional[ContentFilter] = None,
                 pinned_lookup: Optional[PinnedAssociationLookup] = None,
                 config: Optional[DiscoveryConfig] = None,
                 on_resolution: Optional[Callable[[Resolution], None]] = None):
        self.provider = provider
        self.exclusion_set = exclusion_set
        self.config = config or DiscoveryConfig()
        self.content_filter = content_filter or ContentFilter()
        self.pinned_lookup = pinned_lookup
        self.on_resolution = on_resolution

        self._state = DiscoveryState.IDLE
        self._state_history: List[DiscoveryState] = [DiscoveryState.IDLE]
        self._current_item_id: Optional[str] = None
        self._generation = 0
        self.last_resolution: Optional[Resolution] = None
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def state(self) -> DiscoveryState:
        return self._state

    @property
    def state_history(self) -> List[DiscoveryState]:
        """States visited by the current (or last) discovery call."""
        return list(self._state_history)

    @property
    def current_item_id(self) -> Optional[str]:
        return self._current_item_id

    def set_current_item(self, item_id: Optional[str]) -> None:
        """
        Make item_id the current item.

        Results of calls still in flight for another item are discarded when
        they arrive.
        """
        if item_id == self._current_item_id:
            return
        self._current_item_id = item_id
        self._generation += 1
        self._reset_state()
        self._logger.debug(f"Current item changed to {item_id}")

    def build_query(self, item: ItemRecord) -> str:
        parts = [item.artists, item.name, self.config.query_suffix]
        return " ".join(part.strip() for part in parts if part and part.strip())

    async def discover(self, item: ItemRecord, query: Optional[str] = None) -> Optional[Resolution]:
        """
        Resolve a video for item, which becomes the current item.

        Returns:
            The resolution, or None when the item stopped being current
            before the call completed.
        """
        if item is None or not item.id:
            raise ValueError("item with an id is required")

        if item.id != self._current_item_id:
            self.set_current_item(item.id)
        else:
            self._generation += 1
            if not self._state.is_terminal and self._state != DiscoveryState.IDLE:
                self._logger.debug(f"Superseding in-flight discovery for {item.id}")
                self._reset_state()
        self._state_history = [self._state]
        token = (item.id, self._generation)

        self._transition(DiscoveryState.CHECKING_PINNED)
        pinned = await self._lookup_pinned(item.id)
        if not self._is_current(token):
            return self._discard(token)

        if pinned is not None:
            if self.exclusion_set.has(pinned.video_id):
                self._logger.info(f"Pinned video {pinned.video_id} for {item.id} is excluded, searching instead")
            else:
                self._transition(DiscoveryState.RESOLVED)
                self._logger.info(f"Resolved {item.id} from pinned association: {pinned.video_id}")
                return self._finish(token, Resolution.resolved(item.id, pinned.to_candidate(), pinned=True))

        return await self._search_and_filter(item, query or self.build_query(item), token)

    async def report_playback_failure(self, item: ItemRecord, candidate_id: str) -> Optional[Resolution]:
        """Exclude a video that failed to play and run discovery again."""
        self._logger.warning(f"Playback failed for video {candidate_id} (item {item.id}); excluding it")
        self.exclusion_set.add(candidate_id)
        return await self.discover(item)

    def reset(self) -> None:
        """Forget the current item and return to IDLE."""
        self.set_current_item(None)
        self.last_resolution = None

    async def _search_and_filter(self, item: ItemRecord, query: str, token) -> Optional[Resolution]:
        self._transition(DiscoveryState.SEARCHING)
        excluded = self.exclusion_set.all()

        try:
            search = self.provider.search(query, exclude_ids=sorted(excluded))
            if self.config.timeout_seconds:
                raw_candidates = await asyncio.wait_for(search, timeout=self.config.timeout_seconds)
            else:
                raw_candidates = await search
        except asyncio.TimeoutError:
            error = UpstreamTimeout(f"Search timed out after {self.config.timeout_seconds}s")
            return self._fail(token, item.id, error, FailureKind.TIMEOUT)
        except RateLimited as e:
            return self._fail(token, item.id, e, FailureKind.RATE_LIMITED)
        except UpstreamTimeout as e:
            return self._fail(token, item.id, e, FailureKind.TIMEOUT)
        except UpstreamError as e:
            return self._fail(token, item.id, e, FailureKind.UPSTREAM)
        except Exception as e:
            self._logger.error(f"Unexpected search failure for {item.id}: {e}")
            return self._fail(token, item.id, e, FailureKind.UNEXPECTED)

        if not self._is_current(token):
            return self._discard(token)

        self._transition(DiscoveryState.FILTERING)

        overrides = {
            'expected_duration_sec': item.duration_seconds if item.duration_ms else None,
            'expected_artist': item.artists or None,
        }

        try:
            raw_candidates = list(raw_candidates or ())
            # The provider may ignore the exclusion hint
            excluded = excluded | self.exclusion_set.all()
            candidates = [c for c in self._as_candidates(raw_candidates, item.id) if c.id not in excluded]
            dropped = len(raw_candidates) - len(candidates)
            if dropped:
                self._logger.debug(f"Dropped {dropped} excluded or malformed candidates for {item.id}")

            embed_check_failures = await self._confirm_embeddability(candidates, overrides)
            if not self._is_current(token):
                return self._discard(token)

            result = self.content_filter.filter(candidates, embed_check_failures, **overrides)
        except Exception as e:
            self._logger.error(f"Unexpected filtering failure for {item.id}: {e}")
            return self._fail(token, item.id, e, FailureKind.UNEXPECTED)

        if result.best is not None:
            self._transition(DiscoveryState.RESOLVED)
            self._logger.info(f"Resolved {item.id} to video {result.best.id} "
                              f"({len(result.accepted)} accepted, {len(result.rejections)} rejected)")
            return self._finish(token, Resolution.resolved(item.id, result.best))

        if result.all_rejected_for_embedding:
            self._transition(DiscoveryState.NONE_EMBEDDABLE)
            self._logger.info(f"No embeddable video for {item.id}: {len(result.rejections)} candidates blocked")
            return self._finish(token, Resolution.none_embeddable(item.id, result.rejections))

        self._transition(DiscoveryState.NONE_FOUND)
        self._logger.info(f"No suitable video found for {item.id}")
        return self._finish(token, Resolution.none_found(item.id, result.rejections))

    def _as_candidates(self, raw_candidates, item_id: str) -> List[Candidate]:
        """Candidates as given, provider payloads parsed in rank order, malformed entries skipped."""
        candidates = []
        for rank, raw in enumerate(raw_candidates):
            if isinstance(raw, Candidate):
                candidate = raw
            else:
                try:
                    candidate = Candidate.from_dict(raw, search_rank=rank)
                except (ValueError, TypeError, AttributeError) as e:
                    self._logger.debug(f"Skipping malformed search result #{rank} for {item_id}: {e}")
                    continue
            if candidate.id:
                candidates.append(candidate)
        return candidates

    async def _confirm_embeddability(self, candidates: List[Candidate], overrides) -> FrozenSet[str]:
        """
        Check embeddability of the best candidates whose status is unknown.

        Only candidates that pass every other criterion are checked, best
        first, at most max_embed_checks of them. Returns ids whose check
        failed at the provider.
        """
        if self.config.max_embed_checks <= 0:
            return frozenset()

        ranked = self.content_filter.filter(candidates, require_embeddable=False, **overrides)
        to_check = [scored.candidate for scored in ranked.accepted
                    if scored.candidate.embeddable is None][:self.config.max_embed_checks]
        if not to_check:
            return frozenset()

        checks = await asyncio.gather(
            *(self.provider.check_embeddable(candidate.id) for candidate in to_check),
            return_exceptions=True,
        )

        failures = set()
        for candidate, check in zip(to_check, checks):
            if isinstance(check, BaseException):
                self._logger.warning(f"Embed check raised for {candidate.id}: {check}")
                failures.add(candidate.id)
            elif not isinstance(check, EmbedCheck) or check.status == EmbedStatus.PROVIDER_ERROR:
                failures.add(candidate.id)
            else:
                candidate.embeddable = check.embeddable
                if not check.embeddable:
                    candidate.restriction_reason = check.reason
        return frozenset(failures)

    async def _lookup_pinned(self, item_id: str) -> Optional[AssociationRecord]:
        if self.pinned_lookup is None:
            return None
        try:
            result = self.pinned_lookup.get(item_id)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._logger.warning(f"Pinned association lookup failed for {item_id}: {e}")
            return None
        return result

    def _fail(self, token, item_id: str, error: BaseException, kind: FailureKind) -> Optional[Resolution]:
        if not self._is_current(token):
            return self._discard(token)
        retryable = getattr(error, 'retryable', kind != FailureKind.UNEXPECTED)
        self._transition(DiscoveryState.FAILED)
        self._logger.warning(f"Discovery failed for {item_id} ({kind.value}, retryable={retryable}): {error}")
        return self._finish(token, Resolution.failed(item_id, error, kind, retryable))

    def _finish(self, token, resolution: Resolution) -> Optional[Resolution]:
        if not self._is_current(token):
            return self._discard(token)
        self.last_resolution = resolution
        if self.on_resolution is not None:
            try:
                self.on_resolution(resolution)
            except Exception as e:
                self._logger.error(f"on_resolution listener failed: {e}")
        return resolution

    def _discard(self, token) -> None:
        self._logger.debug(f"Discarding superseded discovery result for {token[0]}")
        return None

    def _is_current(self, token) -> bool:
        return token == (self._current_item_id, self._generation)

    def _transition(self, new_state: DiscoveryState) -> None:
        allowed = ALLOWED_TRANSITIONS.get(self._state, frozenset())
        if new_state not in allowed:
            raise InvalidStateTransition(self._state, new_state)
        self._logger.debug(f"Discovery state {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._state_history.append(new_state)

    def _reset_state(self) -> None:
        self._state = DiscoveryState.IDLE
        self._state_history = [DiscoveryState.IDLE]
