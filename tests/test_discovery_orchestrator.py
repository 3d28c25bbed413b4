"""
Tests for the discovery orchestrator state machine.

Uses an in-process fake search provider so every test controls exactly
what the provider returns and when.
"""

import asyncio
import os
import sys
import unittest
from typing import Dict, List, Optional
from unittest.mock import Mock

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from vorbis_core.cache.cache_metadata import ItemRecord
from vorbis_core.discovery.discovery_metadata import (
    AssociationRecord,
    Candidate,
    DiscoveryState,
    EmbedCheck,
    FailureKind,
    ResolutionKind,
)
from vorbis_core.discovery.exclusion_set import ExclusionSet
from vorbis_core.discovery.orchestrator import ALLOWED_TRANSITIONS, DiscoveryOrchestrator
from vorbis_core.discovery.providers.base import SearchProvider
from vorbis_core.discovery.providers.pinned_associations import PinnedAssociationStore
from vorbis_core.exceptions import InvalidStateTransition, RateLimited, UpstreamError, UpstreamTimeout
from vorbis_core.settings import DiscoveryConfig
from vorbis_core.storage.memory_store import InMemoryKeyValueStore


class FakeSearchProvider:
    """Scripted search provider that records every call."""

    def __init__(self, results: Optional[List[Candidate]] = None,
                 embed_checks: Optional[Dict[str, EmbedCheck]] = None,
                 search_error: Optional[BaseException] = None):
        self.results = results or []
        self.embed_checks = embed_checks or {}
        self.search_error = search_error
        self.search_calls = []
        self.embed_calls = []
        self.gate: Optional[asyncio.Event] = None

    async def search(self, query, exclude_ids=()):
        self.search_calls.append((query, list(exclude_ids)))
        if self.gate is not None:
            await self.gate.wait()
        if self.search_error is not None:
            raise self.search_error
        # Fresh copies, so mutations by the orchestrator don't leak between calls
        return [Candidate(**vars(c)) for c in self.results]

    async def check_embeddable(self, candidate_id):
        self.embed_calls.append(candidate_id)
        check = self.embed_checks.get(candidate_id, EmbedCheck.embeddable_result())
        if isinstance(check, BaseException):
            raise check
        return check


def video(cid, rank=0, embeddable=True, **fields):
    defaults = dict(title=f'Artist - Song {cid}', channel='Artist - Topic', quality_score=0.9)
    defaults.update(fields)
    return Candidate(id=cid, search_rank=rank, embeddable=embeddable, **defaults)


def make_item(item_id='track1', **fields):
    defaults = dict(name='Song', artists='Artist', album='Album', duration_ms=200000)
    defaults.update(fields)
    return ItemRecord(id=item_id, **defaults)


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.exclusions = ExclusionSet(InMemoryKeyValueStore())
        self.resolutions = []

    def make_orchestrator(self, provider, pinned=None, **config):
        return DiscoveryOrchestrator(
            provider=provider,
            exclusion_set=self.exclusions,
            pinned_lookup=pinned,
            config=DiscoveryConfig(**config),
            on_resolution=self.resolutions.append,
        )


class TestDiscoveryOutcomes(OrchestratorTestCase):

    def test_fake_provider_satisfies_protocol(self):
        self.assertIsInstance(FakeSearchProvider(), SearchProvider)

    async def test_resolves_best_candidate(self):
        provider = FakeSearchProvider([video('a'), video('b', rank=1)])
        orchestrator = self.make_orchestrator(provider)

        resolution = await orchestrator.discover(make_item())

        self.assertEqual(resolution.kind, ResolutionKind.RESOLVED)
        self.assertEqual(resolution.candidate.id, 'a')
        self.assertFalse(resolution.pinned)
        self.assertEqual(orchestrator.state, DiscoveryState.RESOLVED)
        self.assertEqual(orchestrator.state_history, [
            DiscoveryState.IDLE, DiscoveryState.CHECKING_PINNED, DiscoveryState.SEARCHING,
            DiscoveryState.FILTERING, DiscoveryState.RESOLVED,
        ])
        self.assertEqual(self.resolutions, [resolution])
        self.assertIs(orchestrator.last_resolution, resolution)

    async def test_query_built_from_item(self):
        provider = FakeSearchProvider([video('a')])
        orchestrator = self.make_orchestrator(provider, query_suffix='official video')

        await orchestrator.discover(make_item(artists='Daft Punk', name='One More Time'))

        self.assertEqual(provider.search_calls[0][0], 'Daft Punk One More Time official video')

    async def test_explicit_query(self):
        provider = FakeSearchProvider([video('a')])
        await self.make_orchestrator(provider).discover(make_item(), query='custom query')
        self.assertEqual(provider.search_calls[0][0], 'custom query')

    async def test_all_non_embeddable_is_none_embeddable(self):
        provider = FakeSearchProvider([video(c, rank=i, embeddable=False) for i, c in enumerate('XYZ')])
        orchestrator = self.make_orchestrator(provider)

        resolution = await orchestrator.discover(make_item())

        self.assertEqual(resolution.kind, ResolutionKind.NONE_EMBEDDABLE)
        self.assertEqual(orchestrator.state, DiscoveryState.NONE_EMBEDDABLE)
        self.assertEqual(len(resolution.rejections), 3)

    async def test_no_results_is_none_found(self):
        orchestrator = self.make_orchestrator(FakeSearchProvider([]))
        resolution = await orchestrator.discover(make_item())
        self.assertEqual(resolution.kind, ResolutionKind.NONE_FOUND)
        self.assertEqual(orchestrator.state, DiscoveryState.NONE_FOUND)

    async def test_only_promotional_is_none_found(self):
        provider = FakeSearchProvider([video('t', title='Official Trailer'), video('x', rank=1, embeddable=False)])
        resolution = await self.make_orchestrator(provider).discover(make_item())
        self.assertEqual(resolution.kind, ResolutionKind.NONE_FOUND)


class TestExclusion(OrchestratorTestCase):

    async def test_excluded_candidate_is_skipped(self):
        self.exclusions.add('X')
        provider = FakeSearchProvider([video('X'), video('Y', rank=1)])

        resolution = await self.make_orchestrator(provider).discover(make_item())

        self.assertEqual(resolution.candidate.id, 'Y')
        self.assertEqual(provider.search_calls[0][1], ['X'])

    async def test_only_excluded_results_is_none_found(self):
        self.exclusions.add('X')
        provider = FakeSearchProvider([video('X')])
        resolution = await self.make_orchestrator(provider).discover(make_item())
        self.assertEqual(resolution.kind, ResolutionKind.NONE_FOUND)

    async def test_playback_failure_excludes_and_rediscover(self):
        provider = FakeSearchProvider([video('A'), video('B', rank=1)])
        orchestrator = self.make_orchestrator(provider)
        item = make_item()

        first = await orchestrator.discover(item)
        self.assertEqual(first.candidate.id, 'A')

        second = await orchestrator.report_playback_failure(item, 'A')

        self.assertTrue(self.exclusions.has('A'))
        self.assertEqual(second.candidate.id, 'B')
        self.assertEqual(len(provider.search_calls), 2)

    async def test_never_resolves_an_excluded_id(self):
        ids = ['A', 'B', 'C']
        provider = FakeSearchProvider([video(c, rank=i) for i, c in enumerate(ids)])
        orchestrator = self.make_orchestrator(provider)
        item = make_item()

        resolution = await orchestrator.discover(item)
        resolved = []
        while resolution.is_resolved:
            self.assertNotIn(resolution.candidate.id, self.exclusions)
            resolved.append(resolution.candidate.id)
            resolution = await orchestrator.report_playback_failure(item, resolution.candidate.id)

        self.assertEqual(resolved, ids)
        self.assertEqual(resolution.kind, ResolutionKind.NONE_FOUND)


class TestPinnedAssociations(OrchestratorTestCase):

    def setUp(self):
        super().setUp()
        self.pinned = PinnedAssociationStore(InMemoryKeyValueStore())

    async def test_pinned_short_circuits_search(self):
        self.pinned.pin('track1', video('P', title='Pinned'))
        provider = FakeSearchProvider([video('a')])
        orchestrator = self.make_orchestrator(provider, pinned=self.pinned)

        resolution = await orchestrator.discover(make_item())

        self.assertTrue(resolution.pinned)
        self.assertEqual(resolution.candidate.id, 'P')
        self.assertEqual(provider.search_calls, [])
        self.assertEqual(orchestrator.state_history, [
            DiscoveryState.IDLE, DiscoveryState.CHECKING_PINNED, DiscoveryState.RESOLVED,
        ])

    async def test_excluded_pin_falls_through_to_search(self):
        self.pinned.pin('track1', video('P'))
        self.exclusions.add('P')
        provider = FakeSearchProvider([video('P'), video('a', rank=1)])

        resolution = await self.make_orchestrator(provider, pinned=self.pinned).discover(make_item())

        self.assertFalse(resolution.pinned)
        self.assertEqual(resolution.candidate.id, 'a')

    async def test_async_lookup(self):
        class AsyncLookup:
            async def get(self, item_id):
                return AssociationRecord(item_id=item_id, video_id='async-pin')

        provider = FakeSearchProvider([])
        resolution = await self.make_orchestrator(provider, pinned=AsyncLookup()).discover(make_item())
        self.assertEqual(resolution.candidate.id, 'async-pin')

    async def test_failing_lookup_is_treated_as_no_pin(self):
        class BrokenLookup:
            def get(self, item_id):
                raise RuntimeError("db unavailable")

        provider = FakeSearchProvider([video('a')])
        orchestrator = self.make_orchestrator(provider, pinned=BrokenLookup())
        with self.assertLogs('vorbis_core.discovery.orchestrator', level='WARNING'):
            resolution = await orchestrator.discover(make_item())
        self.assertEqual(resolution.candidate.id, 'a')


class TestEmbedChecks(OrchestratorTestCase):

    async def test_unknown_candidates_are_checked(self):
        provider = FakeSearchProvider(
            [video('a', embeddable=None), video('b', rank=1, embeddable=None)],
            embed_checks={'a': EmbedCheck.not_embeddable_result('Embedding disabled')},
        )

        resolution = await self.make_orchestrator(provider).discover(make_item())

        self.assertEqual(resolution.candidate.id, 'b')
        self.assertEqual(set(provider.embed_calls), {'a', 'b'})

    async def test_known_candidates_are_not_checked(self):
        provider = FakeSearchProvider([video('a', embeddable=True)])
        await self.make_orchestrator(provider).discover(make_item())
        self.assertEqual(provider.embed_calls, [])

    async def test_check_count_is_bounded(self):
        provider = FakeSearchProvider([video(str(i), rank=i, embeddable=None) for i in range(6)])
        await self.make_orchestrator(provider, max_embed_checks=2).discover(make_item())
        self.assertEqual(sorted(provider.embed_calls), ['0', '1'])

    async def test_checks_disabled(self):
        provider = FakeSearchProvider([video('a', embeddable=None)])
        resolution = await self.make_orchestrator(provider, max_embed_checks=0).discover(make_item())
        self.assertEqual(provider.embed_calls, [])
        self.assertEqual(resolution.candidate.id, 'a')

    async def test_all_checked_blocked_is_none_embeddable(self):
        provider = FakeSearchProvider(
            [video('a', embeddable=None), video('b', rank=1, embeddable=None)],
            embed_checks={'a': EmbedCheck.not_embeddable_result(), 'b': EmbedCheck.not_embeddable_result()},
        )
        resolution = await self.make_orchestrator(provider).discover(make_item())
        self.assertEqual(resolution.kind, ResolutionKind.NONE_EMBEDDABLE)

    async def test_provider_errors_are_not_embedding_rejections(self):
        provider = FakeSearchProvider(
            [video('a', embeddable=None), video('b', rank=1, embeddable=None)],
            embed_checks={'a': EmbedCheck.provider_error_result('proxy down'), 'b': RuntimeError('boom')},
        )
        orchestrator = self.make_orchestrator(provider)
        with self.assertLogs('vorbis_core.discovery.orchestrator', level='WARNING'):
            resolution = await orchestrator.discover(make_item())
        self.assertEqual(resolution.kind, ResolutionKind.NONE_FOUND)


class TestFailures(OrchestratorTestCase):

    async def _fail_with(self, error):
        orchestrator = self.make_orchestrator(FakeSearchProvider(search_error=error))
        with self.assertLogs('vorbis_core.discovery.orchestrator', level='WARNING'):
            resolution = await orchestrator.discover(make_item())
        self.assertEqual(resolution.kind, ResolutionKind.FAILED)
        self.assertEqual(orchestrator.state, DiscoveryState.FAILED)
        self.assertIs(resolution.error, error)
        return resolution

    async def test_rate_limited(self):
        resolution = await self._fail_with(RateLimited("slow down", service='search', retry_after=30))
        self.assertEqual(resolution.failure_kind, FailureKind.RATE_LIMITED)
        self.assertTrue(resolution.retryable)

    async def test_upstream_timeout(self):
        resolution = await self._fail_with(UpstreamTimeout("too slow", service='search'))
        self.assertEqual(resolution.failure_kind, FailureKind.TIMEOUT)
        self.assertTrue(resolution.retryable)

    async def test_upstream_error(self):
        resolution = await self._fail_with(UpstreamError("bad gateway", service='search', status_code=502))
        self.assertEqual(resolution.failure_kind, FailureKind.UPSTREAM)
        self.assertEqual(resolution.error_message, "bad gateway")

    async def test_unexpected_error_is_not_retryable(self):
        resolution = await self._fail_with(KeyError('results'))
        self.assertEqual(resolution.failure_kind, FailureKind.UNEXPECTED)
        self.assertFalse(resolution.retryable)

    async def test_search_timeout(self):
        provider = FakeSearchProvider([video('a')])
        provider.gate = asyncio.Event()
        orchestrator = self.make_orchestrator(provider, timeout_seconds=0.01)

        with self.assertLogs('vorbis_core.discovery.orchestrator', level='WARNING'):
            resolution = await orchestrator.discover(make_item())

        self.assertEqual(resolution.failure_kind, FailureKind.TIMEOUT)
        self.assertIsInstance(resolution.error, UpstreamTimeout)

    async def test_recovers_after_failure(self):
        provider = FakeSearchProvider([video('a')], search_error=UpstreamError("down"))
        orchestrator = self.make_orchestrator(provider)
        with self.assertLogs('vorbis_core.discovery.orchestrator', level='WARNING'):
            await orchestrator.discover(make_item())

        provider.search_error = None
        resolution = await orchestrator.discover(make_item())

        self.assertTrue(resolution.is_resolved)
        self.assertEqual(orchestrator.state_history[0], DiscoveryState.FAILED)

    async def test_listener_failure_does_not_break_discovery(self):
        def broken_listener(resolution):
            raise RuntimeError("ui gone")

        orchestrator = DiscoveryOrchestrator(FakeSearchProvider([video('a')]), self.exclusions,
                                             on_resolution=broken_listener)
        with self.assertLogs('vorbis_core.discovery.orchestrator', level='ERROR'):
            resolution = await orchestrator.discover(make_item())
        self.assertTrue(resolution.is_resolved)

    async def test_filtering_error_fails_instead_of_raising(self):
        broken_filter = Mock()
        broken_filter.filter.side_effect = RuntimeError("scoring blew up")
        orchestrator = DiscoveryOrchestrator(FakeSearchProvider([video('a')]), self.exclusions,
                                             content_filter=broken_filter)

        with self.assertLogs('vorbis_core.discovery.orchestrator', level='ERROR'):
            resolution = await orchestrator.discover(make_item())

        self.assertEqual(resolution.kind, ResolutionKind.FAILED)
        self.assertEqual(resolution.failure_kind, FailureKind.UNEXPECTED)
        self.assertEqual(orchestrator.state, DiscoveryState.FAILED)
        self.assertEqual(orchestrator.state_history[-2:], [DiscoveryState.FILTERING, DiscoveryState.FAILED])


class PayloadSearchProvider:
    """Returns provider payloads instead of Candidate objects."""

    def __init__(self, payloads):
        self.payloads = payloads

    async def search(self, query, exclude_ids=()):
        return list(self.payloads)

    async def check_embeddable(self, candidate_id):
        return EmbedCheck.embeddable_result()


class TestRawPayloadResults(OrchestratorTestCase):

    @staticmethod
    def payload(video_id, **fields):
        data = {'videoId': video_id, 'title': f'Artist - Song {video_id}', 'channelTitle': 'Artist - Topic',
                'qualityScore': 0.9, 'isEmbeddable': True}
        data.update(fields)
        return data

    async def test_payloads_are_parsed_and_malformed_ones_skipped(self):
        self.exclusions.add('x')
        provider = PayloadSearchProvider([
            {'title': 'no id'},
            'not a payload',
            self.payload('x'),
            self.payload('abc'),
        ])
        orchestrator = self.make_orchestrator(provider)

        resolution = await orchestrator.discover(make_item())

        self.assertTrue(resolution.is_resolved)
        self.assertEqual(resolution.candidate.id, 'abc')
        self.assertEqual(resolution.candidate.search_rank, 3)
        self.assertEqual(orchestrator.state, DiscoveryState.RESOLVED)

    async def test_only_malformed_payloads_is_none_found(self):
        orchestrator = self.make_orchestrator(PayloadSearchProvider([{'title': 'no id'}, None]))

        resolution = await orchestrator.discover(make_item())

        self.assertEqual(resolution.kind, ResolutionKind.NONE_FOUND)
        self.assertEqual(orchestrator.state, DiscoveryState.NONE_FOUND)


class TestStaleResults(OrchestratorTestCase):

    async def test_result_for_previous_item_is_discarded(self):
        provider = FakeSearchProvider([video('a')])
        provider.gate = asyncio.Event()
        orchestrator = self.make_orchestrator(provider)

        pending = asyncio.create_task(orchestrator.discover(make_item('old')))
        await asyncio.sleep(0)
        self.assertEqual(orchestrator.state, DiscoveryState.SEARCHING)

        orchestrator.set_current_item('new')
        provider.gate.set()

        self.assertIsNone(await pending)
        self.assertEqual(orchestrator.state, DiscoveryState.IDLE)
        self.assertEqual(self.resolutions, [])
        self.assertIsNone(orchestrator.last_resolution)

    async def test_newer_call_for_same_item_wins(self):
        provider = FakeSearchProvider([video('a')])
        provider.gate = asyncio.Event()
        orchestrator = self.make_orchestrator(provider)
        item = make_item()

        first = asyncio.create_task(orchestrator.discover(item))
        await asyncio.sleep(0)
        second = asyncio.create_task(orchestrator.discover(item))
        await asyncio.sleep(0)
        provider.gate.set()

        self.assertIsNone(await first)
        self.assertTrue((await second).is_resolved)
        self.assertEqual(len(self.resolutions), 1)

    async def test_reset(self):
        orchestrator = self.make_orchestrator(FakeSearchProvider([video('a')]))
        await orchestrator.discover(make_item())

        orchestrator.reset()

        self.assertEqual(orchestrator.state, DiscoveryState.IDLE)
        self.assertIsNone(orchestrator.current_item_id)
        self.assertIsNone(orchestrator.last_resolution)


class TestStateMachine(OrchestratorTestCase):

    def test_invalid_transition_raises(self):
        orchestrator = self.make_orchestrator(FakeSearchProvider())
        with self.assertRaises(InvalidStateTransition):
            orchestrator._transition(DiscoveryState.FILTERING)

    def test_terminal_states_only_reenter(self):
        for state in (DiscoveryState.RESOLVED, DiscoveryState.NONE_EMBEDDABLE,
                      DiscoveryState.NONE_FOUND, DiscoveryState.FAILED):
            self.assertTrue(state.is_terminal)
            self.assertEqual(ALLOWED_TRANSITIONS[state],
                             {DiscoveryState.CHECKING_PINNED, DiscoveryState.SEARCHING})

    async def test_item_without_id_rejected(self):
        orchestrator = self.make_orchestrator(FakeSearchProvider())
        with self.assertRaises(ValueError):
            await orchestrator.discover(ItemRecord(id=''))


if __name__ == '__main__':
    unittest.main()
