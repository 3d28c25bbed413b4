"""
Search provider backed by the player's HTTP search proxy.

Endpoints used:
- GET {base}/api/youtube/search?q=...          -> the relayed HTML results page,
                                                  or {"results": [...]} / [...] as JSON
- GET {base}/api/youtube/embed-test/{video_id} -> {"isEmbeddable": bool, "reason": str}

The player's proxy answers searches with the video site's results page as
text/html; proxies that return JSON are read directly. Calls run in a
worker thread so the event loop is never blocked by requests.
"""

import asyncio
import logging
from typing import List, Optional, Sequence
from urllib.parse import quote

import requests
from requests.exceptions import RequestException

from .results_page import ResultsPageError, parse_results_page
from ..discovery_metadata import Candidate, EmbedCheck
from ...constants import DEFAULT_MAX_SEARCH_RESULTS, DEFAULT_SEARCH_TIMEOUT_SECONDS, USER_AGENT
from ...exceptions import UpstreamError
from ...http_errors import classify_request_exception, raise_for_response
from ...rate_limiter import EMBED_CHECK_SERVICE, SEARCH_SERVICE, ServiceRateLimitManager


class ProxySearchProvider:
    """SearchProvider implementation over the player's search proxy."""

    def __init__(self,
                 base_url: str,
                 timeout: float = DEFAULT_SEARCH_TIMEOUT_SECONDS,
                 max_results: int = DEFAULT_MAX_SEARCH_RESULTS,
                 rate_limits: Optional[ServiceRateLimitManager] = None,
                 session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_results = max_results
        self._rate_limits = rate_limits
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': USER_AGENT,
            'Accept': 'application/json, text/html;q=0.9'
        })
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.search_api = f"{self.base_url}/api/youtube/search"
        self.embed_test_api = f"{self.base_url}/api/youtube/embed-test"

    async def search(self, query: str, exclude_ids: Sequence[str] = ()) -> List[Candidate]:
        if not query or not query.strip():
            return []
        return await asyncio.to_thread(self._search, query.strip(), frozenset(exclude_ids))

    async def check_embeddable(self, candidate_id: str) -> EmbedCheck:
        return await asyncio.to_thread(self._check_embeddable, candidate_id)

    def _search(self, query: str, exclude_ids: frozenset) -> List[Candidate]:
        if self._rate_limits is not None:
            self._rate_limits.try_acquire(SEARCH_SERVICE)

        self._logger.debug(f"Searching videos for: {query}")
        try:
            response = self.session.get(self.search_api, params={'q': query}, timeout=self.timeout)
        except RequestException as e:
            raise classify_request_exception(e, SEARCH_SERVICE, self._rate_limits) from e

        raise_for_response(response, SEARCH_SERVICE, self._rate_limits)

        candidates = []
        for rank, payload in enumerate(self._result_payloads(response)):
            try:
                candidate = Candidate.from_dict(payload, search_rank=rank)
            except (ValueError, TypeError, AttributeError) as e:
                self._logger.debug(f"Skipping malformed search result #{rank}: {e}")
                continue
            if candidate.id in exclude_ids:
                continue
            candidates.append(candidate)
            if len(candidates) >= self.max_results:
                break

        self._logger.debug(f"Search for '{query}' returned {len(candidates)} candidates")
        return candidates

    def _result_payloads(self, response: requests.Response) -> list:
        content_type = response.headers.get('Content-Type') or ''
        if 'html' in content_type.lower():
            try:
                return parse_results_page(response.text)
            except ResultsPageError as e:
                raise UpstreamError(f"Search proxy returned an unreadable results page: {e}",
                                    service=SEARCH_SERVICE) from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Search proxy returned a non-JSON response", service=SEARCH_SERVICE) from e
        items = data.get('results') if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise UpstreamError("Search proxy response has no results array", service=SEARCH_SERVICE)
        return items

    def _check_embeddable(self, candidate_id: str) -> EmbedCheck:
        """Embed test; every failure becomes a PROVIDER_ERROR check instead of an exception."""
        try:
            if self._rate_limits is not None:
                self._rate_limits.try_acquire(EMBED_CHECK_SERVICE)
            response = self.session.get(f"{self.embed_test_api}/{quote(candidate_id, safe='')}",
                                        timeout=self.timeout)
            raise_for_response(response, EMBED_CHECK_SERVICE, self._rate_limits)
            data = response.json()
        except UpstreamError as e:
            self._logger.warning(f"Embed check failed for {candidate_id}: {e}")
            return EmbedCheck.provider_error_result(str(e))
        except RequestException as e:
            error = classify_request_exception(e, EMBED_CHECK_SERVICE, self._rate_limits)
            self._logger.warning(f"Embed check failed for {candidate_id}: {error}")
            return EmbedCheck.provider_error_result(str(error))
        except ValueError:
            return EmbedCheck.provider_error_result("Embed test returned a non-JSON response")

        is_embeddable = data.get('isEmbeddable') if isinstance(data, dict) else None
        if is_embeddable is True:
            return EmbedCheck.embeddable_result()
        if is_embeddable is False:
            return EmbedCheck.not_embeddable_result(data.get('reason'))
        return EmbedCheck.provider_error_result("Embed test response has no isEmbeddable flag")
