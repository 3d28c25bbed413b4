"""
Client for the music library web API.

Authentication is not handled here: a token_provider callable supplies a
valid bearer credential and on_auth_required is invoked when the API rejects
it (the presentation layer redirects to login). HTTP runs in a worker thread
so the event loop is never blocked.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import requests
from requests.exceptions import RequestException

from ..cache.cache_metadata import ItemRecord
from ..constants import (
    LIBRARY_API_BASE_URL,
    LIBRARY_CONTAINS_BATCH_SIZE,
    LIBRARY_PAGE_SIZE,
    USER_AGENT,
)
from ..exceptions import AuthenticationRequired, UpstreamError
from ..http_errors import classify_request_exception, raise_for_response
from ..rate_limiter import LIBRARY_SERVICE, ServiceRateLimitManager

DEFAULT_REQUEST_TIMEOUT_SECONDS = 15


def track_to_record(track: Optional[Dict[str, Any]]) -> Optional[ItemRecord]:
    """Map an API track object to an ItemRecord; local files and non-tracks yield None."""
    if not track or not track.get('id') or track.get('is_local') or track.get('type', 'track') != 'track':
        return None

    album = track.get('album') or {}
    images = album.get('images') or []
    artists = ", ".join(a.get('name', '') for a in track.get('artists') or [] if a.get('name'))
    return ItemRecord(
        id=track['id'],
        name=track.get('name') or 'Unknown Track',
        artists=artists or 'Unknown Artist',
        album=album.get('name') or 'Unknown Album',
        duration_ms=int(track.get('duration_ms') or 0),
        uri=track.get('uri') or '',
        image=images[0].get('url') if images else None,
        preview_url=track.get('preview_url'),
    )


@runtime_checkable
class UpstreamLibraryClient(Protocol):
    """What the library service needs from the upstream API."""

    async def fetch_item(self, item_id: str) -> ItemRecord:
        ...

    async def contains_saved(self, item_ids: Sequence[str]) -> List[bool]:
        ...

    async def save_items(self, item_ids: Sequence[str]) -> None:
        ...

    async def remove_items(self, item_ids: Sequence[str]) -> None:
        ...

    async def fetch_saved_items(self, limit: Optional[int] = None) -> List[ItemRecord]:
        ...

    async def fetch_playlist_items(self, playlist_id: str) -> List[ItemRecord]:
        ...


class WebApiLibraryClient:
    """UpstreamLibraryClient over the REST library API using requests."""

    def __init__(self,
                 token_provider: Callable[[], str],
                 on_auth_required: Optional[Callable[[], None]] = None,
                 base_url: str = LIBRARY_API_BASE_URL,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
                 rate_limits: Optional[ServiceRateLimitManager] = None,
                 session: Optional[requests.Session] = None):
        self._token_provider = token_provider
        self._on_auth_required = on_auth_required
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._rate_limits = rate_limits
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': USER_AGENT})
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def fetch_item(self, item_id: str) -> ItemRecord:
        data = await asyncio.to_thread(self._get_json, f"{self.base_url}/tracks/{item_id}")
        record = track_to_record(data)
        if record is None:
            raise UpstreamError(f"Item {item_id} is not a playable track", service=LIBRARY_SERVICE)
        return record

    async def contains_saved(self, item_ids: Sequence[str]) -> List[bool]:
        return await asyncio.to_thread(self._contains_saved, list(item_ids))

    async def save_items(self, item_ids: Sequence[str]) -> None:
        await asyncio.to_thread(self._request, 'PUT', f"{self.base_url}/me/tracks",
                                json={'ids': list(item_ids)})

    async def remove_items(self, item_ids: Sequence[str]) -> None:
        await asyncio.to_thread(self._request, 'DELETE', f"{self.base_url}/me/tracks",
                                json={'ids': list(item_ids)})

    async def fetch_saved_items(self, limit: Optional[int] = None) -> List[ItemRecord]:
        url = f"{self.base_url}/me/tracks?limit={LIBRARY_PAGE_SIZE}"
        return await asyncio.to_thread(self._collect_pages, url, limit)

    async def fetch_playlist_items(self, playlist_id: str) -> List[ItemRecord]:
        url = f"{self.base_url}/playlists/{playlist_id}/tracks?limit={LIBRARY_PAGE_SIZE}"
        return await asyncio.to_thread(self._collect_pages, url, None)

    def _contains_saved(self, item_ids: List[str]) -> List[bool]:
        results: List[bool] = []
        for start in range(0, len(item_ids), LIBRARY_CONTAINS_BATCH_SIZE):
            batch = item_ids[start:start + LIBRARY_CONTAINS_BATCH_SIZE]
            data = self._get_json(f"{self.base_url}/me/tracks/contains", params={'ids': ",".join(batch)})
            if not isinstance(data, list) or len(data) != len(batch):
                raise UpstreamError("Unexpected contains response from library API", service=LIBRARY_SERVICE)
            results.extend(bool(flag) for flag in data)
        return results

    def _collect_pages(self, url: Optional[str], limit: Optional[int]) -> List[ItemRecord]:
        records: List[ItemRecord] = []
        while url:
            data = self._get_json(url)
            for entry in data.get('items') or []:
                record = track_to_record(entry.get('track'))
                if record is not None:
                    records.append(record)
                    if limit is not None and len(records) >= limit:
                        return records
            url = data.get('next')
        self._logger.debug(f"Collected {len(records)} tracks")
        return records

    def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        response = self._request('GET', url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Library API returned a non-JSON response", service=LIBRARY_SERVICE) from e

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        if self._rate_limits is not None:
            self._rate_limits.try_acquire(LIBRARY_SERVICE)

        headers = {'Authorization': f"Bearer {self._token_provider()}"}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except RequestException as e:
            raise classify_request_exception(e, LIBRARY_SERVICE, self._rate_limits) from e

        try:
            raise_for_response(response, LIBRARY_SERVICE, self._rate_limits)
        except AuthenticationRequired:
            self._logger.warning("Library API rejected the access token; login required")
            if self._on_auth_required is not None:
                self._on_auth_required()
            raise
        return response
