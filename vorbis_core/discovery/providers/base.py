"""
Protocols for the external collaborators of video discovery.

SearchProvider hides how candidates are found (a scraping proxy in
production, a fake in tests). PinnedAssociationLookup returns a durable,
caller-chosen video for an item, bypassing search entirely.
"""

from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

from ..discovery_metadata import AssociationRecord, Candidate, EmbedCheck


@runtime_checkable
class SearchProvider(Protocol):
    """Protocol for video search backends using structural subtyping."""

    async def search(self, query: str,
                     exclude_ids: Sequence[str] = ()) -> List[Union[Candidate, Dict[str, Any]]]:
        """
        Search for candidate videos.

        Args:
            query: Free-text search query
            exclude_ids: Ids the caller will discard anyway; a provider may
                use them to fetch further results, or ignore them

        Returns:
            Candidates in provider rank order, search_rank set from 0. Raw
            payload dicts in the Candidate.from_dict shape are accepted too.

        Raises:
            RateLimited, UpstreamTimeout, UpstreamError on provider failure
        """
        ...

    async def check_embeddable(self, candidate_id: str) -> EmbedCheck:
        """
        Ask whether a video can be embedded.

        Provider failures are reported as an EmbedCheck with PROVIDER_ERROR
        status rather than raised.
        """
        ...


@runtime_checkable
class PinnedAssociationLookup(Protocol):
    """Lookup of caller-pinned item to video associations."""

    def get(self, item_id: str) -> Union[Optional[AssociationRecord], Awaitable[Optional[AssociationRecord]]]:
        ...
