"""
Search providers and pinned association lookups for video discovery.
"""

from .base import SearchProvider, PinnedAssociationLookup
from .proxy_search_provider import ProxySearchProvider
from .pinned_associations import PinnedAssociationStore

__all__ = [
    'SearchProvider',
    'PinnedAssociationLookup',
    'ProxySearchProvider',
    'PinnedAssociationStore',
]
