"""
Music library access: upstream API client and the cache-first service.
"""

from .upstream_client import UpstreamLibraryClient, WebApiLibraryClient, track_to_record
from .library_service import LibraryService

__all__ = [
    'UpstreamLibraryClient',
    'WebApiLibraryClient',
    'track_to_record',
    'LibraryService',
]
