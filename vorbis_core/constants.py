"""
Centralized constants for the vorbis core.

Storage keys are part of the persisted format: changing one orphans the data
already written under the old key.
"""

# Storage Keys
TRACK_CACHE_STORAGE_KEY = 'vorbis-player-track-cache'
VIDEO_BLACKLIST_STORAGE_KEY = 'vorbis-player-video-blacklist'
VIDEO_ASSOCIATIONS_STORAGE_KEY = 'vorbis-player-video-associations'

# Cache Facets
METADATA_FACET = 'metadata'
STATUS_FACET = 'status'

# Cache Defaults
DEFAULT_CACHE_MAX_SIZE = 2000
DEFAULT_METADATA_TTL_SECONDS = 10 * 60
DEFAULT_STATUS_TTL_SECONDS = 5 * 60
DEFAULT_CLEANUP_INTERVAL_SECONDS = 5 * 60

# Discovery Defaults
DEFAULT_SEARCH_TIMEOUT_SECONDS = 25
DEFAULT_MAX_SEARCH_RESULTS = 10
DEFAULT_MAX_EMBED_CHECKS = 5
DEFAULT_QUERY_SUFFIX = 'official music video'

# Content Filter Defaults
DEFAULT_MIN_QUALITY_SCORE = 0.3
DEFAULT_MIN_CHANNEL_QUALITY = 0.2
DEFAULT_QUALITY_SCORE = 0.5  # Used when the provider reports no quality signal
DEFAULT_QUALITY_WEIGHT = 0.6
DEFAULT_RELEVANCE_WEIGHT = 0.4
DURATION_MATCH_BONUS = 0.1
DURATION_MATCH_TOLERANCE_SECONDS = 15

# Upstream Library API
LIBRARY_API_BASE_URL = 'https://api.spotify.com/v1'
LIBRARY_PAGE_SIZE = 50
LIBRARY_CONTAINS_BATCH_SIZE = 50

# Rate Limits
LIBRARY_REQUESTS_PER_MINUTE = 100
SEARCH_REQUESTS_PER_MINUTE = 20
EMBED_CHECK_REQUESTS_PER_MINUTE = 60

# SQLite Configuration
SQLITE_TIMEOUT_SECONDS = 10.0
DEFAULT_SQLITE_PATH = 'vorbis_store.db'
DEFAULT_JSON_STORE_PATH = '.cache/vorbis_store.json'

# HTTP
USER_AGENT = 'Vorbis Player Core/1.0'
