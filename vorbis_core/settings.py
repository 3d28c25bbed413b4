"""
Configuration loading for the vorbis core.

Settings come from settings.ini in the project root (or the file named by
VORBIS_SETTINGS_PATH), with environment variables overriding selected keys.
Every value has a default, so a missing file or section is not an error.
"""

import os
import logging
import configparser
from dataclasses import dataclass
from typing import Optional

from .constants import (
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_METADATA_TTL_SECONDS,
    DEFAULT_STATUS_TTL_SECONDS,
    DEFAULT_CLEANUP_INTERVAL_SECONDS,
    DEFAULT_SEARCH_TIMEOUT_SECONDS,
    DEFAULT_MAX_SEARCH_RESULTS,
    DEFAULT_MAX_EMBED_CHECKS,
    DEFAULT_QUERY_SUFFIX,
    DEFAULT_MIN_QUALITY_SCORE,
    DEFAULT_MIN_CHANNEL_QUALITY,
)

_INVALID = (None, "", "None")


@dataclass
class CacheConfig:
    """Configuration for the item cache."""
    max_size: int = DEFAULT_CACHE_MAX_SIZE
    metadata_ttl_seconds: float = DEFAULT_METADATA_TTL_SECONDS
    status_ttl_seconds: float = DEFAULT_STATUS_TTL_SECONDS
    cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    enable_persistence: bool = False
    enable_background_cleanup: bool = True


@dataclass
class DiscoveryConfig:
    """Configuration for video discovery."""
    search_base_url: Optional[str] = None
    timeout_seconds: float = DEFAULT_SEARCH_TIMEOUT_SECONDS
    max_results: int = DEFAULT_MAX_SEARCH_RESULTS
    max_embed_checks: int = DEFAULT_MAX_EMBED_CHECKS
    query_suffix: str = DEFAULT_QUERY_SUFFIX
    min_quality_score: float = DEFAULT_MIN_QUALITY_SCORE
    min_channel_quality: float = DEFAULT_MIN_CHANNEL_QUALITY


def get_settings_path() -> str:
    """Return the settings.ini path, honouring VORBIS_SETTINGS_PATH."""
    override = os.getenv('VORBIS_SETTINGS_PATH')
    if override:
        return override
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(base_dir, 'settings.ini')


def read_settings(config_path: Optional[str] = None) -> configparser.ConfigParser:
    """Read settings.ini into a ConfigParser; a missing file yields an empty parser."""
    parser = configparser.ConfigParser()
    path = config_path or get_settings_path()
    try:
        if os.path.exists(path):
            parser.read(path)
    except configparser.Error as e:
        logging.getLogger(__name__).warning(f"Failed to parse {path}: {e}. Using defaults.")
        parser = configparser.ConfigParser()
    return parser


def get_setting(parser: configparser.ConfigParser, section: str, key: str,
                fallback: Optional[str] = None) -> Optional[str]:
    """Fetch a raw string setting, treating empty and "None" as unset."""
    value = parser.get(section, key, fallback=fallback)
    return value if value not in _INVALID else fallback


def load_cache_config(config_path: Optional[str] = None) -> CacheConfig:
    """Load cache configuration from settings.ini with fallbacks to defaults."""
    parser = read_settings(config_path)
    cache_config = CacheConfig()

    try:
        if parser.has_section('Cache'):
            section = parser['Cache']
            cache_config.max_size = section.getint('max_size', cache_config.max_size)
            cache_config.metadata_ttl_seconds = section.getfloat('metadata_ttl_seconds', cache_config.metadata_ttl_seconds)
            cache_config.status_ttl_seconds = section.getfloat('status_ttl_seconds', cache_config.status_ttl_seconds)
            cache_config.cleanup_interval_seconds = section.getfloat('cleanup_interval_seconds', cache_config.cleanup_interval_seconds)
            cache_config.enable_persistence = section.getboolean('enable_persistence', cache_config.enable_persistence)
            cache_config.enable_background_cleanup = section.getboolean('enable_background_cleanup', cache_config.enable_background_cleanup)
    except ValueError as e:
        logging.getLogger(__name__).warning(f"Invalid [Cache] setting: {e}. Using defaults.")
        cache_config = CacheConfig()

    persistence_env = os.getenv('VORBIS_CACHE_PERSISTENCE')
    if persistence_env not in _INVALID:
        cache_config.enable_persistence = persistence_env.lower() in ('1', 'true', 'yes', 'on')

    return cache_config


def load_discovery_config(config_path: Optional[str] = None) -> DiscoveryConfig:
    """Load discovery configuration from settings.ini with env var overrides."""
    parser = read_settings(config_path)
    discovery_config = DiscoveryConfig()

    try:
        if parser.has_section('Discovery'):
            section = parser['Discovery']
            discovery_config.search_base_url = get_setting(parser, 'Discovery', 'search_base_url')
            discovery_config.timeout_seconds = section.getfloat('timeout_seconds', discovery_config.timeout_seconds)
            discovery_config.max_results = section.getint('max_results', discovery_config.max_results)
            discovery_config.max_embed_checks = section.getint('max_embed_checks', discovery_config.max_embed_checks)
            discovery_config.query_suffix = section.get('query_suffix', discovery_config.query_suffix)
            discovery_config.min_quality_score = section.getfloat('min_quality_score', discovery_config.min_quality_score)
            discovery_config.min_channel_quality = section.getfloat('min_channel_quality', discovery_config.min_channel_quality)
    except ValueError as e:
        logging.getLogger(__name__).warning(f"Invalid [Discovery] setting: {e}. Using defaults.")
        discovery_config = DiscoveryConfig()

    discovery_config.search_base_url = os.getenv('VORBIS_SEARCH_BASE_URL') or discovery_config.search_base_url
    return discovery_config


def validate_cache_config(config: CacheConfig) -> Optional[str]:
    """
    Validate a cache configuration.

    Returns:
        None if config is valid, error message string if invalid.
    """
    if config.max_size <= 0:
        return "max_size must be greater than 0"

    if config.metadata_ttl_seconds <= 0:
        return "metadata_ttl_seconds must be greater than 0"

    if config.status_ttl_seconds <= 0:
        return "status_ttl_seconds must be greater than 0"

    if config.enable_background_cleanup and config.cleanup_interval_seconds <= 0:
        return "cleanup_interval_seconds must be greater than 0"

    return None


def validate_discovery_config(config: DiscoveryConfig) -> Optional[str]:
    """Validate a discovery configuration; returns an error message or None."""
    if config.timeout_seconds <= 0:
        return "timeout_seconds must be greater than 0"

    if config.max_results <= 0:
        return "max_results must be greater than 0"

    if config.max_embed_checks < 0:
        return "max_embed_checks must be 0 (no checks) or positive"

    if not 0.0 <= config.min_quality_score <= 1.0:
        return "min_quality_score must be between 0 and 1"

    if not 0.0 <= config.min_channel_quality <= 1.0:
        return "min_channel_quality must be between 0 and 1"

    return None
