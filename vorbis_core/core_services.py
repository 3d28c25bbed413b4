"""
Composition root for the vorbis core.

Builds the single instances of the item cache, exclusion set and rate
limiters and injects them into the services that use them. Nothing in the
package keeps module-level mutable state; whoever calls build_core_services
owns the result.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .cache.cleanup_scheduler import CleanupScheduler
from .cache.item_cache import ItemCache
from .discovery.content_filter import ContentFilter
from .discovery.discovery_metadata import FilterCriteria, Resolution
from .discovery.exclusion_set import ExclusionSet
from .discovery.orchestrator import DiscoveryOrchestrator
from .discovery.providers.base import SearchProvider
from .discovery.providers.pinned_associations import PinnedAssociationStore
from .discovery.providers.proxy_search_provider import ProxySearchProvider
from .library.library_service import LibraryService
from .library.upstream_client import UpstreamLibraryClient, WebApiLibraryClient
from .rate_limiter import ServiceRateLimitManager, setup_default_rate_limiters
from .settings import (
    CacheConfig,
    DiscoveryConfig,
    load_cache_config,
    load_discovery_config,
    validate_discovery_config,
)
from .storage.base import KeyValueStoreProtocol
from .storage.factory import get_key_value_store, load_storage_config

logger = logging.getLogger(__name__)


@dataclass
class CoreServices:
    """Everything a presentation layer needs, wired together."""
    store: KeyValueStoreProtocol
    rate_limits: ServiceRateLimitManager
    item_cache: ItemCache
    exclusion_set: ExclusionSet
    pinned_associations: PinnedAssociationStore
    orchestrator: DiscoveryOrchestrator
    library: Optional[LibraryService] = None
    cleanup_scheduler: Optional[CleanupScheduler] = None

    def start(self) -> None:
        """Start background work; call from inside the running event loop."""
        if self.cleanup_scheduler is not None:
            self.cleanup_scheduler.start()

    async def shutdown(self) -> None:
        if self.cleanup_scheduler is not None:
            await self.cleanup_scheduler.stop()


def build_core_services(search_provider: Optional[SearchProvider] = None,
                        library_client: Optional[UpstreamLibraryClient] = None,
                        token_provider: Optional[Callable[[], str]] = None,
                        on_auth_required: Optional[Callable[[], None]] = None,
                        store: Optional[KeyValueStoreProtocol] = None,
                        cache_config: Optional[CacheConfig] = None,
                        discovery_config: Optional[DiscoveryConfig] = None,
                        on_resolution: Optional[Callable[[Resolution], None]] = None,
                        config_path: Optional[str] = None) -> CoreServices:
    """
    Build the core services from settings.ini, with explicit arguments taking precedence.

    A search provider is required: pass one, or configure search_base_url so
    the HTTP proxy provider can be built. The library service is built when a
    library client or a token_provider is available.
    """
    cache_config = cache_config or load_cache_config(config_path)
    discovery_config = discovery_config or load_discovery_config(config_path)

    error = validate_discovery_config(discovery_config)
    if error:
        raise ValueError(f"Invalid discovery configuration: {error}")

    if store is None:
        store = get_key_value_store(load_storage_config(config_path))

    rate_limits = setup_default_rate_limiters(ServiceRateLimitManager())

    item_cache = ItemCache(cache_config, store=store)
    exclusion_set = ExclusionSet(store)
    pinned_associations = PinnedAssociationStore(store)

    if search_provider is None:
        if not discovery_config.search_base_url:
            raise ValueError("No search provider given and no search_base_url configured")
        search_provider = ProxySearchProvider(
            discovery_config.search_base_url,
            timeout=discovery_config.timeout_seconds,
            max_results=discovery_config.max_results,
            rate_limits=rate_limits,
        )

    content_filter = ContentFilter(FilterCriteria(
        min_quality_score=discovery_config.min_quality_score,
        min_channel_quality=discovery_config.min_channel_quality,
    ))
    orchestrator = DiscoveryOrchestrator(
        provider=search_provider,
        exclusion_set=exclusion_set,
        content_filter=content_filter,
        pinned_lookup=pinned_associations,
        config=discovery_config,
        on_resolution=on_resolution,
    )

    if library_client is None and token_provider is not None:
        library_client = WebApiLibraryClient(
            token_provider,
            on_auth_required=on_auth_required,
            rate_limits=rate_limits,
        )
    library = LibraryService(library_client, item_cache) if library_client is not None else None

    cleanup_scheduler = None
    if cache_config.enable_background_cleanup:
        cleanup_scheduler = CleanupScheduler(item_cache.cleanup, cache_config.cleanup_interval_seconds,
                                             name="item cache")

    logger.info(f"Core services ready (cache max_size={cache_config.max_size}, "
                f"persistence={'on' if cache_config.enable_persistence else 'off'}, "
                f"{len(exclusion_set)} excluded videos)")

    return CoreServices(
        store=store,
        rate_limits=rate_limits,
        item_cache=item_cache,
        exclusion_set=exclusion_set,
        pinned_associations=pinned_associations,
        orchestrator=orchestrator,
        library=library,
        cleanup_scheduler=cleanup_scheduler,
    )
