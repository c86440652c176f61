from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .core.cache import MemoryCache
from .core.metrics import ToolMetrics
from .core.settings import Settings
from .services.batch import BatchService
from .services.concurrency import ConcurrencyController
from .services.context import LocationService
from .services.geocoding import NominatimGeocoder
from .services.pois import OverpassPoiProvider
from .services.providers import GeocodingProvider, PoiProvider, RoutingProvider
from .services.route_enrichment import RouteEnrichmentPipeline
from .services.routing import RoutingService
from .services.routing_provider import OpenRouteServiceRouter
from .services.spatial_index import SpatialIndex
from .services.webhooks import Sender, WebhookManager

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Every long-lived service, built once and handed to consumers."""
    settings: Settings
    index: SpatialIndex
    cache: MemoryCache
    controller: ConcurrencyController
    webhooks: WebhookManager
    pipeline: RouteEnrichmentPipeline
    routing: RoutingService
    locations: LocationService
    batch: BatchService
    metrics: ToolMetrics = field(default_factory=ToolMetrics)

    def stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "spatial_index": self.index.stats(),
            "webhooks": self.webhooks.stats(),
            "routing_available": self.routing.is_available,
            "tools": self.metrics.snapshot(),
            "tool_summary": self.metrics.summary(),
        }


def build_app_context(
    settings: Settings,
    poi_provider: Optional[PoiProvider] = None,
    geocoder: Optional[GeocodingProvider] = None,
    router: Optional[RoutingProvider] = None,
    webhook_sender: Optional[Sender] = None,
) -> AppContext:
    """Wire services from settings; providers can be swapped (tests, offline use)."""
    if poi_provider is None:
        poi_provider = OverpassPoiProvider(
            base_url=settings.overpass_api_url,
            timeout_s=settings.osm_timeout_s,
            user_agent=settings.user_agent,
            pin_radius_m=settings.osm_pin_radius_m,
        )
    if geocoder is None:
        geocoder = NominatimGeocoder(
            base_url=settings.nominatim_api_url,
            timeout_s=min(settings.osm_timeout_s, 10.0),
            user_agent=settings.user_agent,
        )
    if router is None and settings.openroute_api_key:
        router = OpenRouteServiceRouter(
            api_key=settings.openroute_api_key,
            base_url=settings.openroute_api_url,
            timeout_s=settings.routing_timeout_s,
            user_agent=settings.user_agent,
        )

    index = SpatialIndex()
    cache = MemoryCache(ttl_seconds=settings.cache_ttl, enabled=settings.enable_cache)
    controller = ConcurrencyController(default_concurrency=settings.max_concurrent_requests)
    webhooks = WebhookManager(
        sender=webhook_sender,
        timeout_s=settings.http_timeout_s,
        user_agent=settings.user_agent,
    )
    pipeline = RouteEnrichmentPipeline(index, cache, controller, poi_provider)
    routing = RoutingService(pipeline, cache, webhooks, router=router, preview_size=settings.preview_size)
    locations = LocationService(
        index,
        cache,
        pipeline,
        geocoder,
        webhooks,
        default_pin_radius_m=settings.pin_radius_m,
        preview_size=settings.preview_size,
    )
    batch = BatchService(
        controller,
        routing,
        locations,
        webhooks,
        max_concurrent_requests=settings.max_concurrent_requests,
    )

    logger.info(
        "Configuration status: routing=%s cache=%s ttl=%ds max_concurrency=%d",
        routing.is_available,
        settings.enable_cache,
        settings.cache_ttl,
        settings.max_concurrent_requests,
    )
    return AppContext(
        settings=settings,
        index=index,
        cache=cache,
        controller=controller,
        webhooks=webhooks,
        pipeline=pipeline,
        routing=routing,
        locations=locations,
        batch=batch,
    )
