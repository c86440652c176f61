from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from ..core.cache import MemoryCache
from ..core.errors import ProviderError
from ..core.schemas import RouteGeometry, RouteRequest, RouteResponse, WebhookEvent
from ..utils.geo import path_length_m
from ..utils.ids import generate_id
from .concurrency import describe_error
from .providers import RouteData, RoutingProvider
from .route_enrichment import RouteEnrichmentPipeline
from .webhooks import WebhookManager

logger = logging.getLogger(__name__)

# 50 km/h average -> 72 seconds per kilometer
FALLBACK_SECONDS_PER_KM = 72.0


def straight_line_route(request: RouteRequest) -> RouteData:
    """Route through start -> waypoints -> end without a routing backend."""
    coordinates = [[request.start.lon, request.start.lat]]
    coordinates += [[wp.lon, wp.lat] for wp in request.waypoints]
    coordinates.append([request.end.lon, request.end.lat])
    distance = path_length_m(coordinates)
    return RouteData(
        coordinates=coordinates,
        distance=distance,
        duration=distance / 1000.0 * FALLBACK_SECONDS_PER_KM,
    )


class RoutingService:
    """Route generation plus POI enrichment along the result."""

    def __init__(
        self,
        pipeline: RouteEnrichmentPipeline,
        cache: MemoryCache,
        webhooks: WebhookManager,
        router: Optional[RoutingProvider] = None,
        preview_size: int = 20,
    ) -> None:
        self.pipeline = pipeline
        self.cache = cache
        self.webhooks = webhooks
        self.router = router
        self.preview_size = preview_size
        if router is None:
            logger.warning("No routing provider configured; routes are straight-line estimates")

    @property
    def is_available(self) -> bool:
        return self.router is not None

    async def fetch_route(self, request: RouteRequest) -> Tuple[RouteData, bool]:
        """Returns (route, is_fallback)."""
        if self.router is None:
            return straight_line_route(request), True

        router = self.router
        key = self.cache.create_key(
            "route",
            request.start.lat,
            request.start.lon,
            request.end.lat,
            request.end.lon,
            "|".join(f"{wp.lat},{wp.lon}" for wp in request.waypoints) or "-",
            request.profile.value,
        )

        async def _compute() -> RouteData:
            return await asyncio.to_thread(router.route, request.start, request.end, request.waypoints, request.profile)

        try:
            return await self.cache.wrap(key, _compute), False
        except ProviderError as exc:
            logger.warning("Routing provider failed, using straight-line fallback: %s", exc)
            return straight_line_route(request), True

    async def generate_route(self, request: RouteRequest) -> RouteResponse:
        route_id = generate_id("route")
        try:
            route, fallback = await self.fetch_route(request)
            pins = await self.pipeline.discover(route.coordinates, request.buffer_radius, request.interests)
        except Exception as exc:
            logger.error("Failed to generate route %s", route_id, exc_info=True)
            self.webhooks.trigger_event(
                WebhookEvent.ROUTE_FAILED,
                {"route_id": route_id, "error": describe_error(exc)},
                correlation_id=route_id,
            )
            raise

        logger.info("Generated route %s with %d POIs", route_id, len(pins))
        response = RouteResponse(
            route_id=route_id,
            route=RouteGeometry(distance=route.distance, duration=route.duration, coordinates=route.coordinates),
            contextual_pins=len(pins),
            pins=pins[: self.preview_size],
            message=f"Route generated successfully with {len(pins)} points of interest",
            fallback=fallback,
        )
        self.webhooks.trigger_event(
            WebhookEvent.ROUTE_COMPLETED,
            {
                "route_id": route_id,
                "distance": route.distance,
                "duration": route.duration,
                "contextual_pins": len(pins),
                "fallback": fallback,
            },
            correlation_id=route_id,
        )
        return response
