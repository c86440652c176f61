from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..core.cache import MemoryCache
from ..core.errors import GeometryError, ProviderError
from ..core.schemas import (
    EnrichedLocation,
    EnrichRequest,
    GeoPin,
    Location,
    NearbyContext,
    NearbyContextRequest,
    PinData,
    PinMetadata,
    PinType,
    VerificationStatus,
    WebhookEvent,
)
from ..utils.ids import generate_id
from .concurrency import describe_error
from .providers import GeocodingProvider
from .route_enrichment import RouteEnrichmentPipeline
from .spatial_index import SpatialIndex
from .webhooks import WebhookManager

logger = logging.getLogger(__name__)

GEOCODE_TTL_S = 24 * 3600


class LocationService:
    """Point-centric context: custom pins, nearby lookups, enrichment."""

    def __init__(
        self,
        index: SpatialIndex,
        cache: MemoryCache,
        pipeline: RouteEnrichmentPipeline,
        geocoder: GeocodingProvider,
        webhooks: WebhookManager,
        default_pin_radius_m: float = 100.0,
        preview_size: int = 20,
    ) -> None:
        self.index = index
        self.cache = cache
        self.pipeline = pipeline
        self.geocoder = geocoder
        self.webhooks = webhooks
        self.default_pin_radius_m = default_pin_radius_m
        self.preview_size = preview_size

    # ------------------------------------------------------------------
    # Pins
    # ------------------------------------------------------------------

    def create_pin(
        self,
        location: Location,
        pin_type: PinType,
        name: str,
        description: str = "",
        category: Optional[Sequence[str]] = None,
        radius_m: Optional[float] = None,
    ) -> GeoPin:
        pin = GeoPin(
            id=generate_id("pin"),
            location=location,
            radius=self.default_pin_radius_m if radius_m is None else radius_m,
            type=pin_type,
            data=PinData(name=name, description=description, category=list(category or [])),
            metadata=PinMetadata(source="user_created", verification_status=VerificationStatus.UNVERIFIED),
        )
        if not self.index.insert(pin):
            raise GeometryError(f"could not index pin at ({location.lat}, {location.lon})")
        logger.info("Created geo-pin %s", pin.id)
        return pin

    def remove_pin(self, pin_id: str) -> bool:
        return self.index.remove(pin_id)

    # ------------------------------------------------------------------
    # Geocoding
    # ------------------------------------------------------------------

    async def reverse_geocode(self, location: Location) -> Optional[Dict[str, Any]]:
        """Structured address for `location`, or None if the geocoder fails."""
        key = self.cache.create_key("nominatim", "reverse", location.lat, location.lon)

        async def _compute() -> Dict[str, Any]:
            return await asyncio.to_thread(self.geocoder.reverse, location)

        try:
            return await self.cache.wrap(key, _compute, GEOCODE_TTL_S)
        except ProviderError as exc:
            logger.warning("Reverse geocoding failed for (%s, %s): %s", location.lat, location.lon, exc)
            return None

    async def search_place(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        key = self.cache.create_key("nominatim", "search", query, limit)

        async def _compute() -> List[Dict[str, Any]]:
            return await asyncio.to_thread(self.geocoder.search, query, limit)

        return await self.cache.wrap(key, _compute)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def enrich_location(self, request: EnrichRequest) -> EnrichedLocation:
        """POIs and address around a point; indexes the POIs.

        One failing provider degrades that part of the answer; both failing
        is an operation failure.
        """
        correlation_id = generate_id("enrich")
        poi_error: Optional[ProviderError] = None
        try:
            pins = await self.pipeline.fetch_pois(request.location, request.radius)
        except ProviderError as exc:
            logger.warning("POI lookup failed during enrichment: %s", exc)
            poi_error = exc
            pins = []

        address = await self.reverse_geocode(request.location)

        if poi_error is not None and address is None:
            self.webhooks.trigger_event(
                WebhookEvent.ENRICHMENT_FAILED,
                {"location": request.location.model_dump(), "error": describe_error(poi_error)},
                correlation_id=correlation_id,
            )
            raise poi_error

        for pin in pins:
            self.index.insert(pin)

        self.webhooks.trigger_event(
            WebhookEvent.ENRICHMENT_COMPLETED,
            {"location": request.location.model_dump(), "pois_found": len(pins)},
            correlation_id=correlation_id,
        )
        return EnrichedLocation(
            location=request.location,
            address=address,
            pois_found=len(pins),
            pois=pins[: self.preview_size],
            message=f"Location enriched with {len(pins)} points of interest",
        )

    def _known_pins(self, request: NearbyContextRequest) -> List[GeoPin]:
        pins = self.index.query_by_radius(request.location, request.radius)
        if request.types:
            wanted = set(request.types)
            pins = [p for p in pins if p.type in wanted]
        return pins

    async def get_nearby_context(self, request: NearbyContextRequest) -> NearbyContext:
        """Nearest-first pins around a point, topped up from the POI provider."""
        pins = self._known_pins(request)

        if len(pins) < request.max_results:
            try:
                fetched = await self.pipeline.fetch_pois(request.location, request.radius)
            except ProviderError as exc:
                logger.warning("POI lookup failed, answering from index only: %s", exc)
            else:
                # Re-insert known ids so provider metadata stays current
                for pin in fetched:
                    self.index.insert(pin)
                pins = self._known_pins(request)

        pins = pins[: request.max_results]
        return NearbyContext(location=request.location, radius=request.radius, total_pins=len(pins), pins=pins)
