from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.cache import MemoryCache
from ..core.schemas import GeoPin, Location
from ..utils.geo import path_length_m, sample_along
from .concurrency import ConcurrencyController
from .providers import PoiProvider
from .spatial_index import SpatialIndex

logger = logging.getLogger(__name__)

MAX_SAMPLE_INTERVAL_M = 1000.0
MIN_SAMPLES = 10
DEDUP_DECIMALS = 5  # ~1.1 m


def sample_interval(length_m: float) -> float:
    """At most one sample per kilometer, at least ~10 samples on short paths."""
    return min(MAX_SAMPLE_INTERVAL_M, length_m / MIN_SAMPLES)


def dedupe_by_location(pins: Sequence[GeoPin], decimals: int = DEDUP_DECIMALS) -> List[GeoPin]:
    """Keep the first pin per rounded (lat, lon)."""
    seen: Dict[Tuple[float, float], GeoPin] = {}
    for pin in pins:
        key = (round(pin.location.lat, decimals), round(pin.location.lon, decimals))
        if key not in seen:
            seen[key] = pin
    return list(seen.values())


class RouteEnrichmentPipeline:
    """Finds POIs along a path and merges them into the spatial index.

    The path is sampled every `sample_interval(length)` meters; each sample
    is one cached POI lookup run through the concurrency controller. A
    failing sample contributes nothing instead of failing the route.
    """

    def __init__(
        self,
        index: SpatialIndex,
        cache: MemoryCache,
        controller: ConcurrencyController,
        poi_provider: PoiProvider,
        poi_cache_ttl: Optional[int] = None,
    ) -> None:
        self.index = index
        self.cache = cache
        self.controller = controller
        self.poi_provider = poi_provider
        self.poi_cache_ttl = poi_cache_ttl

    async def fetch_pois(
        self,
        location: Location,
        radius_m: float,
        interests: Optional[Sequence[str]] = None,
    ) -> List[GeoPin]:
        """Cached POI lookup. Provider errors propagate and are not cached."""
        key = self.cache.create_key(
            "osm",
            "pois",
            f"{location.lat:.6f}",
            f"{location.lon:.6f}",
            f"{radius_m:g}",
            ",".join(sorted(interests)) if interests else "all",
        )

        async def _compute() -> List[GeoPin]:
            return await asyncio.to_thread(self.poi_provider.fetch_pois, location, radius_m, interests)

        return await self.cache.wrap(key, _compute, self.poi_cache_ttl)

    async def discover(
        self,
        coordinates: Sequence[Sequence[float]],
        buffer_radius_m: float,
        interests: Optional[Sequence[str]] = None,
    ) -> List[GeoPin]:
        """POIs within `buffer_radius_m` of the (lon, lat) path, deduplicated and indexed."""
        length = path_length_m(coordinates)
        samples = sample_along(coordinates, sample_interval(length))
        logger.debug("Sampling %d points along %.0fm path", len(samples), length)

        def _task(lon: float, lat: float):
            location = Location(lat=lat, lon=lon)
            return lambda: self.fetch_pois(location, buffer_radius_m, interests)

        report = await self.controller.run(
            [_task(lon, lat) for lon, lat in samples],
            fail_fast=False,
            label="route sampling",
        )

        merged: List[GeoPin] = []
        for result in report.results:
            if result.success:
                merged.extend(result.data or [])
            else:
                logger.warning("POI lookup failed for route sample %d: %s", result.index, result.error)
        if samples and report.failed == len(samples):
            logger.warning("All %d route samples failed; returning no POIs", len(samples))

        pins = dedupe_by_location(merged)
        for pin in pins:
            self.index.insert(pin)

        logger.info("Discovered %d POIs along route (%d before dedup)", len(pins), len(merged))
        return pins
