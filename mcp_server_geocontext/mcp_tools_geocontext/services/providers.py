from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..core.schemas import GeoPin, Location, TravelProfile


@dataclass
class RouteData:
    """Raw routing result: (lon, lat) coordinates, meters, seconds."""
    coordinates: List[List[float]]
    distance: float
    duration: float


class RoutingProvider(Protocol):
    """Contract for turn-by-turn routing backends."""

    def route(
        self,
        start: Location,
        end: Location,
        waypoints: Sequence[Location] = (),
        profile: TravelProfile = TravelProfile.DRIVING,
    ) -> RouteData:
        """Return the route geometry and totals. Raise ProviderError on failure."""
        raise NotImplementedError


class PoiProvider(Protocol):
    """Contract for point-of-interest backends."""

    def fetch_pois(
        self,
        location: Location,
        radius_m: float,
        interests: Optional[Sequence[str]] = None,
    ) -> List[GeoPin]:
        """Named points within `radius_m` of `location`. Raise ProviderError on failure."""
        raise NotImplementedError


class GeocodingProvider(Protocol):
    """Contract for (reverse) geocoding backends."""

    def reverse(self, location: Location) -> Dict[str, Any]:
        raise NotImplementedError

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        raise NotImplementedError
