from __future__ import annotations

from typing import Dict, Optional, Sequence

import requests

from ..core.errors import ProviderError
from ..core.schemas import Location, TravelProfile
from ..core.settings import DEFAULT_USER_AGENT
from .providers import RouteData

PROFILE_TO_ORS: Dict[TravelProfile, str] = {
    TravelProfile.DRIVING: "driving-car",
    TravelProfile.WALKING: "foot-walking",
    TravelProfile.CYCLING: "cycling-regular",
    TravelProfile.WHEELCHAIR: "wheelchair",
}


class OpenRouteServiceRouter:
    """Directions via OpenRouteService (requires an API key)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openrouteservice.org/v2",
        timeout_s: float = 60.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenRouteService requires an API key")
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._headers = {
            "Authorization": api_key,
            "Accept": "application/json, application/geo+json",
            "Content-Type": "application/json",
            "User-Agent": user_agent,
        }
        self._session = session or requests.Session()

    def route(
        self,
        start: Location,
        end: Location,
        waypoints: Sequence[Location] = (),
        profile: TravelProfile = TravelProfile.DRIVING,
    ) -> RouteData:
        coordinates = [[start.lon, start.lat]]
        coordinates += [[wp.lon, wp.lat] for wp in waypoints]
        coordinates.append([end.lon, end.lat])

        url = f"{self.base_url}/directions/{PROFILE_TO_ORS[TravelProfile(profile)]}/geojson"
        try:
            r = self._session.post(
                url,
                json={"coordinates": coordinates, "preference": "recommended"},
                headers=self._headers,
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError("openrouteservice", str(exc)) from exc

        features = data.get("features") or []
        if not features:
            raise ProviderError("openrouteservice", "no route found")

        feature = features[0]
        summary = (feature.get("properties") or {}).get("summary") or {}
        return RouteData(
            coordinates=feature["geometry"]["coordinates"],
            distance=float(summary.get("distance", 0.0)),
            duration=float(summary.get("duration", 0.0)),
        )
