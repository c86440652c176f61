from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from ..core.errors import ProviderError
from ..core.schemas import Location
from ..core.settings import DEFAULT_USER_AGENT


class NominatimGeocoder:
    """Token-free (reverse) geocoding via OSM Nominatim.

    Notes:
    - Nominatim requires a User-Agent header.
    - Do not spam; callers cache results.
    """

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        timeout_s: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self._session = session or requests.Session()

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            r = self._session.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            return r.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError("nominatim", str(exc)) from exc

    def reverse(self, location: Location) -> Dict[str, Any]:
        data = self._get(
            "/reverse",
            {"lat": location.lat, "lon": location.lon, "format": "json", "addressdetails": 1},
        )
        if not data or "error" in data:
            message = data.get("error") if isinstance(data, dict) else "empty response"
            raise ProviderError("nominatim", f"no address for ({location.lat}, {location.lon}): {message}")
        return data

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        data = self._get("/search", {"q": query, "format": "json", "limit": limit, "addressdetails": 1})
        return list(data or [])
