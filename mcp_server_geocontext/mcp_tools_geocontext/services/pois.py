from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..core.errors import ProviderError
from ..core.schemas import GeoPin, Location, PinData, PinMetadata, PinType, VerificationStatus
from ..core.settings import DEFAULT_USER_AGENT
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

DEFAULT_TAGS: List[str] = ["amenity", "tourism", "historic", "leisure", "natural"]

# Interest → OSM tag filters. A bare key matches any value.
INTEREST_TO_TAGS: Dict[str, List[str]] = {
    "history": ["historic", "heritage", "memorial", "monument"],
    "architecture": ["building=church", "building=cathedral", "building=castle", "architect"],
    "nature": ["natural", "leisure=park", "leisure=garden", "waterway"],
    "food": ["amenity=restaurant", "amenity=cafe", "amenity=bar", "cuisine"],
    "shopping": ["shop", "amenity=marketplace"],
    "culture": ["amenity=theatre", "amenity=museum", "amenity=gallery", "amenity=library"],
    "transport": ["public_transport", "railway", "aeroway", "highway=bus_stop"],
    "accommodation": ["tourism=hotel", "tourism=hostel", "tourism=guest_house"],
    "entertainment": ["leisure", "sport", "amenity=cinema", "amenity=nightclub"],
    "education": ["amenity=school", "amenity=university", "amenity=college"],
}

_NAME_LANG = re.compile(r"^name:(.+)$")


class OverpassPoiProvider:
    """Token-free POI retrieval via the Overpass API.

    Notes:
    - Overpass is rate limited; callers cache results.
    - We use `out center` so ways can be placed without full geometry.
    """

    def __init__(
        self,
        base_url: str = "https://overpass-api.de/api/interpreter",
        timeout_s: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        pin_radius_m: float = 50.0,
        max_elements: int = 200,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.pin_radius_m = pin_radius_m
        self.max_elements = max_elements
        self._session = session or requests.Session()

    def fetch_pois(
        self,
        location: Location,
        radius_m: float,
        interests: Optional[Sequence[str]] = None,
    ) -> List[GeoPin]:
        query = build_overpass_query(location, radius_m, interests, self.max_elements)
        logger.debug("Executing Overpass query at (%s, %s) r=%.0fm", location.lat, location.lon, radius_m)
        try:
            r = self._session.post(
                self.base_url,
                data={"data": query},
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError("overpass", str(exc)) from exc

        pins = pins_from_overpass(data, self.pin_radius_m)
        logger.info("Fetched %d POIs from OpenStreetMap", len(pins))
        return pins


def tags_for_interests(interests: Optional[Sequence[str]]) -> List[str]:
    if not interests:
        return list(DEFAULT_TAGS)
    tags: List[str] = []
    for interest in interests:
        for tag in INTEREST_TO_TAGS.get((interest or "").strip().lower(), []):
            if tag not in tags:
                tags.append(tag)
    # Unknown interests only: fall back to the general set
    return tags or list(DEFAULT_TAGS)


def _tag_filter(tag: str) -> str:
    if "=" in tag:
        key, value = tag.split("=", 1)
        return f'["{key}"="{value}"]'
    return f'["{tag}"]'


def build_overpass_query(
    location: Location,
    radius_m: float,
    interests: Optional[Sequence[str]] = None,
    max_elements: int = 200,
) -> str:
    r = int(round(radius_m))
    selectors = []
    for tag in tags_for_interests(interests):
        f = _tag_filter(tag)
        selectors.append(f"node{f}(around:{r},{location.lat},{location.lon});")
        selectors.append(f"way{f}(around:{r},{location.lat},{location.lon});")
    query_parts = "\n      ".join(selectors)
    return f"""
    [out:json][timeout:25];
    (
      {query_parts}
    );
    out center {max_elements};
    """


def pins_from_overpass(data: Dict[str, Any], pin_radius_m: float = 50.0) -> List[GeoPin]:
    elements = data.get("elements") or []
    pins: List[GeoPin] = []

    for el in elements:
        tags = el.get("tags") or {}
        name = tags.get("name")
        if not name:
            continue

        lat = el.get("lat")
        lon = el.get("lon")
        if lat is None or lon is None:
            center = el.get("center") or {}
            lat = center.get("lat")
            lon = center.get("lon")
        if lat is None or lon is None:
            continue

        el_id = el.get("id")
        pin_id = f"osm_{el.get('type', 'node')}_{el_id}" if el_id is not None else generate_id("osm")

        pins.append(
            GeoPin(
                id=pin_id,
                location=Location(lat=float(lat), lon=float(lon)),
                radius=pin_radius_m,
                type=pin_type_for_tags(tags),
                data=PinData(
                    name=str(name),
                    description=describe_tags(tags),
                    category=categories_for_tags(tags),
                    visiting_hours=tags.get("opening_hours"),
                    accessibility=accessibility_for_tags(tags),
                ),
                metadata=PinMetadata(
                    source="openstreetmap",
                    verification_status=VerificationStatus.VERIFIED,
                    languages=languages_for_tags(tags),
                    tags=list(tags.keys()),
                ),
            )
        )

    return pins


def pin_type_for_tags(tags: Dict[str, str]) -> PinType:
    if tags.get("historic") or tags.get("heritage") or tags.get("memorial"):
        return PinType.HISTORICAL
    if tags.get("tourism") in ("attraction", "viewpoint"):
        return PinType.LANDMARK
    if tags.get("natural") or tags.get("waterway"):
        return PinType.NATURAL
    if tags.get("amenity") in ("theatre", "museum", "gallery"):
        return PinType.CULTURAL
    if tags.get("event"):
        return PinType.EVENT
    return PinType.POI


def categories_for_tags(tags: Dict[str, str]) -> List[str]:
    categories: List[str] = []
    if tags.get("amenity"):
        categories.append(tags["amenity"])
    if tags.get("tourism"):
        categories.append(tags["tourism"])
    if tags.get("historic"):
        categories.append("historic")
    if tags.get("leisure"):
        categories.append(tags["leisure"])
    if tags.get("shop"):
        categories.append(f"shop:{tags['shop']}")
    if tags.get("cuisine"):
        categories.append(f"cuisine:{tags['cuisine']}")
    return categories


def describe_tags(tags: Dict[str, str]) -> str:
    parts: List[str] = []
    if tags.get("description"):
        parts.append(tags["description"])
    if tags.get("amenity"):
        parts.append(f"Type: {tags['amenity'].replace('_', ' ')}")
    if tags.get("cuisine"):
        parts.append(f"Cuisine: {tags['cuisine']}")
    if tags.get("historic"):
        parts.append(f"Historic: {tags['historic'].replace('_', ' ')}")
    if tags.get("website"):
        parts.append(f"Website: {tags['website']}")
    return ". ".join(parts) or "No description available"


def accessibility_for_tags(tags: Dict[str, str]) -> Optional[str]:
    info: List[str] = []
    if tags.get("wheelchair"):
        info.append(f"Wheelchair: {tags['wheelchair']}")
    if tags.get("toilets:wheelchair"):
        info.append(f"Wheelchair toilets: {tags['toilets:wheelchair']}")
    if tags.get("hearing_loop"):
        info.append("Hearing loop available")
    return ", ".join(info) if info else None


def languages_for_tags(tags: Dict[str, str]) -> List[str]:
    languages = ["en"]
    for key in tags:
        m = _NAME_LANG.match(key)
        if m and m.group(1) not in languages:
            languages.append(m.group(1))
    return languages
