from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ..core.schemas import GeoPin, RouteResponse
from .geo import destination_point

CIRCLE_STEPS = 32


def _pin_properties(pin: GeoPin, include_properties: bool) -> Dict[str, Any]:
    if not include_properties:
        return {"id": pin.id, "name": pin.data.name}
    return {
        "id": pin.id,
        "name": pin.data.name,
        "description": pin.data.description,
        "type": pin.type.value,
        "category": list(pin.data.category),
        "radius": pin.radius,
        "source": pin.metadata.source,
        "verification_status": pin.metadata.verification_status.value,
        "tags": list(pin.metadata.tags),
    }


def circle_ring(lat: float, lon: float, radius_m: float, steps: int = CIRCLE_STEPS) -> List[List[float]]:
    """Closed (lon, lat) ring approximating a circle on the sphere."""
    ring = []
    for i in range(steps):
        plat, plon = destination_point(lat, lon, 360.0 * i / steps, radius_m)
        ring.append([plon, plat])
    ring.append(ring[0])
    return ring


def export_route(route: RouteResponse, include_properties: bool = True, simplified: bool = False) -> Dict[str, Any]:
    """Route line plus one Point per preview pin; `simplified` drops the pins."""
    features: List[Dict[str, Any]] = [
        {
            "type": "Feature",
            "geometry": {"type": "LineString", "coordinates": route.route.coordinates},
            "properties": {
                "name": f"Route {route.route_id}",
                "distance": route.route.distance,
                "duration": route.route.duration,
                "type": "route",
            },
        }
    ]
    if not simplified:
        for i, pin in enumerate(route.pins):
            props = _pin_properties(pin, include_properties)
            if include_properties:
                props["index"] = i
            features.append(
                {
                    "type": "Feature",
                    "geometry": {"type": "Point", "coordinates": [pin.location.lon, pin.location.lat]},
                    "properties": props,
                }
            )
    return {"type": "FeatureCollection", "features": features}


def export_pins(pins: Sequence[GeoPin], include_properties: bool = True, as_circles: bool = False) -> Dict[str, Any]:
    features = []
    for pin in pins:
        if as_circles:
            geometry = {"type": "Polygon", "coordinates": [circle_ring(pin.location.lat, pin.location.lon, pin.radius)]}
        else:
            geometry = {"type": "Point", "coordinates": [pin.location.lon, pin.location.lat]}
        features.append({"type": "Feature", "geometry": geometry, "properties": _pin_properties(pin, include_properties)})
    return {"type": "FeatureCollection", "features": features}
