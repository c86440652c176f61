"""Spherical geodesy helpers.

Pure functions, no I/O. Coordinates in paths are GeoJSON-ordered
`(lon, lat)` pairs; single points are passed as `lat, lon` arguments.
Bounding boxes are `(west, south, east, north)` tuples in degrees.
"""
from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from ..core.errors import GeometryError

# Mean Earth radius (IUGG), meters
EARTH_RADIUS_M = 6371008.8

BBox = Tuple[float, float, float, float]
LonLat = Tuple[float, float]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance (Haversine) in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def destination_point(lat: float, lon: float, bearing_deg: float, distance_m: float) -> Tuple[float, float]:
    """Point reached from (lat, lon) after `distance_m` along `bearing_deg`. Returns (lat, lon)."""
    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    phi2 = math.asin(max(-1.0, min(1.0, sin_phi2)))
    y = math.sin(theta) * math.sin(delta) * math.cos(phi1)
    x = math.cos(delta) - math.sin(phi1) * sin_phi2
    lambda2 = lambda1 + math.atan2(y, x)

    lon2 = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return math.degrees(phi2), lon2


def geodesic_bbox(lat: float, lon: float, radius_m: float) -> BBox:
    """Axis-aligned box enclosing the spherical circle of `radius_m` around (lat, lon).

    The longitude half-width grows with latitude (asin(sin r / cos lat)), so the
    box never under-covers the circle the way a flat meters-per-degree box does.
    West/east are NOT wrapped: near the antimeridian they may leave [-180, 180];
    use `split_antimeridian` or `clamp_bbox`. A circle that contains a pole
    spans all longitudes.
    """
    if not all(math.isfinite(v) for v in (lat, lon, radius_m)):
        raise GeometryError(f"non-finite input: lat={lat}, lon={lon}, radius={radius_m}")
    if radius_m <= 0:
        raise GeometryError(f"radius must be > 0, got {radius_m}")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise GeometryError(f"coordinates out of range: lat={lat}, lon={lon}")

    angular = radius_m / EARTH_RADIUS_M
    if angular >= math.pi:
        return (-180.0, -90.0, 180.0, 90.0)

    dlat = math.degrees(angular)
    south = lat - dlat
    north = lat + dlat
    if north >= 90.0 or south <= -90.0:
        return (-180.0, max(south, -90.0), 180.0, min(north, 90.0))

    ratio = math.sin(angular) / math.cos(math.radians(lat))
    dlon = 180.0 if ratio >= 1.0 else math.degrees(math.asin(ratio))
    return (lon - dlon, south, lon + dlon, north)


def clamp_bbox(bbox: BBox) -> BBox:
    west, south, east, north = bbox
    return (max(west, -180.0), max(south, -90.0), min(east, 180.0), min(north, 90.0))


def split_antimeridian(bbox: BBox) -> List[BBox]:
    """Split an unwrapped box into at most two boxes inside [-180, 180]."""
    west, south, east, north = bbox
    if east - west >= 360.0:
        return [(-180.0, south, 180.0, north)]
    if west < -180.0:
        return [(west + 360.0, south, 180.0, north), (-180.0, south, east, north)]
    if east > 180.0:
        return [(west, south, 180.0, north), (-180.0, south, east - 360.0, north)]
    return [bbox]


def path_length_m(coords: Sequence[Sequence[float]]) -> float:
    """Length of a (lon, lat) polyline in meters."""
    total = 0.0
    for (lon1, lat1), (lon2, lat2) in zip(coords, coords[1:]):
        total += haversine_m(lat1, lon1, lat2, lon2)
    return total


def _intermediate(lon1: float, lat1: float, lon2: float, lat2: float, fraction: float) -> LonLat:
    """Point at `fraction` of the great circle from point 1 to point 2."""
    phi1, lambda1 = math.radians(lat1), math.radians(lon1)
    phi2, lambda2 = math.radians(lat2), math.radians(lon2)
    delta = haversine_m(lat1, lon1, lat2, lon2) / EARTH_RADIUS_M
    if delta == 0.0:
        return lon1, lat1

    a = math.sin((1 - fraction) * delta) / math.sin(delta)
    b = math.sin(fraction * delta) / math.sin(delta)
    x = a * math.cos(phi1) * math.cos(lambda1) + b * math.cos(phi2) * math.cos(lambda2)
    y = a * math.cos(phi1) * math.sin(lambda1) + b * math.cos(phi2) * math.sin(lambda2)
    z = a * math.sin(phi1) + b * math.sin(phi2)
    lat = math.degrees(math.atan2(z, math.sqrt(x * x + y * y)))
    lon = math.degrees(math.atan2(y, x))
    return lon, lat


def point_along(coords: Sequence[Sequence[float]], distance_m: float) -> LonLat:
    """Point `distance_m` along a (lon, lat) polyline; clamps to the end points."""
    if not coords:
        raise GeometryError("empty path")
    if distance_m <= 0:
        return float(coords[0][0]), float(coords[0][1])

    travelled = 0.0
    for (lon1, lat1), (lon2, lat2) in zip(coords, coords[1:]):
        seg = haversine_m(lat1, lon1, lat2, lon2)
        if seg > 0 and travelled + seg >= distance_m:
            return _intermediate(lon1, lat1, lon2, lat2, (distance_m - travelled) / seg)
        travelled += seg
    return float(coords[-1][0]), float(coords[-1][1])


def sample_along(coords: Sequence[Sequence[float]], interval_m: float) -> List[LonLat]:
    """Points at 0, interval, 2*interval, ... along the path (start always included)."""
    length = path_length_m(coords)
    if length <= 0 or interval_m <= 0:
        return [point_along(coords, 0.0)]
    n = int(math.floor(length / interval_m + 1e-9))
    return [point_along(coords, i * interval_m) for i in range(n + 1)]
