from __future__ import annotations

import itertools
import logging
import math
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from rtree import index as rtree_index
from shapely.geometry import Point, Polygon
from shapely.prepared import prep

from ..core.errors import GeometryError, InvalidRequestError
from ..core.schemas import GeoPin, Location
from ..utils.geo import BBox, clamp_bbox, geodesic_bbox, haversine_m, split_antimeridian

logger = logging.getLogger(__name__)

# Every stored box is clamped into this, so it covers all tree entries.
WORLD_BBOX: BBox = (-180.0, -90.0, 180.0, 90.0)


class SpatialIndex:
    """In-memory R-tree over radius-bounded pins.

    Each pin is stored as the geodesic bounding box of its activation circle.
    The box used at insert time is kept and reused for deletion, since the
    R-tree only deletes an entry when id and box both match.

    Mutations are safe under asyncio (no await inside), not under threads.
    """

    def __init__(self) -> None:
        self._tree = rtree_index.Index()
        self._pins: Dict[str, GeoPin] = {}
        self._entries: Dict[str, Tuple[int, BBox]] = {}
        self._pin_ids: Dict[int, str] = {}
        self._keys = itertools.count()
        logger.info("Spatial index initialized")

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, pin: GeoPin) -> bool:
        """Index `pin`; an existing pin with the same id is replaced.

        Returns False (and logs) if the bounding box cannot be computed.
        """
        try:
            bbox = clamp_bbox(geodesic_bbox(pin.location.lat, pin.location.lon, pin.radius))
        except GeometryError:
            logger.error("Failed to add pin %s to spatial index", pin.id, exc_info=True)
            return False

        if pin.id in self._pins:
            self.remove(pin.id)

        key = next(self._keys)
        self._tree.insert(key, bbox)
        self._entries[pin.id] = (key, bbox)
        self._pin_ids[key] = pin.id
        self._pins[pin.id] = pin

        logger.debug("Added pin %s to spatial index (radius=%.1fm)", pin.id, pin.radius)
        return True

    def remove(self, pin_id: str) -> bool:
        entry = self._entries.pop(pin_id, None)
        if entry is None:
            return False
        key, bbox = entry
        self._tree.delete(key, bbox)
        del self._pin_ids[key]
        del self._pins[pin_id]
        logger.debug("Removed pin %s from spatial index", pin_id)
        return True

    def clear(self) -> None:
        for pin_id in list(self._entries):
            self.remove(pin_id)
        logger.info("Spatial index cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _candidates(self, bbox: BBox) -> List[GeoPin]:
        keys: Set[int] = set()
        for part in split_antimeridian(bbox):
            keys.update(self._tree.intersection(part))
        return [self._pins[self._pin_ids[k]] for k in keys]

    def query_by_radius(self, location: Location, radius_m: float) -> List[GeoPin]:
        """Pins whose location is within `radius_m` of `location`, nearest first."""
        return [pin for pin, _ in self.query_by_radius_with_distance(location, radius_m)]

    def query_by_radius_with_distance(self, location: Location, radius_m: float) -> List[Tuple[GeoPin, float]]:
        if not math.isfinite(radius_m) or radius_m <= 0:
            raise InvalidRequestError(f"radius must be > 0, got {radius_m}")

        try:
            search_box = geodesic_bbox(location.lat, location.lon, radius_m)
        except GeometryError:
            logger.error("Failed to query pins by radius", exc_info=True)
            return []

        hits: List[Tuple[GeoPin, float]] = []
        for pin in self._candidates(search_box):
            d = haversine_m(location.lat, location.lon, pin.location.lat, pin.location.lon)
            if d <= radius_m:
                hits.append((pin, d))
        hits.sort(key=lambda item: (item[1], item[0].id))

        logger.debug("Found %d pins within %.0fm of (%s, %s)", len(hits), radius_m, location.lat, location.lon)
        return hits

    def query_by_bounding_box(self, west: float, south: float, east: float, north: float) -> List[GeoPin]:
        """Pins whose activation box overlaps the given box.

        Approximate: no exact distance check. `west > east` is read as a box
        crossing the antimeridian.
        """
        if not all(math.isfinite(v) for v in (west, south, east, north)):
            raise InvalidRequestError("bounding box values must be finite")
        if not (-180.0 <= west <= 180.0 and -180.0 <= east <= 180.0):
            raise InvalidRequestError(f"longitudes out of range: west={west}, east={east}")
        if not (-90.0 <= south <= north <= 90.0):
            raise InvalidRequestError(f"latitudes out of range or inverted: south={south}, north={north}")

        if west > east:
            east += 360.0
        return self._candidates((west, south, east, north))

    def query_by_polygon(self, polygon: Union[Polygon, Sequence[Location]]) -> List[GeoPin]:
        """Pins whose location lies inside (or on the edge of) `polygon`."""
        try:
            shape = polygon if isinstance(polygon, Polygon) else _polygon_from_locations(polygon)
            if shape.is_empty or not shape.is_valid:
                raise GeometryError("polygon is empty or invalid")
        except (GeometryError, ValueError):
            logger.error("Failed to query pins by polygon", exc_info=True)
            return []

        prepared = prep(shape)
        results = [
            pin
            for pin in self._candidates(shape.bounds)
            if prepared.covers(Point(pin.location.lon, pin.location.lat))
        ]
        results.sort(key=lambda p: p.id)
        logger.debug("Found %d pins within polygon", len(results))
        return results

    def nearest_k(self, location: Location, k: int = 10) -> List[GeoPin]:
        """The `k` pins closest to `location`.

        Linear scan, O(n log n) per call; fine for an in-memory working set.
        """
        if k <= 0:
            raise InvalidRequestError(f"k must be > 0, got {k}")
        ranked = sorted(
            self._pins.values(),
            key=lambda p: (haversine_m(location.lat, location.lon, p.location.lat, p.location.lon), p.id),
        )
        return ranked[:k]

    # ------------------------------------------------------------------
    # Lookup / stats
    # ------------------------------------------------------------------

    def get(self, pin_id: str) -> Optional[GeoPin]:
        return self._pins.get(pin_id)

    def __contains__(self, pin_id: object) -> bool:
        return pin_id in self._pins

    def all(self) -> List[GeoPin]:
        return list(self._pins.values())

    def stats(self) -> Dict[str, int]:
        """`total_pins` and `index_size` must always be equal."""
        index_size = self._tree.count(WORLD_BBOX)
        return {"total_pins": len(self._pins), "index_size": index_size}


def _polygon_from_locations(vertices: Sequence[Location]) -> Polygon:
    if len(vertices) < 3:
        raise GeometryError(f"polygon needs at least 3 vertices, got {len(vertices)}")
    return Polygon([(v.lon, v.lat) for v in vertices])
