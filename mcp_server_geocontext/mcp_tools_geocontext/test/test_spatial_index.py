from __future__ import annotations

import pytest
from pydantic import ValidationError
from shapely.geometry import Polygon

from mcp_tools_geocontext.core.errors import InvalidRequestError
from mcp_tools_geocontext.core.schemas import Location
from mcp_tools_geocontext.services.spatial_index import SpatialIndex
from mcp_tools_geocontext.utils.geo import destination_point, haversine_m

from .fakes import make_pin

LONDON = Location(lat=51.5074, lon=-0.1278)


@pytest.fixture
def index() -> SpatialIndex:
    return SpatialIndex()


def test_london_scenario_radius_order_and_membership(index: SpatialIndex) -> None:
    index.insert(make_pin("second", 51.5080, -0.1281))
    index.insert(make_pin("first", 51.5074, -0.1278))

    assert [p.id for p in index.query_by_radius(LONDON, 200)] == ["first", "second"]
    assert [p.id for p in index.query_by_radius(LONDON, 50)] == ["first"]


def test_radius_query_is_exact_and_sorted(index: SpatialIndex) -> None:
    # Pins on several bearings at known distances
    distances = [950.0, 120.0, 1010.0, 500.0, 30.0, 999.0, 1500.0]
    for i, d in enumerate(distances):
        lat, lon = destination_point(LONDON.lat, LONDON.lon, 37.0 * i, d)
        index.insert(make_pin(f"p{i}", lat, lon, radius=10.0))

    hits = index.query_by_radius_with_distance(LONDON, 1000.0)
    expected = sorted((d, f"p{i}") for i, d in enumerate(distances) if d <= 1000.0)

    assert [p.id for p, _ in hits] == [pid for _, pid in expected]
    assert [d for _, d in hits] == sorted(d for _, d in hits)
    for pin, d in hits:
        assert d == pytest.approx(haversine_m(LONDON.lat, LONDON.lon, pin.location.lat, pin.location.lon))


def test_radius_query_at_high_latitude(index: SpatialIndex) -> None:
    origin = Location(lat=78.22, lon=15.65)
    lat, lon = destination_point(origin.lat, origin.lon, 90.0, 4900.0)
    index.insert(make_pin("east", lat, lon, radius=1.0))

    assert [p.id for p in index.query_by_radius(origin, 5000.0)] == ["east"]
    assert index.query_by_radius(origin, 4800.0) == []


def test_radius_query_across_antimeridian(index: SpatialIndex) -> None:
    index.insert(make_pin("west-side", -17.0, -179.999, radius=5.0))
    hits = index.query_by_radius(Location(lat=-17.0, lon=179.999), 1000.0)
    assert [p.id for p in hits] == ["west-side"]


def test_insert_then_remove_restores_stats(index: SpatialIndex) -> None:
    index.insert(make_pin("a", 10.0, 10.0))
    before = index.stats()

    index.insert(make_pin("b", 10.001, 10.001))
    assert index.stats() == {"total_pins": 2, "index_size": 2}

    assert index.remove("b") is True
    assert index.stats() == before
    assert index.query_by_radius(Location(lat=10.001, lon=10.001), 10.0) == []


def test_remove_unknown_id(index: SpatialIndex) -> None:
    index.insert(make_pin("a", 10.0, 10.0))
    before = index.stats()
    assert index.remove("missing") is False
    assert index.stats() == before


def test_reinsert_same_id_replaces(index: SpatialIndex) -> None:
    index.insert(make_pin("a", 10.0, 10.0))
    index.insert(make_pin("a", 20.0, 20.0, name="moved"))

    assert index.stats() == {"total_pins": 1, "index_size": 1}
    assert index.query_by_radius(Location(lat=10.0, lon=10.0), 100.0) == []
    assert index.get("a").data.name == "moved"


def test_bounding_box_query_is_coarse(index: SpatialIndex) -> None:
    index.insert(make_pin("inside", 10.5, 10.5))
    index.insert(make_pin("outside", 12.0, 12.0))
    # Pin just outside the box but whose activation circle reaches into it
    index.insert(make_pin("edge", 11.0003, 10.5, radius=100.0))

    ids = {p.id for p in index.query_by_bounding_box(10.0, 10.0, 11.0, 11.0)}
    assert ids == {"inside", "edge"}


def test_bounding_box_crossing_antimeridian(index: SpatialIndex) -> None:
    index.insert(make_pin("east", 0.0, 179.5))
    index.insert(make_pin("west", 0.0, -179.5))
    index.insert(make_pin("far", 0.0, 0.0))
    ids = {p.id for p in index.query_by_bounding_box(179.0, -1.0, -179.0, 1.0)}
    assert ids == {"east", "west"}


def test_bounding_box_rejects_bad_values(index: SpatialIndex) -> None:
    with pytest.raises(InvalidRequestError):
        index.query_by_bounding_box(0.0, 10.0, 1.0, 5.0)
    with pytest.raises(InvalidRequestError):
        index.query_by_bounding_box(-200.0, 0.0, 1.0, 1.0)


def test_polygon_query(index: SpatialIndex) -> None:
    index.insert(make_pin("in", 0.4, 0.6))
    index.insert(make_pin("corner", 0.9, 0.1))
    index.insert(make_pin("out", 2.0, 2.0))

    triangle = [Location(lat=0.0, lon=0.0), Location(lat=0.0, lon=1.0), Location(lat=1.0, lon=1.0)]
    assert [p.id for p in index.query_by_polygon(triangle)] == ["in"]

    square = Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])
    assert [p.id for p in index.query_by_polygon(square)] == ["corner", "in"]


def test_degenerate_polygon_is_skipped(index: SpatialIndex) -> None:
    index.insert(make_pin("in", 0.5, 0.5))
    assert index.query_by_polygon([Location(lat=0, lon=0), Location(lat=1, lon=1)]) == []
    bowtie = [Location(lat=0, lon=0), Location(lat=1, lon=1), Location(lat=0, lon=1), Location(lat=1, lon=0)]
    assert index.query_by_polygon(bowtie) == []


def test_nearest_k(index: SpatialIndex) -> None:
    for i, d in enumerate([300.0, 100.0, 200.0, 5000.0]):
        lat, lon = destination_point(LONDON.lat, LONDON.lon, 0.0, d)
        index.insert(make_pin(f"n{i}", lat, lon))

    assert [p.id for p in index.nearest_k(LONDON, 2)] == ["n1", "n2"]
    assert len(index.nearest_k(LONDON, 10)) == 4
    with pytest.raises(InvalidRequestError):
        index.nearest_k(LONDON, 0)


def test_invalid_inputs_rejected(index: SpatialIndex) -> None:
    with pytest.raises(ValidationError):
        Location(lat=91.0, lon=0.0)
    with pytest.raises(ValidationError):
        make_pin("bad", 10.0, 10.0, radius=0.0)
    with pytest.raises(InvalidRequestError):
        index.query_by_radius(LONDON, 0.0)


def test_clear(index: SpatialIndex) -> None:
    index.insert(make_pin("a", 1.0, 1.0))
    index.insert(make_pin("b", 2.0, 2.0))
    index.clear()
    assert index.stats() == {"total_pins": 0, "index_size": 0}
    assert index.all() == []
