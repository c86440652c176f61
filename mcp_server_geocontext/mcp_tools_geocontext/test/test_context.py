from __future__ import annotations

import asyncio

import pytest

from mcp_tools_geocontext.app import build_app_context
from mcp_tools_geocontext.core.errors import ProviderError
from mcp_tools_geocontext.core.schemas import (
    EnrichRequest,
    Location,
    NearbyContextRequest,
    PinType,
    VerificationStatus,
)
from mcp_tools_geocontext.core.settings import Settings
from mcp_tools_geocontext.utils.geo import destination_point

from .fakes import FailingPoiProvider, FakeGeocoder, FakePoiProvider, RecordingSender, make_pin

ROME = Location(lat=41.8902, lon=12.4922)


def _pin_at(pin_id, meters, pin_type=PinType.POI):
    lat, lon = destination_point(ROME.lat, ROME.lon, 45.0, meters)
    return make_pin(pin_id, lat, lon, pin_type=pin_type)


def _app(poi_provider=None, geocoder=None, sender=None):
    return build_app_context(
        Settings(),
        poi_provider=poi_provider or FakePoiProvider(),
        geocoder=geocoder or FakeGeocoder(),
        webhook_sender=sender or RecordingSender(),
    )


def _run(app, coro):
    async def scenario():
        try:
            return await coro
        finally:
            await app.webhooks.stop()

    return asyncio.run(scenario())


def test_create_and_remove_pin() -> None:
    app = _app()
    pin = app.locations.create_pin(ROME, PinType.LANDMARK, "Colosseum", "Flavian amphitheatre", ["history"])

    assert pin.id.startswith("pin_")
    assert pin.metadata.source == "user_created"
    assert pin.metadata.verification_status == VerificationStatus.UNVERIFIED
    assert pin.radius == app.settings.pin_radius_m
    assert app.index.query_by_radius(ROME, 10.0) == [pin]

    assert app.locations.remove_pin(pin.id) is True
    assert app.locations.remove_pin(pin.id) is False
    assert app.index.stats()["total_pins"] == 0


def test_nearby_context_tops_up_from_provider_nearest_first() -> None:
    provider = FakePoiProvider(lambda loc, r: [_pin_at("osm_node_2", 300.0), _pin_at("osm_node_1", 100.0)])
    app = _app(poi_provider=provider)
    app.index.insert(_pin_at("local", 200.0))

    context = _run(app, app.locations.get_nearby_context(NearbyContextRequest(location=ROME, radius=1000.0)))

    assert [p.id for p in context.pins] == ["osm_node_1", "local", "osm_node_2"]
    assert context.total_pins == 3
    assert len(provider.calls) == 1


def test_nearby_context_respects_max_results_and_types() -> None:
    provider = FakePoiProvider()
    app = _app(poi_provider=provider)
    app.index.insert(_pin_at("a", 100.0, PinType.HISTORICAL))
    app.index.insert(_pin_at("b", 200.0, PinType.POI))
    app.index.insert(_pin_at("c", 300.0, PinType.HISTORICAL))

    request = NearbyContextRequest(location=ROME, radius=1000.0, types=[PinType.HISTORICAL], max_results=1)
    context = _run(app, app.locations.get_nearby_context(request))

    assert [p.id for p in context.pins] == ["a"]
    assert provider.calls == []


def test_nearby_context_survives_provider_failure() -> None:
    app = _app(poi_provider=FailingPoiProvider())
    app.index.insert(_pin_at("local", 50.0))

    context = _run(app, app.locations.get_nearby_context(NearbyContextRequest(location=ROME)))
    assert [p.id for p in context.pins] == ["local"]


def test_nearby_context_refreshes_pins_already_indexed() -> None:
    lat, lon = destination_point(ROME.lat, ROME.lon, 45.0, 100.0)
    provider = FakePoiProvider(lambda loc, r: [make_pin("osm_node_1", lat, lon, name="new")])
    app = _app(poi_provider=provider)
    app.index.insert(make_pin("osm_node_1", lat, lon, name="old"))

    context = _run(app, app.locations.get_nearby_context(NearbyContextRequest(location=ROME, radius=1000.0)))

    assert [p.data.name for p in context.pins] == ["new"]
    assert app.index.get("osm_node_1").data.name == "new"
    assert app.index.stats()["total_pins"] == 1


def test_enrich_location_indexes_pois_and_geocodes() -> None:
    app = _app(poi_provider=FakePoiProvider(lambda loc, r: [_pin_at("osm_node_9", 80.0)]))

    enriched = _run(app, app.locations.enrich_location(EnrichRequest(location=ROME)))

    assert enriched.pois_found == 1
    assert enriched.address["display_name"].startswith("Somewhere near")
    assert "osm_node_9" in app.index


def test_enrich_location_degrades_when_one_provider_fails() -> None:
    app = _app(poi_provider=FailingPoiProvider())
    enriched = _run(app, app.locations.enrich_location(EnrichRequest(location=ROME)))
    assert enriched.pois_found == 0
    assert enriched.address is not None

    app = _app(geocoder=FakeGeocoder(fail=True), poi_provider=FakePoiProvider(lambda loc, r: [_pin_at("p", 10.0)]))
    enriched = _run(app, app.locations.enrich_location(EnrichRequest(location=ROME)))
    assert enriched.address is None
    assert enriched.pois_found == 1


def test_enrich_location_fails_when_both_providers_fail() -> None:
    sender = RecordingSender()
    app = _app(poi_provider=FailingPoiProvider(), geocoder=FakeGeocoder(fail=True), sender=sender)
    app.webhooks.register("https://hooks.example.com", ["enrichment.failed"])

    with pytest.raises(ProviderError):
        _run(app, app.locations.enrich_location(EnrichRequest(location=ROME)))
    assert len(sender.calls) == 1
    assert sender.calls[0][2]["X-Webhook-Event"] == "enrichment.failed"


def test_reverse_geocode_is_cached() -> None:
    geocoder = FakeGeocoder()
    app = _app(geocoder=geocoder)

    async def twice():
        await app.locations.reverse_geocode(ROME)
        return await app.locations.reverse_geocode(ROME)

    assert _run(app, twice()) is not None
    assert geocoder.calls == 1
