from __future__ import annotations

import asyncio
import json

from mcp_tools_geocontext.app import build_app_context
from mcp_tools_geocontext.core.errors import ProviderError
from mcp_tools_geocontext.core.schemas import (
    BatchContextRequest,
    BatchEnrichRequest,
    BatchOptions,
    BatchRouteRequest,
    EnrichRequest,
    Location,
    NearbyContextRequest,
    RouteRequest,
    RouteResponse,
)
from mcp_tools_geocontext.core.settings import Settings
from mcp_tools_geocontext.services.concurrency import STOPPED_MESSAGE

from .fakes import FakeGeocoder, FakePoiProvider, RecordingSender, make_pin

HOOK = "https://hooks.example.com/batch"


def _app(respond=None, geocoder_fails=False):
    sender = RecordingSender()
    app = build_app_context(
        Settings(),
        poi_provider=FakePoiProvider(respond),
        geocoder=FakeGeocoder(fail=geocoder_fails),
        webhook_sender=sender,
    )
    app.webhooks.register(HOOK, ["batch.completed", "batch.failed"])
    return app, sender


def _run(app, coro):
    async def scenario():
        try:
            return await coro
        finally:
            await app.webhooks.stop()

    return asyncio.run(scenario())


def _batch_events(sender):
    return [json.loads(body) for _, body, headers in sender.calls if headers["X-Webhook-Event"].startswith("batch.")]


def _southern_hemisphere_fails(location, radius):
    if location.lat < 0:
        raise ProviderError("overpass", "timeout")
    return [make_pin(f"osm_node_{location.lat:.0f}", location.lat, location.lon)]


def test_route_batch_keeps_order_and_emits_completed() -> None:
    app, sender = _app()
    requests = [
        RouteRequest(start=Location(lat=10.0 + i, lon=10.0), end=Location(lat=10.05 + i, lon=10.05))
        for i in range(4)
    ]

    response = _run(app, app.batch.generate_route_batch(BatchRouteRequest(requests=requests)))

    assert response.total_requests == 4
    assert response.successful == 4
    assert [r.index for r in response.results] == [0, 1, 2, 3]
    assert all(isinstance(r.data, RouteResponse) for r in response.results)
    assert response.results[2].data.route.coordinates[0] == [10.0, 12.0]

    [event] = _batch_events(sender)
    assert event["event"] == "batch.completed"
    assert event["data"]["kind"] == "route"
    assert event["correlation_id"] == event["data"]["batch_id"]


def test_enrichment_batch_partial_failure() -> None:
    app, sender = _app(respond=_southern_hemisphere_fails, geocoder_fails=True)
    locations = [EnrichRequest(location=Location(lat=lat, lon=0.0)) for lat in (10.0, -10.0, 20.0)]

    response = _run(app, app.batch.enrich_location_batch(BatchEnrichRequest(locations=locations)))

    assert [r.success for r in response.results] == [True, False, True]
    assert response.results[1].error == "overpass: timeout"
    assert (response.successful, response.failed) == (2, 1)
    assert _batch_events(sender)[0]["event"] == "batch.completed"


def test_enrichment_batch_fail_fast() -> None:
    app, sender = _app(respond=_southern_hemisphere_fails, geocoder_fails=True)
    locations = [EnrichRequest(location=Location(lat=lat, lon=0.0)) for lat in (10.0, 20.0, -1.0, 30.0, 40.0)]
    options = BatchOptions(fail_fast=True, max_concurrency=1)

    response = _run(app, app.batch.enrich_location_batch(BatchEnrichRequest(locations=locations, options=options)))

    assert [r.success for r in response.results] == [True, True, False, False, False]
    assert [r.error for r in response.results[3:]] == [STOPPED_MESSAGE, STOPPED_MESSAGE]
    assert response.total_requests == 5


def test_batch_where_everything_fails_emits_failed() -> None:
    app, sender = _app(respond=_southern_hemisphere_fails, geocoder_fails=True)
    locations = [EnrichRequest(location=Location(lat=-lat, lon=0.0)) for lat in (1.0, 2.0)]

    response = _run(app, app.batch.enrich_location_batch(BatchEnrichRequest(locations=locations)))

    assert response.failed == 2
    [event] = _batch_events(sender)
    assert event["event"] == "batch.failed"


def test_nearby_context_batch() -> None:
    app, _ = _app(respond=lambda loc, r: [make_pin(f"osm_node_{loc.lat:.0f}", loc.lat, loc.lon)])
    queries = [NearbyContextRequest(location=Location(lat=5.0, lon=5.0)), NearbyContextRequest(location=Location(lat=6.0, lon=6.0))]

    response = _run(app, app.batch.nearby_context_batch(BatchContextRequest(queries=queries)))

    assert response.successful == 2
    assert response.results[0].data.total_pins >= 1
