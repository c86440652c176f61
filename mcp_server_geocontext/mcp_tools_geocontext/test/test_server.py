from __future__ import annotations

import asyncio
import json
from importlib.metadata import version
from types import SimpleNamespace

import pytest

from mcp_tools_geocontext.app import build_app_context
from mcp_tools_geocontext.core.errors import InvalidRequestError
from mcp_tools_geocontext.core.schemas import Location, PinType
from mcp_tools_geocontext.core.settings import Settings
from mcp_tools_geocontext.mcp import server

from .fakes import FakeGeocoder, FakePoiProvider, RecordingSender, make_pin

ROME = Location(lat=41.8902, lon=12.4922)


@pytest.fixture
def installed_app(monkeypatch):
    """Installs a fresh AppContext for the duration of one test."""

    def install(settings=None, poi_provider=None):
        app = build_app_context(
            settings or Settings(),
            poi_provider=poi_provider or FakePoiProvider(),
            geocoder=FakeGeocoder(),
            webhook_sender=RecordingSender(),
        )
        monkeypatch.setitem(server._configured, "app", app)
        return app

    return install


def _ctx(app):
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=app))


def test_tools_are_registered() -> None:
    tools = {tool.name for tool in asyncio.run(server.mcp.list_tools())}
    assert {
        "generate_route",
        "get_nearby_context",
        "create_geopin",
        "enrich_location",
        "batch_generate_routes",
        "export_pins_geojson",
        "register_webhook",
        "get_metrics",
    } <= tools


def test_tool_schemas_hide_context_parameter() -> None:
    tools = {tool.name: tool for tool in asyncio.run(server.mcp.list_tools())}
    properties = tools["nearest_pins"].inputSchema["properties"]
    assert set(properties) == {"location", "k"}


def test_resources_use_configured_app(installed_app) -> None:
    app = installed_app()
    app.index.insert(make_pin("a", 1.0, 1.0))

    pins = json.loads(server.pins_resource())
    stats = json.loads(server.stats_resource())

    assert pins["total_pins"] == 1
    assert pins["pins"][0]["id"] == "a"
    assert stats["spatial_index"] == {"total_pins": 1, "index_size": 1}
    assert stats["routing_available"] is False


def test_get_metrics_reports_per_tool_calls_and_errors(installed_app) -> None:
    app = installed_app()
    ctx = _ctx(app)
    app.index.insert(make_pin("a", ROME.lat, ROME.lon))

    assert [p.id for p in server.nearest_pins(ROME, ctx, k=1)] == ["a"]
    with pytest.raises(InvalidRequestError):
        server.nearest_pins(ROME, ctx, k=0)
    asyncio.run(server.get_nearby_context(ROME, ctx))

    metrics = server.get_metrics(ctx)
    nearest = metrics["tools"]["nearest_pins"]
    assert (nearest["calls"], nearest["successful"], nearest["errors"]) == (2, 1, 1)
    assert nearest["max_ms"] >= nearest["min_ms"] >= 0.0
    assert metrics["tools"]["get_nearby_context"]["calls"] == 1
    assert metrics["tool_summary"]["total_errors"] == 1


def test_tool_defaults_come_from_settings(installed_app) -> None:
    provider = FakePoiProvider()
    app = installed_app(Settings(pin_radius_m=25.0, search_radius_m=750.0, max_results=3), poi_provider=provider)
    ctx = _ctx(app)

    pin = server.create_geopin(ROME, PinType.LANDMARK, "Colosseum", ctx)
    assert pin.radius == 25.0

    context = asyncio.run(server.get_nearby_context(ROME, ctx))
    assert context.radius == 750.0
    assert provider.calls[0][1] == 750.0

    explicit = asyncio.run(server.get_nearby_context(ROME, ctx, radius=200.0))
    assert explicit.radius == 200.0


def test_installed_sdk_is_fastmcp_1x() -> None:
    # pyproject pins mcp<2; FastMCP lives under mcp.server.fastmcp in 1.x
    assert version("mcp").split(".")[0] == "1"
