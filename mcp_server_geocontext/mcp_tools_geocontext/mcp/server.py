"""MCP server (official python-sdk) exposing mcp_tools_geocontext tools.

This uses FastMCP from the official MCP Python SDK:
- Tools are ordinary Python functions registered through @mcp.tool();
  @metered_tool() wraps it to count and time every call.
- Schemas are derived automatically from type hints / Pydantic models.
- Transport (stdio, SSE, streamable HTTP) is handled by the SDK/CLI.
- Services live in one AppContext, built at startup and reached through
  the lifespan context.
"""

from __future__ import annotations

import argparse
import functools
import inspect
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import uvicorn
from mcp.server.fastmcp import Context, FastMCP

from ..app import AppContext, build_app_context
from ..core.schemas import (
    BatchContextRequest,
    BatchEnrichRequest,
    BatchOptions,
    BatchResponse,
    BatchRouteRequest,
    EnrichedLocation,
    EnrichRequest,
    GeoPin,
    Location,
    NearbyContext,
    NearbyContextRequest,
    PinType,
    RouteRequest,
    RouteResponse,
    TravelProfile,
    Webhook,
    WebhookDelivery,
    WebhookEvent,
)
from ..core.settings import load_settings
from ..utils.geojson import export_pins, export_route

logger = logging.getLogger("geocontext-mcp")

_configured: Dict[str, AppContext] = {}


def configure(app: AppContext) -> None:
    """Install the AppContext the server hands to every session."""
    _configured["app"] = app


def _configured_app() -> AppContext:
    if "app" not in _configured:
        configure(build_app_context(load_settings()))
    return _configured["app"]


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    # Runs once per session; all sessions share the process-wide services.
    app = _configured_app()
    app.webhooks.start()
    yield app


def _app(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context


# ---------------------------------------------------------------------------
# MCP-Server & Tools
# ---------------------------------------------------------------------------

mcp = FastMCP(name="geocontext", lifespan=app_lifespan, stateless_http=False)


def metered_tool() -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Like @mcp.tool(), but every call is counted and timed under the tool name."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        name = fn.__name__

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> Any:
                with _configured_app().metrics.track(name):
                    return await fn(*args, **kwargs)

        else:

            @functools.wraps(fn)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                with _configured_app().metrics.track(name):
                    return fn(*args, **kwargs)

        return mcp.tool()(wrapper)

    return decorator


@metered_tool()
async def generate_route(
    start: Location,
    end: Location,
    ctx: Context,
    waypoints: Optional[List[Location]] = None,
    profile: TravelProfile = TravelProfile.DRIVING,
    interests: Optional[List[str]] = None,
    buffer_radius: Optional[float] = None,
) -> RouteResponse:
    """Generate a route between points and enrich it with nearby points of interest.

    interests: e.g. "history", "architecture", "nature", "food", "culture".
    buffer_radius: meters around the route to search for POIs (default from settings).
    """
    app = _app(ctx)
    request = RouteRequest(
        start=start,
        end=end,
        waypoints=waypoints or [],
        profile=profile,
        interests=interests or [],
        buffer_radius=app.settings.buffer_radius_m if buffer_radius is None else buffer_radius,
    )
    return await app.routing.generate_route(request)


@metered_tool()
async def get_nearby_context(
    location: Location,
    ctx: Context,
    radius: Optional[float] = None,
    types: Optional[List[PinType]] = None,
    max_results: Optional[int] = None,
) -> NearbyContext:
    """Pins around a location (nearest first), fetched from OpenStreetMap if the index has too few."""
    app = _app(ctx)
    request = NearbyContextRequest(
        location=location,
        radius=app.settings.search_radius_m if radius is None else radius,
        types=types or [],
        max_results=app.settings.max_results if max_results is None else max_results,
    )
    return await app.locations.get_nearby_context(request)


@metered_tool()
def create_geopin(
    location: Location,
    type: PinType,
    name: str,
    ctx: Context,
    description: str = "",
    category: Optional[List[str]] = None,
    radius: Optional[float] = None,
) -> GeoPin:
    """Create a custom geo-pin and add it to the spatial index; radius defaults from settings."""
    return _app(ctx).locations.create_pin(location, type, name, description, category, radius)


@metered_tool()
def remove_geopin(pin_id: str, ctx: Context) -> bool:
    """Remove a geo-pin from the spatial index. Returns False if it did not exist."""
    return _app(ctx).locations.remove_pin(pin_id)


@metered_tool()
async def enrich_location(location: Location, ctx: Context, radius: Optional[float] = None) -> EnrichedLocation:
    """Enrich a location with OpenStreetMap POIs and a reverse-geocoded address."""
    app = _app(ctx)
    if radius is None:
        radius = app.settings.buffer_radius_m
    return await app.locations.enrich_location(EnrichRequest(location=location, radius=radius))


@metered_tool()
async def search_place(query: str, ctx: Context, limit: int = 5) -> List[Dict[str, Any]]:
    """Search places by name via OSM Nominatim."""
    return await _app(ctx).locations.search_place(query, limit)


@metered_tool()
def query_pins_in_bbox(west: float, south: float, east: float, north: float, ctx: Context) -> List[GeoPin]:
    """Indexed pins overlapping a bounding box (approximate, no distance check)."""
    return _app(ctx).index.query_by_bounding_box(west, south, east, north)


@metered_tool()
def query_pins_in_polygon(vertices: List[Location], ctx: Context) -> List[GeoPin]:
    """Indexed pins located inside a polygon given by its vertices."""
    return _app(ctx).index.query_by_polygon(vertices)


@metered_tool()
def nearest_pins(location: Location, ctx: Context, k: int = 10) -> List[GeoPin]:
    """The k indexed pins closest to a location."""
    return _app(ctx).index.nearest_k(location, k)


@metered_tool()
async def batch_generate_routes(
    requests: List[RouteRequest],
    ctx: Context,
    fail_fast: bool = False,
    max_concurrency: Optional[int] = None,
) -> BatchResponse:
    """Generate multiple routes in a single batch request."""
    options = BatchOptions(fail_fast=fail_fast, max_concurrency=max_concurrency)
    return await _app(ctx).batch.generate_route_batch(BatchRouteRequest(requests=requests, options=options))


@metered_tool()
async def batch_enrich_locations(
    locations: List[EnrichRequest],
    ctx: Context,
    fail_fast: bool = False,
    max_concurrency: Optional[int] = None,
) -> BatchResponse:
    """Enrich multiple locations in a single batch request."""
    options = BatchOptions(fail_fast=fail_fast, max_concurrency=max_concurrency)
    return await _app(ctx).batch.enrich_location_batch(BatchEnrichRequest(locations=locations, options=options))


@metered_tool()
async def batch_nearby_context(
    queries: List[NearbyContextRequest],
    ctx: Context,
    fail_fast: bool = False,
    max_concurrency: Optional[int] = None,
) -> BatchResponse:
    """Run multiple nearby-context queries in a single batch request."""
    options = BatchOptions(fail_fast=fail_fast, max_concurrency=max_concurrency)
    return await _app(ctx).batch.nearby_context_batch(BatchContextRequest(queries=queries, options=options))


@metered_tool()
def export_route_geojson(route: RouteResponse, include_properties: bool = True, simplified: bool = False) -> Dict[str, Any]:
    """Export a generated route as a GeoJSON FeatureCollection."""
    return export_route(route, include_properties=include_properties, simplified=simplified)


@metered_tool()
def export_pins_geojson(
    ctx: Context,
    pin_ids: Optional[List[str]] = None,
    include_properties: bool = True,
    as_circles: bool = False,
) -> Dict[str, Any]:
    """Export indexed pins (all, or the given ids) as GeoJSON; `as_circles` draws activation radii."""
    index = _app(ctx).index
    pins = index.all() if pin_ids is None else [p for p in map(index.get, pin_ids) if p is not None]
    return export_pins(pins, include_properties=include_properties, as_circles=as_circles)


@metered_tool()
def register_webhook(url: str, events: List[WebhookEvent], ctx: Context, secret: Optional[str] = None) -> Webhook:
    """Register a webhook for lifecycle events; payloads are HMAC-SHA256 signed if a secret is given."""
    return _app(ctx).webhooks.register(url, events, secret)


@metered_tool()
def unregister_webhook(webhook_id: str, ctx: Context) -> bool:
    """Remove a webhook."""
    return _app(ctx).webhooks.unregister(webhook_id)


@metered_tool()
def list_webhooks(ctx: Context) -> List[Webhook]:
    """All registered webhooks."""
    return _app(ctx).webhooks.list()


@metered_tool()
def get_webhook_deliveries(webhook_id: str, ctx: Context, limit: int = 50) -> List[WebhookDelivery]:
    """Delivery history of a webhook, most recent first."""
    return _app(ctx).webhooks.get_deliveries(webhook_id, limit)


@metered_tool()
def get_metrics(ctx: Context) -> Dict[str, Any]:
    """Cache, spatial index, webhook and per-tool call statistics."""
    return _app(ctx).stats()


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

@mcp.resource("geocontext://pins", name="Geo Pins", mime_type="application/json")
def pins_resource() -> str:
    """All geo-pins in the spatial index (first 100)."""
    pins = _configured_app().index.all()
    return json.dumps(
        {"total_pins": len(pins), "pins": [p.model_dump(mode="json") for p in pins[:100]]},
        indent=2,
    )


@mcp.resource("geocontext://stats", name="System Statistics", mime_type="application/json")
def stats_resource() -> str:
    """Cache, spatial index and webhook statistics."""
    return json.dumps(_configured_app().stats(), indent=2)


# ---------------------------------------------------------------------------
# ASGI-App für streamable HTTP & Uvicorn-Entry-Point
# ---------------------------------------------------------------------------

# ASGI-App exportieren; der MCP-Endpunkt ist /mcp
starlette_app = mcp.streamable_http_app()  # path="/mcp"


def main() -> None:
    """Start the geocontext MCP server via Uvicorn (streamable HTTP) or stdio."""
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--stdio", action="store_true", help="Serve over stdio instead of HTTP")
    parser.add_argument("--env-file", default=None)
    args = parser.parse_args()

    settings = load_settings(args.env_file)
    logging.basicConfig(stream=sys.stderr, level=getattr(logging, settings.log_level, logging.INFO))
    configure(build_app_context(settings))

    if args.stdio:
        logger.info("Starting geocontext MCP server on stdio …")
        mcp.run(transport="stdio")
        return

    logger.info(
        "Starting geocontext MCP server (streamable-http) on http://%s:%d/mcp …",
        args.host,
        args.port,
    )

    uvicorn.run(
        starlette_app,
        host=args.host,
        port=args.port,
        reload=False,
        loop="asyncio",
    )


if __name__ == "__main__":
    main()
