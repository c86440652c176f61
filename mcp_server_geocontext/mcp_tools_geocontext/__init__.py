"""mcp_tools_geocontext package

Purpose:
- Provide geographic context (POIs, routes, custom pins) to automated clients.
- Expose those services via an MCP server (official python-sdk / FastMCP), so an LLM can call tools.

Structure:
- core/: schemas, settings, errors, TTL cache
- services/: spatial index, concurrency controller, providers, route enrichment, batch, webhooks
- utils/: pure helpers (geodesy, ids, GeoJSON export)
- mcp/: FastMCP server + tool wiring
"""

from .core.schemas import GeoPin, Location, PinType, RouteRequest, RouteResponse  # noqa: F401
