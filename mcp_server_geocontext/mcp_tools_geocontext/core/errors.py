from __future__ import annotations


class GeoContextError(Exception):
    """Base class for all errors raised by mcp_tools_geocontext."""


class InvalidRequestError(GeoContextError, ValueError):
    """Malformed input (coordinates, radius, request shape). Never retried."""


class ProviderError(GeoContextError):
    """An external routing/POI/geocoding provider failed or timed out."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class GeometryError(GeoContextError):
    """Degenerate geometry, e.g. a bounding box that cannot be computed."""


class ConfigurationError(GeoContextError, ValueError):
    """Invalid settings or service setup (bad env value, concurrency <= 0)."""
