from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError


DEFAULT_USER_AGENT = "geocontext-mcp/0.1 (local)"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read from the environment (and `.env` if present).

    Timeouts are kept in milliseconds to match the env vars; use the `*_s`
    properties when handing them to `requests`.
    """
    openroute_api_key: Optional[str] = None
    overpass_api_url: str = "https://overpass-api.de/api/interpreter"
    nominatim_api_url: str = "https://nominatim.openstreetmap.org"
    openroute_api_url: str = "https://api.openrouteservice.org/v2"
    user_agent: str = DEFAULT_USER_AGENT

    cache_ttl: int = 3600
    enable_cache: bool = True

    max_concurrent_requests: int = 10
    log_level: str = "INFO"

    timeout_routing_api_ms: int = 60000
    timeout_osm_api_ms: int = 30000
    timeout_default_http_ms: int = 30000

    # Query defaults
    search_radius_m: float = 1000.0
    max_results: int = 50
    buffer_radius_m: float = 500.0
    pin_radius_m: float = 100.0
    osm_pin_radius_m: float = 50.0
    preview_size: int = 20

    @property
    def routing_timeout_s(self) -> float:
        return self.timeout_routing_api_ms / 1000.0

    @property
    def osm_timeout_s(self) -> float:
        return self.timeout_osm_api_ms / 1000.0

    @property
    def http_timeout_s(self) -> float:
        return self.timeout_default_http_ms / 1000.0

    @property
    def has_routing_service(self) -> bool:
        return bool(self.openroute_api_key)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0, got {value}")
    return value


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from environment variables.

    Existing environment variables win over values from the `.env` file.
    Without `env_file`, the nearest `.env` at or above the working
    directory is used.
    """
    dotenv_path = env_file or find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path, override=False)

    return Settings(
        openroute_api_key=_env_str("OPENROUTE_API_KEY", None),
        overpass_api_url=_env_str("OVERPASS_API_URL", Settings.overpass_api_url),
        nominatim_api_url=_env_str("NOMINATIM_API_URL", Settings.nominatim_api_url),
        openroute_api_url=_env_str("OPENROUTE_API_URL", Settings.openroute_api_url),
        user_agent=_env_str("USER_AGENT", DEFAULT_USER_AGENT),
        cache_ttl=_env_int("CACHE_TTL", Settings.cache_ttl),
        enable_cache=os.getenv("ENABLE_CACHE", "true").strip().lower() != "false",
        max_concurrent_requests=_env_int("MAX_CONCURRENT_REQUESTS", Settings.max_concurrent_requests),
        log_level=(_env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        timeout_routing_api_ms=_env_int("TIMEOUT_ROUTING_API", Settings.timeout_routing_api_ms),
        timeout_osm_api_ms=_env_int("TIMEOUT_OSM_API", Settings.timeout_osm_api_ms),
        timeout_default_http_ms=_env_int("TIMEOUT_DEFAULT_HTTP", Settings.timeout_default_http_ms),
    )
