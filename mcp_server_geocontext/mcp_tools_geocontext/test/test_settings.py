from __future__ import annotations

import pytest

from mcp_tools_geocontext.core.errors import ConfigurationError
from mcp_tools_geocontext.core.settings import DEFAULT_USER_AGENT, Settings, load_settings

ENV_KEYS = [
    "OPENROUTE_API_KEY",
    "OVERPASS_API_URL",
    "NOMINATIM_API_URL",
    "OPENROUTE_API_URL",
    "USER_AGENT",
    "CACHE_TTL",
    "ENABLE_CACHE",
    "MAX_CONCURRENT_REQUESTS",
    "LOG_LEVEL",
    "TIMEOUT_ROUTING_API",
    "TIMEOUT_OSM_API",
    "TIMEOUT_DEFAULT_HTTP",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # setenv+delenv so that values load_dotenv writes are rolled back too
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    env_file = tmp_path / ".env"
    env_file.write_text("")
    return env_file


def test_defaults(clean_env) -> None:
    settings = load_settings(str(clean_env))

    assert settings == Settings()
    assert settings.cache_ttl == 3600
    assert settings.max_concurrent_requests == 10
    assert settings.user_agent == DEFAULT_USER_AGENT
    assert settings.routing_timeout_s == 60.0
    assert not settings.has_routing_service


def test_environment_wins_over_env_file(clean_env, monkeypatch) -> None:
    clean_env.write_text("CACHE_TTL=120\nMAX_CONCURRENT_REQUESTS=8\nOPENROUTE_API_KEY=from-file\n")
    monkeypatch.setenv("MAX_CONCURRENT_REQUESTS", "4")
    monkeypatch.setenv("ENABLE_CACHE", "False")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("TIMEOUT_OSM_API", "2500")

    settings = load_settings(str(clean_env))

    assert settings.cache_ttl == 120
    assert settings.max_concurrent_requests == 4
    assert settings.enable_cache is False
    assert settings.log_level == "DEBUG"
    assert settings.osm_timeout_s == 2.5
    assert settings.has_routing_service


@pytest.mark.parametrize("value", ["ten", "0", "-3"])
def test_invalid_integers_are_rejected(clean_env, monkeypatch, value) -> None:
    monkeypatch.setenv("MAX_CONCURRENT_REQUESTS", value)
    with pytest.raises(ConfigurationError, match="MAX_CONCURRENT_REQUESTS"):
        load_settings(str(clean_env))


def test_env_file_in_working_directory_is_found(clean_env, monkeypatch) -> None:
    clean_env.write_text("CACHE_TTL=77\n")
    monkeypatch.chdir(clean_env.parent)

    assert load_settings().cache_ttl == 77
