"""
Unit tests for cache settings and config validation.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.config import CacheSettings, get_cache_settings, validate_cache_config
from shared.errors import ConfigError


class TestCacheSettings:
    """Test cases for CacheSettings."""

    def test_defaults(self):
        settings = CacheSettings.from_mapping({})

        assert settings.provider == "memory"
        assert settings.max == 1000
        assert settings.ttl == 3600000
        assert settings.size == 10485760
        assert settings.allow_stale is False
        assert settings.cache_headers is True
        assert settings.cache_authorized_requests is False
        assert settings.cache_get_timeout_in_ms == 1000
        assert settings.auto_purge_cache is True
        assert settings.auto_purge_cache_on_start is True
        assert settings.rest_prefix == "/api"
        assert settings.graphql_path == "/graphql"

    def test_timeouts_in_seconds(self):
        settings = CacheSettings.from_mapping({"cache_get_timeout_in_ms": 250, "cache_set_timeout_in_ms": 2000})

        assert settings.get_timeout_seconds == 0.25
        assert settings.set_timeout_seconds == 2.0

    def test_settings_are_immutable(self):
        settings = CacheSettings.from_mapping({})

        with pytest.raises(Exception):
            settings.max = 5

    def test_sanitized_redacts_redis_credentials(self):
        settings = CacheSettings.from_mapping({
            "provider": "redis",
            "redis_config": "redis://:s3cret@cache.internal:6379/0",
        })

        sanitized = settings.sanitized()

        assert sanitized["redis_config"] == "redacted"
        assert "s3cret" not in str(sanitized)
        assert sanitized["provider"] == "redis"

    def test_sanitized_redacts_cluster_options(self):
        settings = CacheSettings.from_mapping({
            "provider": "redis-cluster",
            "redis_cluster_nodes": [{"host": "10.0.0.1", "port": 6379}],
            "redis_cluster_options": {"password": "s3cret"},
        })

        assert settings.sanitized()["redis_cluster_options"] == "redacted"

    def test_sanitized_leaves_memory_config_alone(self):
        sanitized = CacheSettings.from_mapping({"cacheable_routes": ["/api/articles"]}).sanitized()

        assert sanitized["redis_config"] is None
        assert sanitized["cacheable_routes"] == ["/api/articles"]


class TestValidateCacheConfig:
    """Test cases for validate_cache_config."""

    @pytest.mark.parametrize("raw,message", [
        ({"debug": "yes"}, "Invalid config: debug must be a boolean"),
        ({"allow_stale": 1}, "Invalid config: allow_stale must be a boolean"),
        ({"cache_headers": "true"}, "Invalid config: cache_headers must be a boolean"),
        ({"auto_purge_cache_on_start": None}, "Invalid config: auto_purge_cache_on_start must be a boolean"),
        ({"max": "1000"}, "Invalid config: max must be a number"),
        ({"ttl": True}, "Invalid config: ttl must be a number"),
        ({"cache_get_timeout_in_ms": "fast"}, "Invalid config: cache_get_timeout_in_ms must be a number"),
        ({"cacheable_routes": "/api"}, "Invalid config: cacheable_routes must be a string array"),
        ({"cache_headers_deny_list": ["a", 1]}, "Invalid config: cache_headers_deny_list must be a string array"),
        ({"provider": 3}, "Invalid config: provider must be a string"),
        ({"provider": "mongo"}, "Invalid config: provider must be 'memory', 'redis' or 'redis-cluster'"),
        ({"redis_cluster_options": []}, "Invalid config: redis_cluster_options must be an object"),
        ({"redis_key_prefix": 5}, "Invalid config: redis_key_prefix must be a string"),
        ({"rest_prefix": "api"}, "Invalid config: rest_prefix must be a path starting with '/'"),
        ({"graphql_path": "graphql"}, "Invalid config: graphql_path must be a path starting with '/'"),
    ])
    def test_rejects_bad_values(self, raw, message):
        with pytest.raises(ConfigError) as exc_info:
            validate_cache_config(raw)

        assert exc_info.value.message == message

    def test_redis_requires_config(self):
        with pytest.raises(ConfigError) as exc_info:
            CacheSettings.from_mapping({"provider": "redis"})

        assert exc_info.value.message == "Invalid config: redis_config must be set when using redis provider"

    def test_redis_config_type(self):
        with pytest.raises(ConfigError) as exc_info:
            validate_cache_config({"provider": "redis", "redis_config": 6379})

        assert exc_info.value.message == (
            "Invalid config: redis_config must be a string or object when using redis provider"
        )

    def test_redis_config_as_object(self):
        validate_cache_config({"provider": "redis", "redis_config": {"host": "localhost", "port": 6379}})

    def test_cluster_requires_nodes(self):
        with pytest.raises(ConfigError) as exc_info:
            validate_cache_config({"provider": "redis-cluster"})

        assert exc_info.value.message == (
            "Invalid config: redis_cluster_nodes must be set when using redis-cluster provider"
        )

    def test_cluster_nodes_shape(self):
        with pytest.raises(ConfigError) as exc_info:
            validate_cache_config({"provider": "redis-cluster", "redis_cluster_nodes": [{"host": "a"}]})

        assert exc_info.value.message == (
            "Invalid config: redis_cluster_nodes must be a list of objects with keys 'host' and 'port'"
        )

    def test_valid_config_passes(self):
        validate_cache_config({
            "provider": "memory",
            "max": 10,
            "ttl": 1500.5,
            "cacheable_routes": ["/api/articles"],
            "cache_headers_allow_list": ["content-type"],
            "allow_stale": True,
        })


class TestGetCacheSettings:
    """Test cases for environment loading."""

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CACHE_MAX", "50")
        monkeypatch.setenv("CACHE_ALLOW_STALE", "true")
        monkeypatch.setenv("CACHE_CACHEABLE_ROUTES", '["/api/articles"]')

        settings = get_cache_settings()

        assert settings.max == 50
        assert settings.allow_stale is True
        assert settings.cacheable_routes == ["/api/articles"]

    def test_redis_url_alias(self, monkeypatch):
        monkeypatch.setenv("CACHE_PROVIDER", "redis")
        monkeypatch.setenv("CACHE_REDIS_CONFIG", "redis://localhost:6379/0")

        settings = get_cache_settings()

        assert settings.redis_config == "redis://localhost:6379/0"

    def test_invalid_environment_halts(self, monkeypatch):
        monkeypatch.setenv("CACHE_PROVIDER", "redis")
        monkeypatch.delenv("CACHE_REDIS_CONFIG", raising=False)
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.delenv("REDIS_CONFIG", raising=False)

        with pytest.raises(ConfigError):
            get_cache_settings()

    def test_unparseable_environment_halts(self, monkeypatch):
        monkeypatch.setenv("CACHE_MAX", "lots")

        with pytest.raises(ConfigError) as exc_info:
            get_cache_settings()

        assert exc_info.value.message.startswith("Invalid config: max")
