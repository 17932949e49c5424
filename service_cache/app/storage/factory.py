"""
Provider selection from configuration.
"""

from typing import Optional, TYPE_CHECKING

from shared.errors import ConfigError
from .base import CacheProvider
from .memory import MemoryProvider
from .redis_cache import RedisClusterProvider, RedisProvider

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..config import CacheSettings


def create_provider(settings: "CacheSettings", metrics: Optional["MetricsCollector"] = None) -> CacheProvider:
    """Build the storage provider named by ``settings.provider``."""
    common = {
        "default_ttl_ms": settings.ttl,
        "get_timeout": settings.get_timeout_seconds,
        "set_timeout": settings.set_timeout_seconds,
        "metrics": metrics,
    }

    if settings.provider == "memory":
        return MemoryProvider(
            max_entries=settings.max,
            max_size_bytes=settings.size,
            allow_stale=settings.allow_stale,
            **common,
        )
    if settings.provider == "redis":
        return RedisProvider(
            settings.redis_config,
            key_prefix=settings.redis_key_prefix,
            **common,
        )
    if settings.provider == "redis-cluster":
        return RedisClusterProvider(
            settings.redis_cluster_nodes,
            cluster_options=settings.redis_cluster_options,
            key_prefix=settings.redis_key_prefix,
            **common,
        )
    raise ConfigError("Invalid config: provider must be 'memory', 'redis' or 'redis-cluster'")
