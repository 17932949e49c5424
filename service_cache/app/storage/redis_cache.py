"""
Remote storage on a single Redis node or a Redis Cluster.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Union

import redis.asyncio as redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.errors import StorageConnectionError, StorageTimeout
from .base import CacheEntry, CacheProvider

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class RedisProvider(CacheProvider):
    """Single-node Redis storage.

    Keys live under ``key_prefix``; patterns are matched against the key
    without the prefix. Expiry is left to Redis (``PX``). Bulk operations
    walk the keyspace with SCAN so memory stays bounded by ``scan_count``
    and ``delete_batch_size``.
    """

    name = "redis"

    def __init__(
        self,
        redis_config: Union[str, Dict[str, Any], None] = None,
        *,
        key_prefix: str = "response-cache:",
        scan_count: int = 500,
        delete_batch_size: int = 500,
        client: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.redis_config = redis_config
        self.key_prefix = key_prefix
        self.scan_count = scan_count
        self.delete_batch_size = delete_batch_size
        self.client = client

    def _create_client(self) -> Any:
        options = {
            "socket_timeout": self.set_timeout,
            "socket_connect_timeout": self.set_timeout,
            "health_check_interval": 30,
        }
        if isinstance(self.redis_config, dict):
            return redis.Redis(**{**options, **self.redis_config})
        return redis.from_url(self.redis_config, **options)

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _strip_prefix(self, raw_key: Union[bytes, str]) -> str:
        key = raw_key.decode("utf-8") if isinstance(raw_key, bytes) else raw_key
        return key[len(self.key_prefix):] if key.startswith(self.key_prefix) else key

    async def _connect(self) -> None:
        if self.client is None:
            self.client = self._create_client()
        await self._ping()

    async def _ping(self) -> None:
        await self.client.ping()

    async def _close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    def _translate_error(self, operation: str, exc: Exception) -> Exception:
        if isinstance(exc, RedisTimeoutError):
            return StorageTimeout(operation, round(self._timeout_for(operation) * 1000))
        if isinstance(exc, RedisConnectionError):
            return StorageConnectionError(operation, str(exc) or "connection lost")
        return exc

    async def _get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.client.get(self._full_key(key))
        if raw is None:
            return None
        return CacheEntry.from_json(raw)

    async def _set(self, key: str, entry: CacheEntry) -> bool:
        if entry.ttl_ms:
            await self.client.set(self._full_key(key), entry.to_json(), px=int(entry.ttl_ms))
        else:
            await self.client.set(self._full_key(key), entry.to_json())
        return True

    async def _delete(self, key: str) -> bool:
        return bool(await self.client.delete(self._full_key(key)))

    async def _delete_keys(self, raw_keys: List[Any]) -> int:
        if not raw_keys:
            return 0
        return int(await self._timed("delete", self.client.delete(*raw_keys), self.set_timeout))

    async def _sweep(self, patterns: Optional[Sequence["re.Pattern[str]"]]) -> int:
        """Delete prefixed keys, restricted to ``patterns`` when given."""
        removed = 0
        batch: List[Any] = []
        match = f"{_escape_glob(self.key_prefix)}*"
        async for raw_key in self.client.scan_iter(match=match, count=self.scan_count):
            if patterns is not None:
                key = self._strip_prefix(raw_key)
                if not any(p.search(key) for p in patterns):
                    continue
            batch.append(raw_key)
            if len(batch) >= self.delete_batch_size:
                removed += await self._delete_keys(batch)
                batch = []
        removed += await self._delete_keys(batch)
        return removed

    async def _clear_by_regexp(self, patterns: Sequence["re.Pattern[str]"]) -> int:
        removed = await self._sweep(patterns)
        self.logger.debug("Cleared cache keys by pattern", provider=self.name, removed=removed,
                          patterns=[p.pattern for p in patterns])
        return removed

    async def _reset(self) -> bool:
        removed = await self._sweep(None)
        self.logger.info("Cache reset", provider=self.name, removed=removed)
        return True


class RedisClusterProvider(RedisProvider):
    """Redis Cluster storage.

    SCAN runs against every primary and multi-key deletes are split per
    hash slot by the cluster client.
    """

    name = "redis-cluster"

    def __init__(
        self,
        nodes: Sequence[Dict[str, Any]] = (),
        *,
        cluster_options: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        super().__init__(None, **kwargs)
        self.nodes = list(nodes)
        self.cluster_options = dict(cluster_options or {})

    def _create_client(self) -> Any:
        startup_nodes = [ClusterNode(node["host"], int(node["port"])) for node in self.nodes]
        options = {
            "socket_timeout": self.set_timeout,
            "socket_connect_timeout": self.set_timeout,
        }
        return RedisCluster(startup_nodes=startup_nodes, **{**options, **self.cluster_options})
