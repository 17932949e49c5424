"""
Cache engine: decides whether a request may use the cache, serves hits,
and stores captured responses.

Per request: START -> LOOKUP -> HIT (serve) | MISS (pass through, capture,
store). Requests failing a guard skip both LOOKUP and STORE.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, TYPE_CHECKING

from shared.errors import CodecError
from shared.logging import get_logger
from ..storage.base import CacheEntry, CacheProvider
from .body import decode_text, decompress, is_supported_encoding
from .headers import HeaderSource, select_headers
from .keys import build_graphql_key, build_request_key

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..config import CacheSettings

_MUTATION_RE = re.compile(r"(^|[}\s])mutation\b")


@dataclass
class CacheRequest:
    """The parts of an inbound request the engine looks at."""

    method: str
    url: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class CapturedResponse:
    """A response produced by the real handler, body fully drained."""

    status: int
    headers: HeaderSource
    body: bytes

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        items = self.headers.items() if hasattr(self.headers, "items") else self.headers
        for key, value in items:
            if key.lower() == lowered:
                return value
        return None


def is_graphql_mutation(payload: str) -> bool:
    """Whether a GraphQL request body carries a mutation operation."""
    try:
        data: Any = json.loads(payload)
    except ValueError:
        data = {"query": payload}

    operations = data if isinstance(data, list) else [data]
    for operation in operations:
        query = operation.get("query") if isinstance(operation, dict) else None
        if isinstance(query, str) and _MUTATION_RE.search(query.strip()):
            return True
    return False


class CacheEngine:
    """Orchestrates key building, lookup, header policy, codec and storage."""

    def __init__(
        self,
        settings: "CacheSettings",
        provider: CacheProvider,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.settings = settings
        self.provider = provider
        self.metrics = metrics
        self.logger = get_logger("cache.engine")

    def _trace(self, message: str, **kwargs) -> None:
        if self.settings.debug:
            self.logger.info(message, **kwargs)
        else:
            self.logger.debug(message, **kwargs)

    def _count(self, metric: str, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric, result=result)

    def is_route_cacheable(self, path: str) -> bool:
        """Allow list (empty means all) minus exclude list, by path prefix."""
        routes = self.settings.cacheable_routes
        if routes and not any(path.startswith(route) for route in routes):
            return False
        return not any(path.startswith(route) for route in self.settings.exclude_routes)

    def has_credentials(self, request: CacheRequest) -> bool:
        return bool(request.header("authorization"))

    def is_graphql_request(self, request: CacheRequest) -> bool:
        return request.method.upper() == "POST" and request.path == self.settings.graphql_path

    def needs_request_body(self, method: str, path: str) -> bool:
        return method.upper() == "POST" and path == self.settings.graphql_path

    @staticmethod
    def is_storable_status(status: int) -> bool:
        return 200 <= status < 300

    def cache_key(self, request: CacheRequest) -> Optional[str]:
        """Key for ``request``, or None when it must bypass the cache."""
        if not self.settings.cache_authorized_requests and self.has_credentials(request):
            return None
        if not self.is_route_cacheable(request.path):
            return None

        method = request.method.upper()
        if method == "GET":
            try:
                return build_request_key(method, request.url)
            except UnicodeDecodeError:
                self.logger.warning("Undecodable request URL, bypassing cache", url=request.url)
                return None

        if self.is_graphql_request(request):
            body = request.body or b""
            if not body or is_graphql_mutation(decode_text(body)):
                return None
            return build_graphql_key(body)

        return None

    async def before_handler(self, request: CacheRequest) -> Optional[CacheEntry]:
        """Stored entry to serve instead of running the handler, or None."""
        key = self.cache_key(request)
        if key is None:
            self._count("cache_lookups_total", "bypass")
            return None

        entry = await self.provider.get(key)
        if entry is None:
            self._count("cache_lookups_total", "miss")
            self._trace("Cache miss", key=key)
            return None

        self._count("cache_lookups_total", "stale" if entry.stale else "hit")
        self._trace("Cache hit", key=key, stale=entry.stale, status=entry.status)
        return entry

    async def after_handler(self, request: CacheRequest, response: CapturedResponse) -> bool:
        """Store a captured response when it is cacheable. Never raises."""
        key = self.cache_key(request)
        if key is None:
            return False
        if not self.is_storable_status(response.status):
            self._count("cache_stores_total", "skipped")
            return False

        content_encoding = response.header("content-encoding")
        if not is_supported_encoding(content_encoding):
            self.logger.info("Unsupported content encoding, not caching", key=key, encoding=content_encoding)
            self._count("cache_stores_total", "unsupported_encoding")
            return False

        try:
            body = decompress(response.body, content_encoding)
        except CodecError as exc:
            self.logger.warning("Response body could not be decoded, not caching",
                                key=key, error=exc.message)
            self._count("cache_stores_total", "codec_error")
            return False

        headers = select_headers(
            response.headers,
            self.settings.cache_headers,
            self.settings.cache_headers_allow_list,
            self.settings.cache_headers_deny_list,
        )
        entry = CacheEntry(status=response.status, headers=headers, body=body)

        stored = await self.provider.set(key, entry, self.settings.ttl)
        self._count("cache_stores_total", "stored" if stored else "failed")
        self._trace("Cached response", key=key, status=response.status, size_bytes=len(body), stored=stored)
        return stored
