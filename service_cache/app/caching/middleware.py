"""
ASGI middleware binding the cache engine to the request pipeline.
"""

import asyncio
from typing import Sequence

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from shared.errors import CodecError
from shared.logging import get_logger, set_cache_key
from ..storage.base import CacheEntry
from .body import read_full_body
from .engine import CacheEngine, CacheRequest, CapturedResponse
from .headers import replay_headers


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve stored responses, otherwise run the handler and capture its response."""

    def __init__(self, app, engine: CacheEngine, bypass_prefixes: Sequence[str] = ()):
        super().__init__(app)
        self.engine = engine
        self.bypass_prefixes = tuple(bypass_prefixes)
        self.logger = get_logger("cache.middleware")

    async def _to_cache_request(self, request: Request) -> CacheRequest:
        body = None
        if self.engine.needs_request_body(request.method, request.url.path):
            body = await request.body()
        return CacheRequest(
            method=request.method,
            url=_raw_url(request),
            path=request.url.path,
            headers=request.headers,
            body=body,
        )

    @staticmethod
    def _replay(entry: CacheEntry) -> Response:
        return Response(
            content=entry.body,
            status_code=entry.status,
            headers=replay_headers(entry.headers),
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.bypass_prefixes and request.url.path.startswith(self.bypass_prefixes):
            return await call_next(request)

        cache_request = await self._to_cache_request(request)
        key = self.engine.cache_key(cache_request)
        if key is None:
            return await call_next(request)

        set_cache_key(key)
        try:
            entry = await self.engine.before_handler(cache_request)
            if entry is not None:
                return self._replay(entry)

            response = await call_next(request)
            if not self.engine.is_storable_status(response.status_code):
                return response

            try:
                raw_body = await read_full_body(response.body_iterator)
            except CodecError as exc:
                self.logger.error("Failed to drain response body", error=exc.message)
                raise (exc.__cause__ or exc)

            captured = CapturedResponse(
                status=response.status_code,
                headers=response.headers.items(),
                body=raw_body,
            )
            # Finish the write even if the client goes away.
            await asyncio.shield(self.engine.after_handler(cache_request, captured))

            return Response(
                content=raw_body,
                status_code=response.status_code,
                headers=response.headers,
            )
        finally:
            set_cache_key(None)


def _raw_url(request: Request) -> str:
    """Path and query as the client sent them, still percent-encoded."""
    raw_path = request.scope.get("raw_path")
    url = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        url = f"{url}?{query.decode('latin-1')}"
    return url
