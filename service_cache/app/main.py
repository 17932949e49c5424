"""
Response cache service.

Wires the engine, storage provider and invalidator into a FastAPI app and
exposes the manual purge surface. Hosts mount their content routes on
``service.app`` (or pass a router) and call ``on_entity_mutation`` from
their post-commit lifecycle hooks.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from shared.base_service import BaseService
from shared.errors import InvalidInput
from .caching.engine import CacheEngine
from .caching.middleware import ResponseCacheMiddleware
from .config import CacheSettings, get_cache_settings
from .invalidation import CacheInvalidator, SchemaRegistry, StaticSchemaRegistry
from .storage import CacheProvider, create_provider

PLUGIN_PREFIX = "/response-cache"


class CacheService(BaseService):
    """HTTP response cache service implementation."""

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        registry: Optional[SchemaRegistry] = None,
        provider: Optional[CacheProvider] = None,
        content_router: Optional[APIRouter] = None,
    ):
        # Resolved before the app exists so a bad config fails startup.
        self.settings = settings or get_cache_settings()
        self.registry = registry if registry is not None else StaticSchemaRegistry()
        self.provider = provider
        super().__init__("cache", 8000)

        self._setup_purge_routes()
        if content_router is not None:
            self.app.include_router(content_router)

        self.app.state.cache_service = self

    def _setup_components(self) -> None:
        if self.provider is None:
            self.provider = create_provider(self.settings, metrics=self.metrics)
        self.engine = CacheEngine(self.settings, self.provider, metrics=self.metrics)
        self.invalidator = CacheInvalidator(
            self.provider,
            self.registry,
            rest_prefix=self.settings.rest_prefix,
            enabled=self.settings.auto_purge_cache,
            metrics=self.metrics,
        )

    def _setup_middleware(self):
        # Added first so request timing and correlation wrap cache hits too.
        self.app.add_middleware(
            ResponseCacheMiddleware,
            engine=self.engine,
            bypass_prefixes=(PLUGIN_PREFIX, "/health", "/metrics", "/docs", "/redoc", "/openapi.json"),
        )
        super()._setup_middleware()

    async def startup(self) -> None:
        await self.provider.init()
        if self.settings.auto_purge_cache_on_start:
            await self.invalidator.purge_all()
        self.logger.info("Response cache initialized", provider=self.settings.provider)

    async def shutdown(self) -> None:
        await self.provider.close()
        self.logger.info("Response cache stopped")

    async def on_entity_mutation(self, event: Any) -> None:
        """Post-commit hook for create/update/delete on any content entity."""
        await self.invalidator.handle_mutation(event)

    async def _check_dependencies(self) -> Dict[str, Any]:
        healthy = await self.provider.health_check()
        return {"storage": "ok" if healthy else "degraded", "provider": self.settings.provider}

    def _setup_purge_routes(self):
        """Set up manual purge and introspection routes."""
        router = APIRouter(prefix=PLUGIN_PREFIX, tags=["cache"])

        @router.post("/purge-cache")
        async def purge_cache():
            """Remove every cached entry."""
            await self.invalidator.purge_all()
            return {"message": "Cache purged successfully"}

        @router.post("/purge-cache/key")
        async def purge_cache_by_key(request: Request):
            """Remove entries whose key contains ``key`` as a path segment."""
            try:
                payload = await request.json()
            except ValueError:
                payload = None
            key = payload.get("key") if isinstance(payload, dict) else None
            if not isinstance(key, str) or not key.strip():
                raise InvalidInput("key must be a non-empty string")

            removed = await self.invalidator.purge_key(key)
            return {"message": f"Cache purged successfully for key: {key}", "removed": removed}

        @router.get("/cacheable-routes")
        async def cacheable_routes():
            """Configured cacheable route prefixes."""
            return list(self.settings.cacheable_routes)

        @router.get("/config")
        async def cache_config():
            """Configuration with remote credentials redacted."""
            return self.settings.sanitized()

        self.app.include_router(router)


def create_app(
    settings: Optional[CacheSettings] = None,
    registry: Optional[SchemaRegistry] = None,
    content_router: Optional[APIRouter] = None,
):
    """Create the FastAPI app for the response cache service."""
    service = CacheService(settings=settings, registry=registry, content_router=content_router)
    return service.app


if __name__ == "__main__":
    CacheService().run()
