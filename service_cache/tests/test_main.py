"""
Unit tests for the response cache service.
"""

import asyncio
import gzip

import pytest
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.config import CacheSettings
from service_cache.app.invalidation import StaticSchemaRegistry
from service_cache.app.main import CacheService, create_app
from service_cache.app.storage.base import CacheEntry
from service_cache.app.storage.memory import MemoryProvider


def build_content_router(calls):
    """Stand-in for the host's content API."""
    router = APIRouter()

    @router.get("/api/articles")
    async def list_articles(request: Request):
        calls["articles"] = calls.get("articles", 0) + 1
        page = request.query_params.get("page", "1")
        return JSONResponse(
            {"data": [{"id": 1, "title": "Hello"}], "page": page},
            headers={"x-secret": "token", "cache-control": "max-age=60"},
        )

    @router.get("/api/private/profile")
    async def private_profile():
        calls["private"] = calls.get("private", 0) + 1
        return {"data": {"name": "me"}}

    @router.get("/api/compressed")
    async def compressed():
        calls["compressed"] = calls.get("compressed", 0) + 1
        return Response(
            content=gzip.compress(b'{"data":"zipped"}'),
            media_type="application/json",
            headers={"content-encoding": "gzip"},
        )

    @router.get("/api/broken")
    async def broken():
        calls["broken"] = calls.get("broken", 0) + 1
        return JSONResponse({"error": "not found"}, status_code=404)

    @router.get("/api/opaque")
    async def opaque():
        calls["opaque"] = calls.get("opaque", 0) + 1
        return Response(
            content=b"\x1f\x9d\x90opaque-lzw-frame",
            media_type="application/json",
            headers={"content-encoding": "compress"},
        )

    @router.post("/api/articles")
    async def create_article():
        calls["create"] = calls.get("create", 0) + 1
        return {"data": {"id": 2}}

    @router.post("/graphql")
    async def graphql(request: Request):
        calls["graphql"] = calls.get("graphql", 0) + 1
        payload = await request.json()
        return {"data": {"echo": payload.get("query")}}

    return router


@pytest.fixture
def registry():
    return StaticSchemaRegistry(content_types={
        "api::article.article": {
            "kind": "collectionType",
            "info": {"singularName": "article", "pluralName": "articles"},
            "attributes": {},
        },
    })


@pytest.fixture
def calls():
    return {}


def make_service(calls, registry=None, storage=None, **config) -> CacheService:
    config.setdefault("auto_purge_cache_on_start", False)
    return CacheService(
        settings=CacheSettings.from_mapping(config),
        registry=registry,
        provider=storage,
        content_router=build_content_router(calls),
    )


class TestCacheService:
    """Test cases for caching through the service."""

    @pytest.fixture
    def service(self, calls, registry):
        return make_service(calls, registry, cache_headers_deny_list=["x-secret"], exclude_routes=["/api/private"])

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app)

    def test_miss_then_hit(self, client, calls):
        first = client.get("/api/articles")
        second = client.get("/api/articles")

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json() == second.json()
        assert second.headers["content-type"] == "application/json"
        assert calls["articles"] == 1

    def test_deny_listed_header_not_replayed(self, client):
        first = client.get("/api/articles")
        second = client.get("/api/articles")

        assert first.headers["x-secret"] == "token"
        assert "x-secret" not in second.headers
        assert second.headers["cache-control"] == "max-age=60"

    def test_query_strings_are_distinct_entries(self, client, calls):
        assert client.get("/api/articles?page=1").json()["page"] == "1"
        assert client.get("/api/articles?page=2").json()["page"] == "2"
        assert client.get("/api/articles?page=2").json()["page"] == "2"
        assert calls["articles"] == 2

    def test_authorized_requests_bypass(self, client, calls):
        client.get("/api/articles", headers={"Authorization": "Bearer abc"})
        client.get("/api/articles", headers={"Authorization": "Bearer abc"})

        assert calls["articles"] == 2

    def test_excluded_route_bypasses(self, client, calls):
        client.get("/api/private/profile")
        client.get("/api/private/profile")

        assert calls["private"] == 2

    def test_compressed_response_stored_plain(self, client, calls, service):
        first = client.get("/api/compressed")
        second = client.get("/api/compressed")

        assert first.json() == {"data": "zipped"}
        assert second.json() == {"data": "zipped"}
        assert "content-encoding" not in second.headers
        assert calls["compressed"] == 1
        assert service.provider._cache["GET:/api/compressed"].body == b'{"data":"zipped"}'

    def test_unsupported_encoding_not_cached(self, client, calls, service):
        first = client.get("/api/opaque")
        second = client.get("/api/opaque")

        assert first.headers["content-encoding"] == "compress"
        assert second.headers["content-encoding"] == "compress"
        assert second.content == first.content
        assert calls["opaque"] == 2
        assert len(service.provider) == 0

    def test_error_responses_not_cached(self, client, calls):
        assert client.get("/api/broken").status_code == 404
        assert client.get("/api/broken").status_code == 404

        assert calls["broken"] == 2

    def test_writes_not_cached(self, client, calls):
        client.post("/api/articles", json={})
        client.post("/api/articles", json={})

        assert calls["create"] == 2

    def test_graphql_queries_cached_by_body(self, client, calls):
        query = {"query": "{ articles { title } }"}

        assert client.post("/graphql", json=query).json() == {"data": {"echo": "{ articles { title } }"}}
        assert client.post("/graphql", json=query).json() == {"data": {"echo": "{ articles { title } }"}}
        client.post("/graphql", json={"query": "{ authors { name } }"})

        assert calls["graphql"] == 2

    def test_graphql_mutations_not_cached(self, client, calls):
        mutation = {"query": "mutation { createArticle(data: {title: \"x\"}) { id } }"}

        client.post("/graphql", json=mutation)
        client.post("/graphql", json=mutation)

        assert calls["graphql"] == 2

    def test_entity_mutation_invalidates(self, client, calls, service):
        client.get("/api/articles")
        client.post("/graphql", json={"query": "{ articles { title } }"})

        asyncio.run(service.on_entity_mutation({"model": {"uid": "api::article.article"}, "action": "afterUpdate"}))

        client.get("/api/articles")
        client.post("/graphql", json={"query": "{ articles { title } }"})
        assert calls["articles"] == 2
        assert calls["graphql"] == 2

    def test_request_id_echoed_on_hits(self, client):
        client.get("/api/articles")

        response = client.get("/api/articles", headers={"x-request-id": "req-123"})

        assert response.headers["x-request-id"] == "req-123"

    def test_own_endpoints_never_cached(self, client, service):
        client.get("/health")
        client.get("/response-cache/cacheable-routes")

        assert len(service.provider) == 0


class TestPurgeRoutes:
    """Test cases for the manual purge surface."""

    @pytest.fixture
    def service(self, calls, registry):
        return make_service(calls, registry, cacheable_routes=["/api/articles", "/graphql"])

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app)

    def test_purge_cache(self, client, calls):
        client.get("/api/articles")

        response = client.post("/response-cache/purge-cache")
        client.get("/api/articles")

        assert response.status_code == 200
        assert response.json() == {"message": "Cache purged successfully"}
        assert calls["articles"] == 2

    def test_purge_cache_by_key(self, client, calls, service):
        client.get("/api/articles")
        client.post("/graphql", json={"query": "{ a }"})

        response = client.post("/response-cache/purge-cache/key", json={"key": "articles"})

        assert response.status_code == 200
        assert response.json() == {"message": "Cache purged successfully for key: articles", "removed": 1}
        assert len(service.provider) == 1
        assert service.provider.keys()[0].startswith("POST:/graphql:")

    @pytest.mark.parametrize("body", [{}, {"key": ""}, {"key": "   "}, {"key": 5}, ["articles"]])
    def test_purge_cache_by_key_rejects_bad_input(self, client, body):
        response = client.post("/response-cache/purge-cache/key", json=body)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    def test_purge_cache_by_key_rejects_non_json(self, client):
        response = client.post(
            "/response-cache/purge-cache/key",
            content=b"key=articles",
            headers={"content-type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 400

    def test_cacheable_routes(self, client):
        response = client.get("/response-cache/cacheable-routes")

        assert response.status_code == 200
        assert response.json() == ["/api/articles", "/graphql"]

    def test_config_is_sanitized(self, calls):
        service = make_service(
            calls,
            storage=MemoryProvider(),
            provider="redis",
            redis_config="redis://:s3cret@cache:6379/0",
        )
        client = TestClient(service.app)

        response = client.get("/response-cache/config")

        assert response.status_code == 200
        assert response.json()["redis_config"] == "redacted"
        assert "s3cret" not in response.text

    def test_health_reports_storage(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"] == {"storage": "ok", "provider": "memory"}

    def test_metrics_endpoint(self, client):
        client.get("/api/articles")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "cache_lookups_total" in response.text


class TestLifecycle:
    """Test cases for startup and shutdown."""

    def test_injected_empty_storage_is_used(self, calls):
        storage = MemoryProvider()
        service = make_service(calls, storage=storage)
        client = TestClient(service.app)

        client.get("/api/articles")

        assert service.provider is storage
        assert storage.keys() == ["GET:/api/articles"]

    def test_purges_on_start(self, calls):
        provider = MemoryProvider()
        asyncio.run(provider.set("GET:/api/articles", CacheEntry(status=200, headers=None, body=b"{}")))
        service = make_service(calls, storage=provider, auto_purge_cache_on_start=True)

        with TestClient(service.app):
            assert len(provider) == 0

    def test_keeps_entries_when_start_purge_disabled(self, calls):
        provider = MemoryProvider()
        asyncio.run(provider.set("GET:/api/articles", CacheEntry(status=200, headers=None, body=b"{}")))
        service = make_service(calls, storage=provider, auto_purge_cache_on_start=False)

        with TestClient(service.app) as client:
            response = client.get("/api/articles")

        assert response.content == b"{}"
        assert calls.get("articles", 0) == 0

    def test_auto_purge_disabled_ignores_mutations(self, calls, registry):
        service = make_service(calls, registry, auto_purge_cache=False)
        client = TestClient(service.app)
        client.get("/api/articles")

        asyncio.run(service.on_entity_mutation({"model": {"uid": "api::article.article"}}))

        assert len(service.provider) == 1

    def test_create_app(self, monkeypatch):
        monkeypatch.setenv("CACHE_AUTO_PURGE_CACHE_ON_START", "false")

        app = create_app()

        assert app.state.cache_service.settings.provider == "memory"
