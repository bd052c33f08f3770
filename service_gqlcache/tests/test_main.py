"""
End-to-end tests for the gateway service.
"""

import json

import httpx
import pytest
from fastapi import FastAPI
from unittest.mock import AsyncMock, patch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gqlcache.app.main import CacheGatewayService, create_app
from shared.config import get_config
from shared.errors import ConfigurationError


QUERY = {"query": "{ users { id } }"}
MUTATION = {"query": "mutation { delete_users(where: {}) { affected_rows } }"}
T0 = 1_700_000_000_000


class FakeBackend:
    """GraphQL backend stand-in for httpx.MockTransport."""

    def __init__(self):
        self.status_code = 200
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "OPTIONS":
            return httpx.Response(204, headers={"access-control-allow-origin": "*"})
        return httpx.Response(
            self.status_code,
            json={"data": {"users": [{"id": len(self.requests)}]}},
        )


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


class TestCacheGatewayService:
    """Test cases for CacheGatewayService."""

    @pytest.fixture
    def backend(self):
        return FakeBackend()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    def make_service(self, backend, clock, **overrides):
        config = get_config("gqlcache", 8000, **overrides)
        service = CacheGatewayService(config, backend_transport=httpx.MockTransport(backend))
        service.orchestrator.clock = clock
        return service

    @pytest.fixture
    def service(self, backend, clock):
        return self.make_service(backend, clock, allowed_ips="10.0.0.1", cluster_network="172.16.0.0/12")

    def client_for(self, service, raise_app_exceptions=True):
        transport = httpx.ASGITransport(app=service.app, raise_app_exceptions=raise_app_exceptions)
        return httpx.AsyncClient(transport=transport, base_url="http://testserver")

    async def post_query(self, client, service, payload=QUERY, headers=None):
        response = await client.post("/v1/graphql", json=payload, headers=headers or {})
        await service.orchestrator.background.drain()
        return response

    @pytest.mark.asyncio
    async def test_query_miss_hit_expired(self, service, backend, clock):
        async with self.client_for(service) as client:
            first = await self.post_query(client, service)
            assert first.status_code == 200
            assert first.headers["X-Cache-Status"] == "MISS"
            assert first.headers["X-Cache-TTL"] == "8"
            assert first.headers["X-GQL-Cache-Time"] == str(T0)
            assert len(backend.requests) == 1

            clock.advance(2)
            second = await self.post_query(client, service)
            assert second.headers["X-Cache-Status"] == "HIT"
            assert int(second.headers["X-Cache-Age"]) >= 0
            assert second.json() == first.json()
            assert len(backend.requests) == 1

            clock.advance(10)
            third = await self.post_query(client, service)
            assert third.headers["X-Cache-Status"] == "EXPIRED"
            assert "X-Cache-Age" not in third.headers
            assert len(backend.requests) == 2
            assert third.json() != first.json()

    @pytest.mark.asyncio
    async def test_client_ttl_header(self, service, backend, clock):
        async with self.client_for(service) as client:
            first = await self.post_query(client, service, headers={"X-Cache-TTL": "50"})
            assert first.headers["X-Cache-TTL"] == "50"
            assert first.headers["Cache-Control"] == "max-age=50"

            clock.advance(40)
            second = await self.post_query(client, service, headers={"X-Cache-TTL": "50"})
            assert second.headers["X-Cache-Status"] == "HIT"
            assert second.headers["X-Cache-Age"] == "40"

    @pytest.mark.asyncio
    async def test_repeated_backend_headers_on_miss_and_hit(self, clock):
        def handler(request):
            return httpx.Response(200, json={"data": {}}, headers=[
                ("set-cookie", "session=a"),
                ("set-cookie", "region=eu"),
            ])

        service = self.make_service(handler, clock)
        async with self.client_for(service) as client:
            first = await self.post_query(client, service)
            second = await self.post_query(client, service)

        assert first.headers["X-Cache-Status"] == "MISS"
        assert second.headers["X-Cache-Status"] == "HIT"
        for response in (first, second):
            assert response.headers.get_list("set-cookie") == ["session=a", "region=eu"]

    @pytest.mark.asyncio
    async def test_mutation_bypasses_cache(self, service, backend):
        async with self.client_for(service) as client:
            first = await self.post_query(client, service, payload=MUTATION)
            second = await self.post_query(client, service, payload=MUTATION)

        assert first.headers["X-Cache-Status"] == "MUTATION"
        assert second.headers["X-Cache-Status"] == "MUTATION"
        assert len(backend.requests) == 2
        assert len(service.store) == 0

    @pytest.mark.asyncio
    async def test_blocked_mutation(self, backend, clock):
        service = self.make_service(backend, clock, block_mutations=True)
        async with self.client_for(service) as client:
            response = await self.post_query(client, service, payload=MUTATION)

        assert response.status_code == 403
        assert response.headers["X-Cache-Status"] == "BLOCKED"
        assert response.json()["errors"][0]["message"] == "Mutations are not allowed."
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_backend_error_not_cached(self, service, backend):
        backend.status_code = 503
        async with self.client_for(service) as client:
            first = await self.post_query(client, service)
            second = await self.post_query(client, service)

        assert first.status_code == 503
        assert second.status_code == 503
        assert second.headers["X-Cache-Status"] == "MISS"
        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_forwarded_request_strips_proxy_headers(self, service, backend):
        async with self.client_for(service) as client:
            await self.post_query(client, service, headers={
                "CF-Connecting-IP": "1.2.3.4",
                "X-Real-IP": "1.2.3.4",
                "X-Hasura-Role": "user",
            })

        sent = backend.requests[0]
        assert str(sent.url) == "http://localhost:8080/v1/graphql"
        assert "cf-connecting-ip" not in sent.headers
        assert "x-real-ip" not in sent.headers
        assert sent.headers["x-hasura-role"] == "user"
        assert "authorization" not in sent.headers

    @pytest.mark.asyncio
    async def test_signed_token_mode(self, backend, clock):
        service = self.make_service(backend, clock, jwt_secret="shared-secret")
        async with self.client_for(service) as client:
            await self.post_query(client, service)

        assert backend.requests[0].headers["authorization"].startswith("Bearer ")

    @pytest.mark.asyncio
    async def test_options_passthrough(self, service, backend):
        async with self.client_for(service) as client:
            response = await client.options("/v1/graphql", headers={"Origin": "https://app.example.com"})

        assert response.status_code == 204
        assert response.headers["X-Cache-Status"] == "OPTIONS"
        assert response.headers["access-control-allow-origin"] == "*"
        assert backend.requests[0].method == "OPTIONS"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method, path", [
        ("GET", "/v1/graphql"),
        ("GET", "/"),
        ("POST", "/v2/graphql"),
        ("PUT", "/v1/graphql"),
        ("DELETE", "/anything/else"),
    ])
    async def test_unknown_routes_return_404(self, service, backend, method, path):
        async with self.client_for(service) as client:
            response = await client.request(method, path)

        assert response.status_code == 404
        assert response.text == "Not Found"
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_auth_webhook_allows_listed_ip(self, service):
        async with self.client_for(service) as client:
            response = await client.get(
                "/auth",
                params={"Authorization": "Bearer abc", "X-Hasura-User-Id": "7"},
                headers={"X-Forwarded-For": "10.0.0.1, 198.51.100.1"},
            )

        assert response.status_code == 200
        assert response.json() == {"X-Hasura-Role": "user"}

    @pytest.mark.asyncio
    async def test_auth_webhook_allows_cluster_network(self, service):
        async with self.client_for(service) as client:
            response = await client.get("/auth", headers={"CF-Connecting-IP": "172.20.3.4"})

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_auth_webhook_rejects_unknown_ip(self, service):
        async with self.client_for(service) as client:
            response = await client.get("/auth", headers={"X-Real-IP": "203.0.113.9"})

        assert response.status_code == 403
        assert response.json()["code"] == "SOURCE_IP_REJECTED"

    @pytest.mark.asyncio
    async def test_auth_webhook_permits_all_when_unconfigured(self, backend, clock):
        service = self.make_service(backend, clock)
        async with self.client_for(service) as client:
            response = await client.get("/auth", headers={"X-Real-IP": "203.0.113.9"})

        assert response.json() == {"X-Hasura-Role": "user"}

    @pytest.mark.asyncio
    async def test_auth_webhook_fails_open(self, service):
        with patch.object(service.webhook, "_resolve_role", side_effect=RuntimeError("boom")):
            async with self.client_for(service) as client:
                response = await client.get("/auth", headers={"X-Real-IP": "10.0.0.1"})

        assert response.status_code == 200
        assert response.json() == {"X-Hasura-Role": "anonymous"}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, service):
        async with self.client_for(service, raise_app_exceptions=False) as client:
            with patch.object(service.orchestrator, "handle_graphql", new_callable=AsyncMock) as mock_handle:
                mock_handle.side_effect = RuntimeError("unexpected")
                failed = await client.post("/v1/graphql", json=QUERY)

            assert failed.status_code == 500
            assert failed.json()["code"] == "INTERNAL_ERROR"

            recovered = await self.post_query(client, service)
            assert recovered.status_code == 200

    @pytest.mark.asyncio
    async def test_health_and_metrics(self, service):
        async with self.client_for(service) as client:
            await self.post_query(client, service)
            health = await client.get("/health")
            metrics = await client.get("/metrics")

        assert health.status_code == 200
        assert health.json()["status"] == "ok"
        assert health.json()["dependencies"] == {"cache": "memory"}
        assert metrics.status_code == 200
        assert 'cache_requests_total{status="MISS"} 1.0' in metrics.text

    @pytest.mark.asyncio
    async def test_shutdown_drains_background_writes(self, service):
        with patch.object(service.orchestrator, "close", new_callable=AsyncMock) as mock_close:
            await service.on_shutdown()
        mock_close.assert_awaited_once()

    def test_invalid_cluster_network_fails_startup(self, backend, clock):
        with pytest.raises(ConfigurationError):
            self.make_service(backend, clock, cluster_network="not-a-network")

    def test_create_app(self):
        app = create_app(get_config("gqlcache", 8000))
        assert isinstance(app, FastAPI)
        assert isinstance(app.state.gateway_service, CacheGatewayService)
