"""
Unit tests for the GraphQL backend client.
"""

import httpx
import pytest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gqlcache.app.adapters.backend_client import BackendClient
from service_gqlcache.app.auth.backend_auth import SignedTokenAuthStrategy
from shared.errors import BackendTimeoutError, BackendUnavailableError


BACKEND_URL = "http://hasura.internal:8080/v1/graphql"


class RecordingBackend:
    """httpx mock transport handler that records requests."""

    def __init__(self, status_code=200, body=b'{"data":{"users":[]}}', headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {"content-type": "application/json"}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=self.body, headers=self.headers)


class TestBackendClient:
    """Test cases for BackendClient."""

    @pytest.fixture
    def backend(self):
        return RecordingBackend()

    @pytest.fixture
    def client(self, backend):
        return BackendClient(BACKEND_URL, timeout=2.0, transport=httpx.MockTransport(backend))

    @pytest.mark.asyncio
    async def test_forward_posts_body_to_backend(self, client, backend):
        body = b'{"query":"{ users { id } }"}'
        response = await client.forward("POST", {"x-hasura-admin-secret": "s3cret"}, body)

        assert response.status_code == 200
        assert response.ok
        assert response.body == b'{"data":{"users":[]}}'

        sent = backend.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == BACKEND_URL
        assert sent.content == body
        assert sent.headers["x-hasura-admin-secret"] == "s3cret"
        assert sent.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_proxy_headers_are_stripped(self, client, backend):
        inbound = {
            "Host": "edge.example.com",
            "CF-Ray": "abc",
            "CF-Connecting-IP": "1.2.3.4",
            "CF-Visitor": '{"scheme":"https"}',
            "X-Forwarded-Proto": "https",
            "X-Real-IP": "1.2.3.4",
            "Content-Type": "text/plain",
            "X-Cache-TTL": "60",
        }
        await client.forward("POST", inbound, b"{}")

        sent = backend.requests[0].headers
        for name in ("cf-ray", "cf-connecting-ip", "cf-visitor", "x-forwarded-proto", "x-real-ip"):
            assert name not in sent
        assert sent["host"] == "hasura.internal:8080"
        assert sent["content-type"] == "application/json"
        assert sent["x-cache-ttl"] == "60"

    @pytest.mark.asyncio
    async def test_signed_token_attached(self, backend):
        client = BackendClient(
            BACKEND_URL,
            auth_strategy=SignedTokenAuthStrategy("secret"),
            transport=httpx.MockTransport(backend),
        )
        await client.forward("POST", {"Authorization": "Bearer client"}, b"{}")

        sent = backend.requests[0].headers
        assert sent.get_list("authorization")[0].startswith("Bearer ")
        assert sent["authorization"] != "Bearer client"

    @pytest.mark.asyncio
    async def test_options_sends_no_body(self, client, backend):
        await client.forward("OPTIONS", {"Origin": "https://app.example.com"})

        sent = backend.requests[0]
        assert sent.method == "OPTIONS"
        assert sent.content == b""

    @pytest.mark.asyncio
    async def test_non_success_status_is_returned(self):
        backend = RecordingBackend(status_code=500, body=b'{"errors":[]}')
        client = BackendClient(BACKEND_URL, transport=httpx.MockTransport(backend))

        response = await client.forward("POST", {}, b"{}")

        assert response.status_code == 500
        assert not response.ok
        assert response.body == b'{"errors":[]}'

    @pytest.mark.asyncio
    async def test_transport_headers_dropped_from_response(self):
        backend = RecordingBackend(headers={
            "content-type": "application/json",
            "x-request-id": "abc",
            "connection": "keep-alive",
        })
        client = BackendClient(BACKEND_URL, transport=httpx.MockTransport(backend))

        response = await client.forward("POST", {}, b"{}")

        assert response.headers["content-type"] == "application/json"
        assert response.headers["x-request-id"] == "abc"
        assert "content-length" not in response.headers
        assert "connection" not in response.headers

    @pytest.mark.asyncio
    async def test_repeated_response_headers_are_kept(self):
        def handler(request):
            return httpx.Response(200, content=b"{}", headers=[
                ("content-type", "application/json"),
                ("set-cookie", "a=1"),
                ("set-cookie", "b=2"),
            ])

        client = BackendClient(BACKEND_URL, transport=httpx.MockTransport(handler))

        response = await client.forward("POST", {}, b"{}")

        assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]

    @pytest.mark.asyncio
    async def test_timeout_raises_backend_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        metrics = MagicMock()
        client = BackendClient(BACKEND_URL, metrics=metrics, transport=httpx.MockTransport(handler))

        with pytest.raises(BackendTimeoutError) as exc_info:
            await client.forward("POST", {}, b"{}")

        assert exc_info.value.status_code == 504
        metrics.increment_counter.assert_called_with("backend_requests_total", outcome="timeout")

    @pytest.mark.asyncio
    async def test_connect_error_raises_backend_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = BackendClient(BACKEND_URL, transport=httpx.MockTransport(handler))

        with pytest.raises(BackendUnavailableError) as exc_info:
            await client.forward("POST", {}, b"{}")

        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "BACKEND_UNAVAILABLE"
