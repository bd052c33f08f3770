"""
HTTP client for the GraphQL backend.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional, TYPE_CHECKING

import httpx

from shared.errors import BackendTimeoutError, BackendUnavailableError
from shared.logging import get_logger
from ..auth.backend_auth import BackendAuthStrategy, WebhookAuthStrategy

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


# Proxy and edge headers that describe the hop into the gateway, not the client request.
STRIPPED_REQUEST_HEADERS = frozenset({
    "host",
    "cf-ray",
    "cf-connecting-ip",
    "cf-visitor",
    "x-forwarded-proto",
    "x-real-ip",
    "content-length",
    "accept-encoding",
    "connection",
})

# httpx has already decoded and de-chunked the body.
STRIPPED_RESPONSE_HEADERS = frozenset({
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "connection",
})


@dataclass(frozen=True)
class BackendResponse:
    """Status, headers and raw body returned by the backend."""

    status_code: int
    body: bytes
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    def __post_init__(self):
        object.__setattr__(self, "headers", httpx.Headers(self.headers))

    @property
    def ok(self) -> bool:
        return self.status_code == 200


class BackendClient:
    """Forwards GraphQL requests to the configured backend endpoint."""

    def __init__(
        self,
        backend_url: str,
        *,
        timeout: float = 10.0,
        auth_strategy: Optional[BackendAuthStrategy] = None,
        metrics: Optional["MetricsCollector"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.backend_url = backend_url
        self.timeout = timeout
        self.auth_strategy = auth_strategy or WebhookAuthStrategy()
        self.metrics = metrics
        self.logger = get_logger("gqlcache.backend_client")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def build_headers(self, inbound: Mapping[str, str]) -> httpx.Headers:
        """Copy inbound headers minus proxy hop headers and attach backend credentials."""
        headers = httpx.Headers()
        for name, value in inbound.items():
            if name.lower() not in STRIPPED_REQUEST_HEADERS:
                headers[name] = value
        headers["Content-Type"] = "application/json"
        self.auth_strategy.apply(headers)
        return headers

    async def forward(self, method: str, headers: Mapping[str, str], body: bytes = b"") -> BackendResponse:
        """Send one request to the backend; no retries."""
        outbound = self.build_headers(headers)
        try:
            if self.metrics:
                with self.metrics.time_backend_request():
                    response = await self._send(method, outbound, body)
            else:
                response = await self._send(method, outbound, body)
        except httpx.TimeoutException as e:
            self.logger.error("Backend request timed out", method=method, timeout=self.timeout, error=str(e))
            self._record_outcome("timeout")
            raise BackendTimeoutError(details={"timeout_seconds": self.timeout})
        except httpx.HTTPError as e:
            self.logger.error("Backend HTTP error", method=method, error=str(e))
            self._record_outcome("error")
            raise BackendUnavailableError(details={"http_error": str(e)})

        self._record_outcome("success" if response.status_code == 200 else f"status_{response.status_code}")
        if response.status_code != 200:
            self.logger.warning("Backend returned non-success status", method=method, status_code=response.status_code)

        return BackendResponse(
            status_code=response.status_code,
            body=response.content,
            headers=[
                (name, value)
                for name, value in response.headers.multi_items()
                if name.lower() not in STRIPPED_RESPONSE_HEADERS
            ],
        )

    async def _send(self, method: str, headers: httpx.Headers, body: bytes) -> httpx.Response:
        return await self._client.request(
            method.upper(),
            self.backend_url,
            headers=headers,
            content=body or None,
        )

    def _record_outcome(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("backend_requests_total", outcome=outcome)
