"""
Cache orchestration for GraphQL POST requests.

Per request::

    classify -> mutation -> forward (or block), never cached
             -> query    -> derive key -> lookup -> fresh   -> HIT
                                                 -> missing -> fetch -> 200     -> MISS, store in background
                                                 -> stale   ->       -> non-200 -> relayed, not stored
                                                                     -> failure -> 502/504, not stored

Only status 200 responses are written to the store.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple, TYPE_CHECKING

import httpx

from shared.config import MIN_CACHE_TTL
from shared.errors import ExternalServiceError
from shared.logging import get_logger, set_cache_key
from .background import BackgroundTaskTracker
from .classifier import OperationType, classify
from .freshness import Freshness, age_seconds, entry_ttl, evaluate, now_ms
from .keys import derive_key, resolve_effective_ttl
from .store import CacheEntry, CacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.backend_client import BackendClient, BackendResponse
    from shared.metrics import MetricsCollector


CACHE_STATUS_HEADER = "x-cache-status"
CACHE_AGE_HEADER = "x-cache-age"
CACHE_TTL_HEADER = "x-cache-ttl"
CACHE_TIME_HEADER = "x-gql-cache-time"
CACHE_CONTROL_HEADER = "cache-control"

STATUS_MISS = "MISS"
STATUS_HIT = "HIT"
STATUS_EXPIRED = "EXPIRED"
STATUS_MUTATION = "MUTATION"
STATUS_OPTIONS = "OPTIONS"
STATUS_BLOCKED = "BLOCKED"

MUTATION_BLOCKED_BODY = json.dumps({
    "errors": [{
        "message": "Mutations are not allowed.",
        "extensions": {"code": "MUTATION_NOT_ALLOWED"},
    }]
}).encode("utf-8")


@dataclass
class GatewayResponse:
    """Response handed back to the HTTP layer. Headers may repeat, e.g. Set-Cookie."""

    status_code: int
    body: bytes
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    def __post_init__(self):
        self.headers = httpx.Headers(self.headers)

    @property
    def cache_status(self) -> Optional[str]:
        return self.headers.get(CACHE_STATUS_HEADER)


def _get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _error_response(exc: ExternalServiceError) -> GatewayResponse:
    body = json.dumps({
        "errors": [{"message": exc.message, "extensions": {"code": exc.code}}]
    }).encode("utf-8")
    return GatewayResponse(
        status_code=exc.status_code,
        body=body,
        headers={"content-type": "application/json"},
    )


class CacheOrchestrator:
    """Serves GraphQL queries from the cache store and forwards everything else."""

    def __init__(
        self,
        store: CacheStore,
        backend: "BackendClient",
        *,
        min_ttl: int = MIN_CACHE_TTL,
        block_mutations: bool = False,
        single_flight: bool = True,
        metrics: Optional["MetricsCollector"] = None,
        background: Optional[BackgroundTaskTracker] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.backend = backend
        self.min_ttl = min_ttl
        self.block_mutations = block_mutations
        self.single_flight = single_flight
        self.metrics = metrics
        self.background = background or BackgroundTaskTracker("cache_writes")
        self.clock = clock
        self.logger = get_logger("gqlcache.orchestrator")
        self._inflight: Dict[str, asyncio.Task] = {}

    async def handle_graphql(self, path: str, headers: Mapping[str, str], body: bytes) -> GatewayResponse:
        """Handle a POST GraphQL request."""
        if classify(body) is OperationType.MUTATION:
            return await self._handle_mutation(headers, body)

        effective_ttl = resolve_effective_ttl(_get_header(headers, "X-Cache-TTL"), self.min_ttl)
        key = derive_key(path, effective_ttl, body)
        set_cache_key(key)

        entry = await self._lookup(key)
        status = STATUS_MISS
        if entry is not None:
            now = self.clock()
            if evaluate(entry, effective_ttl, now) is Freshness.HIT:
                return self._finish(self._hit_response(entry, effective_ttl, now))
            self.logger.info(
                "Cache entry expired",
                age_seconds=age_seconds(entry, now),
                ttl_seconds=entry_ttl(entry, effective_ttl),
            )
            status = STATUS_EXPIRED

        return self._finish(await self._fetch_and_store(key, effective_ttl, headers, body, status))

    async def handle_options(self, headers: Mapping[str, str]) -> GatewayResponse:
        """Pass a preflight request through to the backend uncached."""
        try:
            backend_response = await self.backend.forward("OPTIONS", headers, b"")
        except ExternalServiceError as exc:
            response = _error_response(exc)
        else:
            response = GatewayResponse(
                status_code=backend_response.status_code,
                body=backend_response.body,
                headers=httpx.Headers(backend_response.headers),
            )
        response.headers[CACHE_STATUS_HEADER] = STATUS_OPTIONS
        return self._finish(response)

    async def _handle_mutation(self, headers: Mapping[str, str], body: bytes) -> GatewayResponse:
        if self.block_mutations:
            self.logger.info("Blocked mutation")
            return self._finish(GatewayResponse(
                status_code=403,
                body=MUTATION_BLOCKED_BODY,
                headers={"content-type": "application/json", CACHE_STATUS_HEADER: STATUS_BLOCKED},
            ))

        try:
            backend_response = await self.backend.forward("POST", headers, body)
        except ExternalServiceError as exc:
            response = _error_response(exc)
        else:
            response = GatewayResponse(
                status_code=backend_response.status_code,
                body=backend_response.body,
                headers=httpx.Headers(backend_response.headers),
            )
        response.headers[CACHE_STATUS_HEADER] = STATUS_MUTATION
        return self._finish(response)

    async def _lookup(self, key: str) -> Optional[CacheEntry]:
        """Read from the store; an unavailable store counts as a miss."""
        try:
            return await self.store.get(key)
        except Exception as exc:
            self.logger.error("Cache lookup failed", error=str(exc))
            return None

    def _hit_response(self, entry: CacheEntry, effective_ttl: int, now: int) -> GatewayResponse:
        headers = httpx.Headers(entry.headers)
        headers[CACHE_STATUS_HEADER] = STATUS_HIT
        headers[CACHE_AGE_HEADER] = str(max(0, age_seconds(entry, now)))
        headers[CACHE_TTL_HEADER] = str(entry_ttl(entry, effective_ttl))
        headers.setdefault(CACHE_TIME_HEADER, str(entry.stored_at_ms))
        return GatewayResponse(status_code=entry.status_code, body=entry.body, headers=headers)

    async def _fetch_and_store(
        self,
        key: str,
        effective_ttl: int,
        headers: Mapping[str, str],
        body: bytes,
        status: str,
    ) -> GatewayResponse:
        fetch = self._inflight.get(key) if self.single_flight else None
        if fetch is None:
            fetch = asyncio.ensure_future(self._fetch(key, effective_ttl, headers, body))
            if self.single_flight:
                self._inflight[key] = fetch
            fetch.add_done_callback(lambda task: self._release(key, task))
        else:
            self.logger.debug("Joining in-flight backend fetch")

        try:
            # Shielded so a disconnecting caller does not cancel the fetch others wait on.
            backend_response, stored_headers = await asyncio.shield(fetch)
        except ExternalServiceError as exc:
            response = _error_response(exc)
            response.headers[CACHE_STATUS_HEADER] = status
            response.headers[CACHE_TTL_HEADER] = str(effective_ttl)
            return response

        response_headers = httpx.Headers(stored_headers)
        response_headers[CACHE_STATUS_HEADER] = status
        return GatewayResponse(
            status_code=backend_response.status_code,
            body=backend_response.body,
            headers=response_headers,
        )

    async def _fetch(
        self,
        key: str,
        effective_ttl: int,
        headers: Mapping[str, str],
        body: bytes,
    ) -> Tuple["BackendResponse", httpx.Headers]:
        """One backend round trip; a 200 is stored whether or not its requester is still waiting."""
        backend_response = await self.backend.forward("POST", headers, body)

        stored_at = self.clock()
        stored_headers = httpx.Headers(backend_response.headers)
        stored_headers[CACHE_TIME_HEADER] = str(stored_at)
        stored_headers[CACHE_CONTROL_HEADER] = f"max-age={effective_ttl}"
        stored_headers[CACHE_TTL_HEADER] = str(effective_ttl)

        if backend_response.ok:
            entry = CacheEntry(
                body=backend_response.body,
                status_code=backend_response.status_code,
                stored_at_ms=stored_at,
                ttl_seconds=effective_ttl,
                headers=tuple(stored_headers.multi_items()),
            )
            self.background.spawn(self._store(key, entry), name="cache-store")

        return backend_response, stored_headers

    def _release(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, ExternalServiceError):
            self.logger.error("Backend fetch failed", error=str(error))

    async def _store(self, key: str, entry: CacheEntry) -> None:
        """Write an entry; failures are logged and dropped."""
        try:
            await self.store.put(key, entry)
        except Exception as exc:
            self.logger.error("Cache store failed", key=key, error=str(exc))
            self._record_store("error")
            return
        self.logger.debug("Cached response", key=key, ttl_seconds=entry.ttl_seconds)
        self._record_store("ok")

    def _record_store(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_store_write(result)

    def _finish(self, response: GatewayResponse) -> GatewayResponse:
        if self.metrics and response.cache_status:
            self.metrics.record_cache_status(response.cache_status)
        return response

    async def close(self) -> None:
        """Join outstanding cache writes."""
        await self.background.drain()
