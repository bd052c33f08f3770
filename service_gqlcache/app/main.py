"""
GraphQL cache gateway service.
"""

from typing import Dict, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ConfigurationError
from .adapters.backend_client import BackendClient
from .auth.backend_auth import build_backend_auth
from .auth.ip_filter import AllowedSourceSet, IPAuthorizationFilter
from .auth.webhook import AuthorizationWebhookHandler, resolve_source_ip
from .caching.orchestrator import CacheOrchestrator, GatewayResponse
from .caching.store import CacheStore, RedisCacheStore, build_cache_store


SERVICE_NAME = "gqlcache"
DEFAULT_PORT = 8000
GRAPHQL_PATH = "/v1/graphql"
NOT_FOUND_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


class CacheGatewayService(BaseService):
    """Caching and authorization gateway in front of a GraphQL backend."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[CacheStore] = None,
        backend_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config=config)

        try:
            sources = AllowedSourceSet.build(self.config.allowed_ip_list(), self.config.cluster_network)
        except ValueError as exc:
            raise ConfigurationError(
                "Invalid cluster network rule",
                details={"cluster_network": self.config.cluster_network, "error": str(exc)},
            )

        self.webhook = AuthorizationWebhookHandler(
            IPAuthorizationFilter(sources),
            role=self.config.webhook_role,
            metrics=self.metrics,
        )
        self.store = store if store is not None else build_cache_store(self.config)
        self.backend_client = BackendClient(
            self.config.backend_url,
            timeout=self.config.backend_timeout_seconds,
            auth_strategy=build_backend_auth(self.config),
            metrics=self.metrics,
            transport=backend_transport,
        )
        self.orchestrator = CacheOrchestrator(
            self.store,
            self.backend_client,
            min_ttl=self.config.min_cache_ttl,
            block_mutations=self.config.block_mutations,
            single_flight=self.config.single_flight,
            metrics=self.metrics,
        )

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def on_startup(self) -> None:
        self.logger.info(
            "Gateway starting",
            backend_url=self.config.backend_url,
            cache_backend=self.config.cache_backend,
            backend_auth=self.backend_client.auth_strategy.name,
            block_mutations=self.config.block_mutations,
        )

    async def on_shutdown(self) -> None:
        await self.orchestrator.close()
        await self.backend_client.close()
        await self.store.close()
        self.logger.info("Gateway stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        if isinstance(self.store, RedisCacheStore):
            try:
                await self.store.ping()
                return {"redis": "ok"}
            except Exception as e:
                self.logger.error("Redis health check failed", error=str(e))
                return {"redis": "error"}
        return {"cache": "memory"}

    @staticmethod
    def _to_response(result: GatewayResponse) -> Response:
        response = Response(content=result.body, status_code=result.status_code)
        for name, value in result.headers.multi_items():
            response.headers.append(name, value)
        return response

    def _setup_gateway_routes(self):
        """Set up gateway routes; the catch-all must be registered last."""

        @self.app.post(GRAPHQL_PATH)
        async def graphql(request: Request):
            """Cached GraphQL endpoint."""
            body = await request.body()
            result = await self.orchestrator.handle_graphql(request.url.path, request.headers, body)
            return self._to_response(result)

        @self.app.get("/auth")
        async def auth_webhook(request: Request):
            """Authorization webhook for the GraphQL backend."""
            peer = request.client.host if request.client else None
            source_ip = resolve_source_ip(request.headers, peer)
            decision = self.webhook.handle(source_ip, request.query_params)
            return JSONResponse(content=decision.to_dict())

        @self.app.options("/{path:path}")
        async def preflight(path: str, request: Request):
            """Pass CORS preflight through to the backend."""
            result = await self.orchestrator.handle_options(request.headers)
            return self._to_response(result)

        @self.app.api_route("/{path:path}", methods=NOT_FOUND_METHODS)
        async def not_found(path: str):
            return PlainTextResponse("Not Found", status_code=404)


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = CacheGatewayService(config or get_config(SERVICE_NAME, DEFAULT_PORT))
    return service.app


if __name__ == "__main__":
    service = CacheGatewayService()
    service.run()
