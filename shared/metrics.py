"""
Shared metrics configuration for the GraphQL cache gateway.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional
import time

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns a registry so several service instances (tests,
    embedded apps) can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_cache_metrics()
        self._setup_auth_metrics()

    def _setup_cache_metrics(self):
        """Set up cache and backend metrics."""
        self._metrics["cache_requests_total"] = Counter(
            "cache_requests_total",
            "GraphQL requests by cache status",
            ["status"],
            registry=self.registry
        )

        self._metrics["cache_store_writes_total"] = Counter(
            "cache_store_writes_total",
            "Background cache store writes",
            ["result"],
            registry=self.registry
        )

        self._metrics["backend_requests_total"] = Counter(
            "backend_requests_total",
            "Requests forwarded to the GraphQL backend",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["backend_request_duration_seconds"] = Histogram(
            "backend_request_duration_seconds",
            "GraphQL backend request duration in seconds",
            registry=self.registry
        )

    def _setup_auth_metrics(self):
        """Set up authorization webhook metrics."""
        self._metrics["auth_webhook_decisions_total"] = Counter(
            "auth_webhook_decisions_total",
            "Authorization webhook decisions",
            ["decision"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check result."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record an error occurrence."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_cache_status(self, status: str):
        """Record the X-Cache-Status assigned to a GraphQL request."""
        self._metrics["cache_requests_total"].labels(status=status).inc()

    def record_store_write(self, result: str):
        """Record the outcome of a background cache write."""
        self._metrics["cache_store_writes_total"].labels(result=result).inc()

    def record_webhook_decision(self, decision: str):
        """Record an authorization webhook decision."""
        self._metrics["auth_webhook_decisions_total"].labels(decision=decision).inc()

    @contextmanager
    def time_backend_request(self):
        """Context manager to time a backend round trip."""
        start_time = time.time()
        try:
            yield
        finally:
            self._metrics["backend_request_duration_seconds"].observe(time.time() - start_time)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
