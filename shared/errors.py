"""
Shared error handling for the GraphQL cache gateway.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class GatewayException(Exception):
    """Base exception for gateway services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(GatewayException):
    """Invalid settings detected at startup."""

    status_code = 500

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class AuthorizationError(GatewayException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHORIZATION_ERROR"):
        super().__init__(code, message, details)


class SourceIPRejectedError(AuthorizationError):
    """Webhook caller address is not in the allowed source set."""

    def __init__(self, source_ip: Optional[str]):
        super().__init__(
            "Source address not allowed",
            details={"source_ip": source_ip},
            code="SOURCE_IP_REJECTED",
        )
        self.source_ip = source_ip


class ExternalServiceError(GatewayException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error",
                 details: Optional[Dict[str, Any]] = None, code: str = "EXTERNAL_SERVICE_ERROR"):
        super().__init__(code, f"{service}: {message}", details)
        self.service = service


class BackendUnavailableError(ExternalServiceError):
    """The GraphQL backend could not be reached."""

    def __init__(self, message: str = "Backend unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("graphql_backend", message, details, code="BACKEND_UNAVAILABLE")


class BackendTimeoutError(ExternalServiceError):
    """The GraphQL backend did not answer within the configured timeout."""

    status_code = 504

    def __init__(self, message: str = "Backend request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("graphql_backend", message, details, code="BACKEND_TIMEOUT")
