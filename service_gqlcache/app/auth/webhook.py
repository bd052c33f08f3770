"""
Authorization webhook called by the GraphQL backend.

The backend re-delivers each client request's headers as query parameters
and expects a role back. Callers outside the allowed source set get a 403;
any other failure degrades to the anonymous role so the backend's
authorization flow never breaks.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, TYPE_CHECKING

from shared.errors import SourceIPRejectedError
from shared.logging import get_logger
from .ip_filter import IPAuthorizationFilter

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


ROLE_SESSION_VARIABLE = "X-Hasura-Role"
DEFAULT_ROLE = "user"
ANONYMOUS_ROLE = "anonymous"

SOURCE_IP_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


@dataclass(frozen=True)
class RoleDecision:
    """Role handed back to the backend."""

    role: str

    def to_dict(self) -> Dict[str, str]:
        return {ROLE_SESSION_VARIABLE: self.role}


def resolve_source_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> Optional[str]:
    """First present of the connecting-IP, forwarded-for and real-IP headers, else the peer."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in SOURCE_IP_HEADERS:
        value = lowered.get(name)
        if not value:
            continue
        if name == "x-forwarded-for":
            value = value.split(",")[0]
        value = value.strip()
        if value:
            return value
    return peer


class AuthorizationWebhookHandler:
    """Applies the IP filter and resolves a role for the backend."""

    def __init__(
        self,
        ip_filter: IPAuthorizationFilter,
        *,
        role: str = DEFAULT_ROLE,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.ip_filter = ip_filter
        self.role = role
        self.metrics = metrics
        self.logger = get_logger("gqlcache.auth_webhook")

    def handle(self, source_ip: Optional[str], query_params: Mapping[str, str]) -> RoleDecision:
        """Return the caller's role; raises SourceIPRejectedError for unknown sources."""
        try:
            allowed = self.ip_filter.is_allowed(source_ip)
        except Exception as e:
            return self._fail_open(e)

        if not allowed:
            self.logger.warning("Webhook call from disallowed source", source_ip=source_ip)
            self._record("rejected")
            raise SourceIPRejectedError(source_ip)

        try:
            request_headers = {key.lower(): value for key, value in query_params.items()}
            decision = RoleDecision(self._resolve_role(request_headers))
        except Exception as e:
            return self._fail_open(e)

        self.logger.info("Webhook authorized", source_ip=source_ip, role=decision.role)
        self._record(decision.role)
        return decision

    def _resolve_role(self, request_headers: Dict[str, str]) -> str:
        # Every accepted request currently maps to the configured role.
        return self.role

    def _fail_open(self, error: Exception) -> RoleDecision:
        self.logger.error("Webhook authorization failed, using anonymous role", error=str(error), exc_info=True)
        self._record(ANONYMOUS_ROLE)
        return RoleDecision(ANONYMOUS_ROLE)

    def _record(self, decision: str) -> None:
        if self.metrics:
            self.metrics.record_webhook_decision(decision)
