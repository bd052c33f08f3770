"""
How the gateway authenticates itself to the GraphQL backend.

Two deployment modes exist:

- webhook: requests go through unsigned and the backend calls back into
  ``/auth`` to obtain a role.
- signed token: every forwarded request carries a freshly minted,
  short-lived HS256 JWT signed with the secret shared with the backend.
"""

import time
from typing import Any, Dict, MutableMapping, Optional, Protocol

from jose import jwt

from shared.config import BaseConfig
from shared.logging import get_logger


HASURA_CLAIMS_NAMESPACE = "https://hasura.io/jwt/claims"
DEFAULT_SUBJECT = "worker-user"
DEFAULT_ROLE = "user"
TOKEN_LIFETIME_SECONDS = 3600


class BackendAuthStrategy(Protocol):
    """Adds backend credentials to outbound headers."""

    name: str

    def apply(self, headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
        ...


class WebhookAuthStrategy:
    """Leaves headers untouched; the backend authorizes through the webhook."""

    name = "webhook"

    def apply(self, headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
        return headers


class SignedTokenAuthStrategy:
    """Signs each forwarded request with a short-lived HS256 token."""

    name = "signed_token"

    def __init__(
        self,
        secret: str,
        *,
        subject: str = DEFAULT_SUBJECT,
        role: str = DEFAULT_ROLE,
        lifetime_seconds: int = TOKEN_LIFETIME_SECONDS,
    ):
        if not secret:
            raise ValueError("Signed token strategy requires a secret")
        self._secret = secret
        self.subject = subject
        self.role = role
        self.lifetime_seconds = lifetime_seconds

    def claims(self, now: Optional[int] = None) -> Dict[str, Any]:
        issued_at = int(time.time()) if now is None else now
        return {
            "sub": self.subject,
            "iat": issued_at,
            "exp": issued_at + self.lifetime_seconds,
            HASURA_CLAIMS_NAMESPACE: {
                "x-hasura-default-role": self.role,
                "x-hasura-allowed-roles": [self.role],
                "x-hasura-user-id": self.subject,
            },
        }

    def mint(self, now: Optional[int] = None) -> str:
        return jwt.encode(self.claims(now), self._secret, algorithm="HS256")

    def apply(self, headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
        headers["Authorization"] = f"Bearer {self.mint()}"
        return headers


def build_backend_auth(config: BaseConfig) -> BackendAuthStrategy:
    """Signed tokens when a shared secret is configured, the webhook otherwise."""
    logger = get_logger("gqlcache.backend_auth")
    if config.jwt_secret:
        logger.info("Backend authentication uses signed tokens")
        return SignedTokenAuthStrategy(config.jwt_secret)
    logger.info("Backend authentication delegated to the authorization webhook")
    return WebhookAuthStrategy()
