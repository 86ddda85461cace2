"""Service account credential provider for Vertex AI.

Exchanges a self-signed RS256 JWT assertion for a short-lived OAuth access
token. A fresh token is fetched for every upstream request; submissions and
polls are rare compared to the one-hour token lifetime.
"""

import json
import time
from typing import Any

import httpx
import jwt
import structlog

from veostudio.core.config import VertexConfig

logger = structlog.get_logger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600


class ServiceAccountCredentialProvider:
    """Obtains bearer tokens for Vertex AI from a service account key."""

    def __init__(self, config: VertexConfig, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize provider.

        Args:
            config: Vertex configuration carrying the service account JSON
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.config = config
        self._transport = transport

    def build_assertion(self, service_account: dict[str, Any], now: int | None = None) -> str:
        """Create the signed JWT assertion for the token exchange.

        Args:
            service_account: Parsed service account key (client_email, private_key)
            now: Issued-at epoch seconds (defaults to current time)

        Returns:
            Compact RS256 JWT
        """
        issued_at = int(time.time()) if now is None else now
        payload = {
            "iss": service_account["client_email"],
            "sub": service_account["client_email"],
            "aud": self.config.token_uri,
            "scope": self.config.oauth_scope,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        return jwt.encode(payload, service_account["private_key"], algorithm="RS256")

    async def acquire_token(self) -> str | None:
        """Get a fresh OAuth access token.

        Returns:
            Access token string, or None when the service account is malformed,
            signing fails, or the identity provider rejects the assertion.
            Callers decide whether None is fatal (submission) or transient (polling).
        """
        try:
            service_account = json.loads(self.config.service_account_json)
            assertion = self.build_assertion(service_account)
        except (ValueError, KeyError, TypeError, jwt.PyJWTError) as e:
            logger.error(
                "vertex.token.assertion_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        try:
            async with httpx.AsyncClient(
                timeout=self.config.token_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self.config.token_uri,
                    data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                )
        except httpx.HTTPError as e:
            logger.warning(
                "vertex.token.request_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if response.status_code != 200:
            logger.warning(
                "vertex.token.rejected",
                status_code=response.status_code,
                body=response.text[:300],
            )
            return None

        try:
            access_token = response.json().get("access_token")
        except (ValueError, AttributeError) as e:
            logger.warning("vertex.token.malformed_response", error=str(e))
            return None

        if not access_token:
            logger.warning("vertex.token.missing_access_token")
            return None

        return access_token
