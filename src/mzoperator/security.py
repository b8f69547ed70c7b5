"""Bearer-token credentials and security audit logging.

The reconciler never holds a process-wide token. A credential is passed
into every operation and attached to each request as it is sent, so
different callers can use different tokens concurrently.

Token acquisition is the host's job: this module only wraps a token that
has already been issued.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

from azure.core.credentials import AccessToken

logger = logging.getLogger(__name__)

ACCESS_TOKEN_ENV_VAR = "MZCLOUD_ACCESS_TOKEN"

# Static tokens carry no expiry; report one far enough out that callers never refresh
STATIC_TOKEN_LIFETIME_SECONDS = 3600


class CredentialError(Exception):
    """Raised when no usable access token is available."""

    pass


class StaticTokenCredential:
    """Credential wrapping a pre-issued API access token.

    Implements azure-core's TokenCredential protocol so it can be used
    anywhere an azure-core pipeline expects a credential.
    """

    def __init__(self, token: str) -> None:
        token = token.strip() if token else ""
        if not token:
            raise CredentialError("Access token must not be empty")
        self._token = token

    def get_token(
        self,
        *scopes: str,
        claims: str | None = None,
        tenant_id: str | None = None,
        **kwargs: Any,
    ) -> AccessToken:
        """Return the wrapped token. Scopes are accepted for protocol compatibility."""
        return AccessToken(self._token, int(time.time()) + STATIC_TOKEN_LIFETIME_SECONDS)

    def __repr__(self) -> str:
        return "StaticTokenCredential(token=***)"


def credential_from_env(token: str | None = None) -> StaticTokenCredential:
    """Build a credential from an explicit token or MZCLOUD_ACCESS_TOKEN.

    Args:
        token: Explicit token; takes precedence over the environment.

    Returns:
        StaticTokenCredential wrapping the token.

    Raises:
        CredentialError: If neither source provides a token.
    """
    value = token or os.environ.get(ACCESS_TOKEN_ENV_VAR, "")
    if not value.strip():
        raise CredentialError(
            f"No access token provided. Set {ACCESS_TOKEN_ENV_VAR} or pass --access-token."
        )

    logger.info(
        "Using static access token credential",
        extra={"source": "argument" if token else ACCESS_TOKEN_ENV_VAR},
    )
    return StaticTokenCredential(value)


def log_security_audit_event(
    event_type: str,
    target_resource: str | None = None,
    action: str | None = None,
    result: str | None = None,
) -> None:
    """Log a security-relevant audit event.

    All mutating calls against the deployments API are logged with
    structured data for SIEM ingestion.

    Args:
        event_type: Type of security event (deployment, access, etc.)
        target_resource: Deployment id being accessed, if known.
        action: Action being performed (create, update, delete).
        result: Result of the action (success, failure).
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
        },
    )
