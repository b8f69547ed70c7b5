"""Mock bearer-token credential.

Returns fake tokens and records every get_token call so tests can assert
that the credential was forwarded to each remote call.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError

# Token validity duration
TOKEN_VALIDITY_HOURS = 1


class MockTokenCredential:
    """Mock implementation of azure-core's TokenCredential protocol.

    Thread-safe enough for tests: each instance keeps its own call log and
    the reconciler only calls it from one executor thread at a time.
    """

    def __init__(self, name: str = "test") -> None:
        self._name = name
        self._get_token_calls: list[dict[str, Any]] = []
        self._token_counter = 0
        self._should_fail = False
        self._failure_message = "Authentication failed"

    @property
    def get_token_call_count(self) -> int:
        """Get the number of times get_token was called."""
        return len(self._get_token_calls)

    def set_failure(self, should_fail: bool, message: str = "Authentication failed") -> None:
        """Configure the credential to fail on the next get_token call."""
        self._should_fail = should_fail
        self._failure_message = message

    def get_token(
        self,
        *scopes: str,
        claims: str | None = None,
        tenant_id: str | None = None,
        **kwargs: Any,
    ) -> AccessToken:
        """Get a mock access token.

        Raises:
            ClientAuthenticationError: If configured to fail.
        """
        self._get_token_calls.append({"scopes": scopes, "claims": claims})

        if self._should_fail:
            raise ClientAuthenticationError(message=self._failure_message)

        self._token_counter += 1
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)

        # Token format: mock-token-{counter}-{name}
        return AccessToken(
            f"mock-token-{self._token_counter}-{self._name}",
            int(expires_on.timestamp()),
        )


def create_mock_credential(name: str = "test") -> MockTokenCredential:
    """Factory function to create a mock credential."""
    return MockTokenCredential(name=name)
