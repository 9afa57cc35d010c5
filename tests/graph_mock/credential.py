"""Mock token credentials for secretless testing.

Provides a stand-in for ManagedIdentityCredential that returns fake tokens
without an identity endpoint, plus a static authorizer for transport tests.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError

# Token validity duration
TOKEN_VALIDITY_HOURS = 1


class MockManagedIdentityCredential:
    """Mock implementation of ManagedIdentityCredential.

    Records get_token calls for assertions and can be switched to fail the
    way the real credential does, with ClientAuthenticationError.
    """

    def __init__(self, client_id: str | None = None) -> None:
        self._client_id = client_id
        self._get_token_calls: list[tuple[str, ...]] = []
        self._token_counter = 0
        self._failure_message: str | None = None

    @property
    def get_token_call_count(self) -> int:
        return len(self._get_token_calls)

    @property
    def get_token_calls(self) -> list[tuple[str, ...]]:
        return self._get_token_calls.copy()

    def set_failure(self, message: str | None = "Authentication failed") -> None:
        """Fail every following get_token call; None restores success."""
        self._failure_message = message

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        self._get_token_calls.append(scopes)

        if self._failure_message is not None:
            raise ClientAuthenticationError(message=self._failure_message)

        self._token_counter += 1
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        identity_part = self._client_id or "system-assigned"
        return AccessToken(
            f"mock-token-{self._token_counter}-{identity_part}",
            int(expires_on.timestamp()),
        )

    def close(self) -> None:
        pass


class StaticAuthorizer:
    """Authorizer returning a fixed token."""

    def __init__(self, token: str = "test-token") -> None:
        self._token = token
        self.calls = 0

    async def token(self) -> str:
        self.calls += 1
        return self._token


def create_mock_credential(client_id: str | None = None) -> MockManagedIdentityCredential:
    return MockManagedIdentityCredential(client_id=client_id)
