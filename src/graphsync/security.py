"""Bearer token acquisition for the directory APIs.

The client authenticates as a managed identity. Token caching and refresh
belong to the azure-identity credential; this module only asks it for a
current token and never retries on expiry.

SECURITY INVARIANTS:
1. Client secret, certificate and password environment variables must not
   be present when the default credential is built
2. ManagedIdentityCredential is the only credential this module constructs
3. Tokens are never logged
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Protocol

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ManagedIdentityCredential

from .errors import AuthorizationError

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)


class SecretlessViolationError(Exception):
    """Raised when a credential secret is found in the environment."""

    pass


class Authorizer(Protocol):
    """Anything that can hand out a current bearer token."""

    async def token(self) -> str: ...


def enforce_secretless_architecture() -> None:
    """Refuse to start when credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={"security_event": "credential_detected", "env_var": env_var},
            )
            raise SecretlessViolationError(
                f"{env_var} is set; the directory client authenticates with a "
                "managed identity only. Remove credential environment variables."
            )


def get_managed_identity_credential(client_id: str | None = None) -> ManagedIdentityCredential:
    """Build a ManagedIdentityCredential after checking the environment.

    Args:
        client_id: Client ID of a user-assigned identity. None selects the
            system-assigned identity.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


class TokenCredentialAuthorizer:
    """Adapts an azure-core TokenCredential to the Authorizer protocol.

    The credential's ``get_token`` is synchronous (it may hit the IMDS
    endpoint), so it runs in the default executor.
    """

    def __init__(self, credential: TokenCredential, scope: str) -> None:
        self._credential = credential
        self._scope = scope

    @property
    def scope(self) -> str:
        return self._scope

    async def token(self) -> str:
        try:
            access_token = await asyncio.to_thread(self._credential.get_token, self._scope)
        except ClientAuthenticationError as e:
            raise AuthorizationError(
                f"acquiring token for scope {self._scope}: {e.message}",
                operation="token",
            ) from e
        return access_token.token
