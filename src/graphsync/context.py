"""Client context: one backend, one transport, one lock registry.

Everything a reconciler needs is built here from a Config. The backend
generation is fixed when the context is opened.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from azure.core.credentials import TokenCredential

from .aadgraph import AadGraphBackend
from .backend import DirectoryBackend
from .config import Config, Generation
from .locks import NamedLockRegistry
from .models import CredentialKind, ResourceKind
from .msgraph import MsGraphBackend
from .reconciler import CredentialReconciler, FieldMapper, ObjectReconciler
from .replication import Backoff
from .security import Authorizer, TokenCredentialAuthorizer, get_managed_identity_credential
from .transport import AuthenticatedTransport

logger = logging.getLogger(__name__)

BACKENDS: dict[Generation, type[DirectoryBackend]] = {
    Generation.AAD_GRAPH: AadGraphBackend,
    Generation.MS_GRAPH: MsGraphBackend,
}


def create_backend(config: Config, transport: AuthenticatedTransport) -> DirectoryBackend:
    backend_cls = BACKENDS[config.generation]
    return backend_cls(
        transport,
        endpoint=config.resolved_endpoint,
        tenant_id=config.tenant_id,
        api_version=config.resolved_api_version,
    )


@dataclass
class ClientContext:
    """Shared state handed to every reconciler built from one Config."""

    config: Config
    backend: DirectoryBackend
    locks: NamedLockRegistry

    @property
    def backoff(self) -> Backoff:
        return Backoff(
            initial_delay=self.config.replication_initial_delay_seconds,
            max_delay=self.config.replication_max_delay_seconds,
        )

    def objects(self, kind: ResourceKind, mapper: FieldMapper | None = None) -> ObjectReconciler:
        return ObjectReconciler(
            kind,
            self.backend,
            self.locks,
            mapper=mapper,
            replication_timeout=self.config.replication_timeout_seconds,
            backoff=self.backoff,
        )

    def credentials(
        self, parent_kind: ResourceKind, credential_kind: CredentialKind
    ) -> CredentialReconciler:
        return CredentialReconciler(
            parent_kind,
            credential_kind,
            self.backend,
            self.locks,
            replication_timeout=self.config.replication_timeout_seconds,
            backoff=self.backoff,
        )


@asynccontextmanager
async def open_context(
    config: Config,
    credential: TokenCredential | None = None,
    *,
    authorizer: Authorizer | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncIterator[ClientContext]:
    """Build a ClientContext and close its HTTP client on exit.

    Args:
        config: Validated configuration.
        credential: Token credential; defaults to the managed identity.
        authorizer: Overrides ``credential`` entirely when given.
        http_client: Client to use instead of a fresh one. Not closed on
            exit when supplied.
    """
    if authorizer is None:
        credential = credential or get_managed_identity_credential(config.client_id)
        authorizer = TokenCredentialAuthorizer(credential, config.token_scope)

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
    transport = AuthenticatedTransport(client, authorizer, user_agent=config.resolved_user_agent)

    logger.info(
        "Directory client ready",
        extra={
            "generation": config.generation.value,
            "endpoint": config.resolved_endpoint,
            "api_version": config.resolved_api_version,
        },
    )
    try:
        yield ClientContext(
            config=config,
            backend=create_backend(config, transport),
            locks=NamedLockRegistry(),
        )
    finally:
        if owns_client:
            await client.aclose()
