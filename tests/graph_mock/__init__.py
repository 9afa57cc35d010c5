"""Directory API mock for integration testing.

Usage:
    from graph_mock import FakeDirectory, StaticAuthorizer

    fake = FakeDirectory(Generation.AAD_GRAPH, page_size=2)
    async with fake.client() as client:
        transport = AuthenticatedTransport(client, StaticAuthorizer())
        ...
    assert fake.key_ids(ResourceKind.APPLICATION, app_id, "passwordCredentials") == [...]
"""

from .credential import MockManagedIdentityCredential, StaticAuthorizer, create_mock_credential
from .directory import TENANT_ID, FakeDirectory, InjectedFailure

__all__ = [
    "TENANT_ID",
    "FakeDirectory",
    "InjectedFailure",
    "MockManagedIdentityCredential",
    "StaticAuthorizer",
    "create_mock_credential",
]
