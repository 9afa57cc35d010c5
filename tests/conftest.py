"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for graph_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from graph_mock import TENANT_ID, FakeDirectory, StaticAuthorizer  # noqa: E402

from graphsync.aadgraph import AadGraphBackend  # noqa: E402
from graphsync.backend import DirectoryBackend  # noqa: E402
from graphsync.config import DEFAULT_API_VERSIONS, DEFAULT_ENDPOINTS, Generation  # noqa: E402
from graphsync.msgraph import MsGraphBackend  # noqa: E402
from graphsync.transport import AuthenticatedTransport  # noqa: E402

BACKEND_CLASSES: dict[Generation, type[DirectoryBackend]] = {
    Generation.AAD_GRAPH: AadGraphBackend,
    Generation.MS_GRAPH: MsGraphBackend,
}


@pytest.fixture(params=[Generation.AAD_GRAPH, Generation.MS_GRAPH], ids=lambda g: g.value)
def generation(request: pytest.FixtureRequest) -> Generation:
    """Run a test once per API generation."""
    return request.param


@pytest.fixture
def fake(generation: Generation) -> FakeDirectory:
    return FakeDirectory(generation)


@pytest_asyncio.fixture
async def backend(fake: FakeDirectory) -> AsyncIterator[DirectoryBackend]:
    """Backend of the parametrized generation wired to the fake directory."""
    async with fake.client() as client:
        transport = AuthenticatedTransport(client, StaticAuthorizer())
        yield BACKEND_CLASSES[fake.generation](
            transport,
            endpoint=DEFAULT_ENDPOINTS[fake.generation],
            tenant_id=TENANT_ID,
            api_version=DEFAULT_API_VERSIONS[fake.generation],
        )
