"""In-memory directory server for both API generations.

Serves the request shapes the backends emit through httpx.MockTransport:

    AAD Graph   {root}/{tenant}/{entity}[/{id}[/{collection}]]?api-version=1.6
    MS Graph    {root}/{version}/{entity}[/{id}]

Objects are stored in the wire form of the configured generation.
Supports paginated lists, case-insensitive $filter equality, replication
lag after create, one-shot failure injection and per-object concurrency
tracking for read-modify-write tests.
"""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from graphsync.backend import CREDENTIAL_COLLECTIONS, ENTITY_PATHS
from graphsync.config import DEFAULT_API_VERSIONS, DEFAULT_ENDPOINTS, Generation
from graphsync.models import CredentialKind, ResourceKind

TENANT_ID = "11111111-2222-3333-4444-555555555555"

NOT_FOUND_CODE = "Request_ResourceNotFound"
BAD_REQUEST_CODE = "Request_BadRequest"

_FILTER = re.compile(r"^(\w+) eq '((?:[^']|'')*)'$")


@dataclass
class InjectedFailure:
    """A canned response returned once for a matching request."""

    method: str
    status: int
    path_contains: str | None = None
    body: dict[str, Any] | None = None


class FakeDirectory:
    """Fake directory tenant.

    Thread-safe: no. One instance per test, driven from a single event loop.
    """

    def __init__(
        self,
        generation: Generation = Generation.MS_GRAPH,
        tenant_id: str = TENANT_ID,
        page_size: int | None = None,
        latency: float = 0.0,
    ) -> None:
        self.generation = generation
        self.tenant_id = tenant_id
        self.root = DEFAULT_ENDPOINTS[generation]
        self.api_version = DEFAULT_API_VERSIONS[generation]
        self.page_size = page_size
        self.latency = latency
        self.id_field = "objectId" if generation == Generation.AAD_GRAPH else "id"

        self.objects: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.requests: list[httpx.Request] = []

        # GETs of a new object answered with not-found before it becomes visible
        self.replication_lag = 0
        self._lag: dict[str, int] = {}

        # Answer missing objects the AAD way (400 + not-found code) when set
        self.not_found_status = 404

        # Page number (0-based) whose continuation link is corrupted
        self.corrupt_next_link_on_page: int | None = None

        self._failures: list[InjectedFailure] = []
        self._in_flight: dict[str, int] = defaultdict(int)
        self.max_in_flight: dict[str, int] = defaultdict(int)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    # ------------------------------------------------------------------
    # Seeding and inspection
    # ------------------------------------------------------------------

    def add_object(self, kind: ResourceKind, object_id: str | None = None, **properties: Any) -> str:
        """Store an object given its wire properties. Returns its ID."""
        object_id = object_id or str(uuid.uuid4())
        payload = dict(properties)
        payload[self.id_field] = object_id
        self.objects[ENTITY_PATHS[kind]][object_id] = payload
        return object_id

    def get_object(self, kind: ResourceKind, object_id: str) -> dict[str, Any] | None:
        return self.objects[ENTITY_PATHS[kind]].get(object_id)

    def key_ids(self, kind: ResourceKind, object_id: str, collection: str) -> list[str]:
        payload = self.get_object(kind, object_id) or {}
        return [c.get("keyId") for c in payload.get(collection) or []]

    def fail_next(
        self,
        method: str,
        status: int,
        path_contains: str | None = None,
        body: dict[str, Any] | None = None,
    ) -> None:
        """Answer the next matching request with ``status``."""
        self._failures.append(InjectedFailure(method.upper(), status, path_contains, body))

    def requests_for(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper()]

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        failure = self._take_failure(request)
        if failure is not None:
            body = failure.body or self._error_body(BAD_REQUEST_CODE, "injected failure")
            return httpx.Response(failure.status, json=body)

        segments = [s for s in request.url.path.split("/") if s]
        prefix = self.tenant_id if self.generation == Generation.AAD_GRAPH else self.api_version
        if not segments or segments[0] != prefix:
            return self._error(400, BAD_REQUEST_CODE, f"unexpected path {request.url.path}")
        if (
            self.generation == Generation.AAD_GRAPH
            and request.url.params.get("api-version") != self.api_version
        ):
            return self._error(400, BAD_REQUEST_CODE, "api-version is required")

        entity, *rest = segments[1:] or [""]
        object_id = rest[0] if rest else None
        collection = rest[1] if len(rest) > 1 else None

        if object_id is None:
            if request.method == "GET":
                return self._list(request, entity)
            if request.method == "POST":
                return self._create(request, entity)
            return self._error(405, BAD_REQUEST_CODE, "method not allowed")

        self._in_flight[object_id] += 1
        self.max_in_flight[object_id] = max(
            self.max_in_flight[object_id], self._in_flight[object_id]
        )
        try:
            await asyncio.sleep(self.latency)
            if request.method == "GET":
                return self._get(entity, object_id)
            if request.method == "PATCH":
                return self._patch(request, entity, object_id, collection)
            if request.method == "DELETE":
                return self._delete(entity, object_id)
            return self._error(405, BAD_REQUEST_CODE, "method not allowed")
        finally:
            self._in_flight[object_id] -= 1

    def _take_failure(self, request: httpx.Request) -> InjectedFailure | None:
        for failure in self._failures:
            if failure.method != request.method:
                continue
            if failure.path_contains and failure.path_contains not in str(request.url):
                continue
            self._failures.remove(failure)
            return failure
        return None

    def _list(self, request: httpx.Request, entity: str) -> httpx.Response:
        items = list(self.objects[entity].values())

        filter = request.url.params.get("$filter")
        if filter:
            match = _FILTER.match(filter)
            if match is None:
                return self._error(400, BAD_REQUEST_CODE, f"unsupported filter {filter}")
            field_name, value = match.group(1), match.group(2).replace("''", "'")
            # The service compares case-insensitively
            items = [
                i for i in items if str(i.get(field_name, "")).casefold() == value.casefold()
            ]

        skiptoken = request.url.params.get("$skiptoken")
        offset = 0
        if skiptoken is not None:
            if not skiptoken.isdigit():
                return self._error(400, BAD_REQUEST_CODE, f"invalid skiptoken {skiptoken}")
            offset = int(skiptoken)

        size = self.page_size or len(items) or 1
        page_items = items[offset : offset + size]
        body: dict[str, Any] = {"value": [self._render(i) for i in page_items]}

        next_offset = offset + size
        if next_offset < len(items):
            page = offset // size
            token = "bogus" if page == self.corrupt_next_link_on_page else str(next_offset)
            body[self._next_link_field] = self._next_link(request, entity, filter, token)
        return httpx.Response(200, json=body)

    @property
    def _next_link_field(self) -> str:
        return "odata.nextLink" if self.generation == Generation.AAD_GRAPH else "@odata.nextLink"

    def _next_link(
        self, request: httpx.Request, entity: str, filter: str | None, token: str
    ) -> str:
        if self.generation == Generation.AAD_GRAPH:
            # Tenant-relative and unversioned
            query = [("$filter", filter)] if filter else []
            query.append(("$skiptoken", token))
            return f"{entity}?{urlencode(query)}"
        return str(request.url.copy_set_param("$skiptoken", token))

    def _create(self, request: httpx.Request, entity: str) -> httpx.Response:
        payload = json.loads(request.content)
        object_id = str(uuid.uuid4())
        payload[self.id_field] = object_id
        self.objects[entity][object_id] = payload
        if self.replication_lag:
            self._lag[object_id] = self.replication_lag
        return httpx.Response(201, json=self._render(payload))

    def _get(self, entity: str, object_id: str) -> httpx.Response:
        payload = self.objects[entity].get(object_id)
        if payload is None:
            return self._not_found(object_id)
        if self._lag.get(object_id):
            self._lag[object_id] -= 1
            return self._not_found(object_id)
        return httpx.Response(200, json=self._render(payload))

    def _patch(
        self, request: httpx.Request, entity: str, object_id: str, collection: str | None
    ) -> httpx.Response:
        payload = self.objects[entity].get(object_id)
        if payload is None:
            return self._not_found(object_id)
        delta = json.loads(request.content)
        if collection is not None:
            if self.generation != Generation.AAD_GRAPH:
                return self._error(405, BAD_REQUEST_CODE, "no credential sub-resource")
            payload[collection] = delta["value"]
        else:
            payload.update(delta)
        return httpx.Response(204)

    def _delete(self, entity: str, object_id: str) -> httpx.Response:
        if self.objects[entity].pop(object_id, None) is None:
            return self._not_found(object_id)
        return httpx.Response(204)

    def _render(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Wire view of a stored object: secrets are never returned."""
        rendered = dict(payload)
        secret = "value" if self.generation == Generation.AAD_GRAPH else "secretText"
        collection = CREDENTIAL_COLLECTIONS[CredentialKind.PASSWORD]
        if isinstance(rendered.get(collection), list):
            rendered[collection] = [
                {k: v for k, v in c.items() if k != secret} for c in rendered[collection]
            ]
        if self.generation == Generation.AAD_GRAPH:
            rendered["odata.type"] = "Microsoft.DirectoryServices.DirectoryObject"
        else:
            rendered["@odata.context"] = f"{self.root}/{self.api_version}/$metadata"
        return rendered

    def _not_found(self, object_id: str) -> httpx.Response:
        return self._error(
            self.not_found_status,
            NOT_FOUND_CODE,
            f"Resource '{object_id}' does not exist or one of its queried reference-property "
            "objects are not present.",
        )

    def _error(self, status: int, code: str, message: str) -> httpx.Response:
        return httpx.Response(status, json=self._error_body(code, message))

    def _error_body(self, code: str, message: str) -> dict[str, Any]:
        if self.generation == Generation.AAD_GRAPH:
            return {"odata.error": {"code": code, "message": {"lang": "en", "value": message}}}
        return {"error": {"code": code, "message": message}}
