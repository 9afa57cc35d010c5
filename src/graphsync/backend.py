"""Backend client contract shared by both directory API generations.

Callers talk to a DirectoryBackend and stay largely generation-agnostic.
The generation subclasses (aadgraph.py, msgraph.py) supply URI layout,
continuation-link handling and wire translation; request dispatch,
response validation, pagination and lookup policy live here.

NOT-FOUND POLICY:
- get() raises NotFoundError (status 404), never a generic error
- delete() of a missing object returns 404 as a no-op success

EXACTLY-ONE-MATCH POLICY:
find_one() raises NotFoundError on zero matches and AmbiguousMatchError on
more than one, for every resource kind.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from .config import Generation
from .errors import (
    AmbiguousMatchError,
    HandleError,
    MalformedRootError,
    NotFoundError,
    PaginationError,
    ResponseValidationError,
)
from .models import Credential, CredentialKind, DirectoryObject, ResourceKind
from .transport import AuthenticatedTransport
from .uri import QueryParams
from .validation import (
    RESOURCE_NOT_FOUND_CODE,
    Acceptance,
    is_not_found,
    odata_error_code,
    validate_response,
)

logger = logging.getLogger(__name__)

ENTITY_PATHS: dict[ResourceKind, str] = {
    ResourceKind.APPLICATION: "applications",
    ResourceKind.SERVICE_PRINCIPAL: "servicePrincipals",
    ResourceKind.USER: "users",
}

CREDENTIAL_COLLECTIONS: dict[CredentialKind, str] = {
    CredentialKind.PASSWORD: "passwordCredentials",
    CredentialKind.CERTIFICATE: "keyCredentials",
}

# Upper bound on pages followed for one list call (prevents link loops running forever)
MAX_LIST_PAGES = 1000

# Lookup fields the directory treats as case-insensitive identifiers
CASE_INSENSITIVE_FIELDS = frozenset({"userPrincipalName", "mailNickname"})

GET_ACCEPTANCE = Acceptance.of(200)
LIST_ACCEPTANCE = Acceptance.of(200)
CREATE_ACCEPTANCE = Acceptance.of(201)
UPDATE_ACCEPTANCE = Acceptance.of(204)
DELETE_ACCEPTANCE = Acceptance.of(204, predicate=is_not_found)


def quote_odata(value: str) -> str:
    """Escape a string literal for an OData $filter expression."""
    return value.replace("'", "''")


class DirectoryBackend(ABC):
    """Typed Get/List/Create/Update/Delete over one API generation."""

    generation: ClassVar[Generation]
    id_field: ClassVar[str]
    next_link_field: ClassVar[str]

    def __init__(
        self,
        transport: AuthenticatedTransport,
        endpoint: str,
        tenant_id: str,
        api_version: str,
    ) -> None:
        self._transport = transport
        self._endpoint = endpoint
        self._tenant_id = tenant_id
        self._api_version = api_version

    # ------------------------------------------------------------------
    # Generation hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _uri(self, path: str, params: QueryParams | None = None) -> str:
        """Build an absolute URI for a path relative to the API prefix."""

    @abstractmethod
    def _resolve_next_link(self, link: str) -> str:
        """Turn a continuation link from a list response into a request URI."""

    @abstractmethod
    def _credential_fields(self, kind: CredentialKind) -> dict[str, str]:
        """Map canonical credential field names to wire names."""

    @abstractmethod
    async def update_credentials(
        self,
        kind: ResourceKind,
        object_id: str,
        credential_kind: CredentialKind,
        credentials: list[Credential],
    ) -> None:
        """Replace an object's whole credential collection of one kind."""

    def _encode_display_name(self, value: str) -> Any:
        return value

    def _decode_display_name(self, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, kind: ResourceKind, object_id: str) -> tuple[DirectoryObject, int]:
        """Fetch one object by its backend-assigned ID.

        Raises:
            NotFoundError: If the object does not exist.
        """
        url = self._uri(f"{ENTITY_PATHS[kind]}/{object_id}")
        body, status = await self._request(
            "get", "GET", url, GET_ACCEPTANCE, resource_id=object_id
        )
        return self.object_from_wire(kind, self._expect_object(body, "get", object_id)), status

    async def list(
        self, kind: ResourceKind, filter: str | None = None
    ) -> tuple[list[DirectoryObject], int]:
        """List objects, following every continuation link before returning.

        Raises:
            PaginationError: If any continuation link cannot be followed.
        """
        entity = ENTITY_PATHS[kind]
        params = [("$filter", filter)] if filter else None
        url: str | None = self._uri(entity, params)
        seen: set[str] = set()
        objects: list[DirectoryObject] = []
        status = 0
        page = 0

        while url is not None:
            seen.add(url)
            try:
                body, status = await self._request(
                    "list", "GET", url, LIST_ACCEPTANCE, resource_id=entity
                )
            except (NotFoundError, ResponseValidationError) as e:
                if page == 0:
                    raise
                raise PaginationError(
                    f"continuation link for page {page + 1} could not be followed: {e.message}",
                    operation="list",
                    resource_id=entity,
                    status=e.status,
                ) from e

            if not isinstance(body, dict) or not isinstance(body.get("value"), list):
                error_cls = PaginationError if page else ResponseValidationError
                raise error_cls(
                    f"list response page {page + 1} has no value array",
                    operation="list",
                    resource_id=entity,
                    status=status,
                )

            objects.extend(self.object_from_wire(kind, item) for item in body["value"])

            url = self._next_url(body, entity, page, seen)
            page += 1

        logger.debug(
            "Listed directory objects",
            extra={"entity": entity, "filter": filter, "count": len(objects), "pages": page},
        )
        return objects, status

    async def create(self, kind: ResourceKind, obj: DirectoryObject) -> DirectoryObject:
        url = self._uri(ENTITY_PATHS[kind])
        body, _ = await self._request(
            "create",
            "POST",
            url,
            CREATE_ACCEPTANCE,
            json=self.object_to_wire(obj),
            resource_id=obj.display_name,
        )
        created = self.object_from_wire(kind, self._expect_object(body, "create", obj.display_name))
        if not created.object_id:
            raise ResponseValidationError(
                "API returned object with nil object ID",
                operation="create",
                resource_id=obj.display_name,
            )
        return created

    async def update(self, obj: DirectoryObject) -> None:
        """PATCH the fields set on ``obj``. The payload is a delta on both generations."""
        if not obj.object_id:
            raise HandleError("update requires an object ID", operation="update")
        url = self._uri(f"{ENTITY_PATHS[obj.kind]}/{obj.object_id}")
        await self._request(
            "update",
            "PATCH",
            url,
            UPDATE_ACCEPTANCE,
            json=self.object_to_wire(obj),
            resource_id=obj.object_id,
        )

    async def delete(self, kind: ResourceKind, object_id: str) -> int:
        """Delete an object. A missing object returns its not-found status."""
        url = self._uri(f"{ENTITY_PATHS[kind]}/{object_id}")
        _, status = await self._request(
            "delete", "DELETE", url, DELETE_ACCEPTANCE, resource_id=object_id
        )
        if status != httpx.codes.NO_CONTENT:
            logger.info(
                "Object already absent on delete",
                extra={"entity": ENTITY_PATHS[kind], "object_id": object_id, "status": status},
            )
        return status

    async def find_one(self, kind: ResourceKind, field: str, value: str) -> DirectoryObject:
        """Look up the single object whose ``field`` equals ``value``.

        Server-side filters may match case-insensitively, so results are
        re-checked for an exact match before counting. Fields in
        CASE_INSENSITIVE_FIELDS are compared casefolded instead.

        Raises:
            NotFoundError: No object matched.
            AmbiguousMatchError: More than one object matched.
        """
        filter = f"{field} eq '{quote_odata(value)}'"
        objects, _ = await self.list(kind, filter)
        if field in CASE_INSENSITIVE_FIELDS:
            wanted = value.casefold()
            matches = [o for o in objects if o.get_str(field).casefold() == wanted]
        else:
            matches = [o for o in objects if o.get(field) == value]

        if not matches:
            raise NotFoundError(
                f"no {kind.value} found matching filter {filter!r}",
                operation="lookup",
                resource_id=value,
            )
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"found {len(matches)} {kind.value} objects matching filter {filter!r}",
                filter=filter,
                count=len(matches),
                operation="lookup",
                resource_id=value,
            )
        return matches[0]

    # ------------------------------------------------------------------
    # Wire translation
    # ------------------------------------------------------------------

    def object_from_wire(self, kind: ResourceKind, payload: dict[str, Any]) -> DirectoryObject:
        data = {
            k: v for k, v in payload.items() if not k.startswith(("odata.", "@odata."))
        }
        credentials: dict[CredentialKind, list[Credential] | None] = {}
        for credential_kind, collection in CREDENTIAL_COLLECTIONS.items():
            raw = data.pop(collection, None)
            credentials[credential_kind] = (
                [self.credential_from_wire(credential_kind, c) for c in raw if isinstance(c, dict)]
                if isinstance(raw, list)
                else None
            )

        object_id = data.pop(self.id_field, None)
        display_name = data.pop("displayName", None)
        return DirectoryObject(
            kind=kind,
            object_id=object_id if isinstance(object_id, str) else None,
            display_name=display_name if isinstance(display_name, str) else None,
            password_credentials=credentials[CredentialKind.PASSWORD],
            key_credentials=credentials[CredentialKind.CERTIFICATE],
            additional_properties=data,
        )

    def object_to_wire(self, obj: DirectoryObject) -> dict[str, Any]:
        payload = dict(obj.additional_properties)
        if obj.display_name is not None:
            payload["displayName"] = obj.display_name
        for credential_kind, collection in CREDENTIAL_COLLECTIONS.items():
            credentials = (
                obj.password_credentials
                if credential_kind == CredentialKind.PASSWORD
                else obj.key_credentials
            )
            if credentials is not None:
                payload[collection] = [self.credential_to_wire(c) for c in credentials]
        return payload

    def credential_from_wire(self, kind: CredentialKind, payload: dict[str, Any]) -> Credential:
        data = dict(payload)
        values: dict[str, Any] = {}
        for canonical, wire in self._credential_fields(kind).items():
            if wire in data:
                values[canonical] = data.pop(wire)
        if "display_name" in values:
            values["display_name"] = self._decode_display_name(values["display_name"])
        return Credential(kind=kind, additional_properties=data, **values)

    def credential_to_wire(self, credential: Credential) -> dict[str, Any]:
        payload = dict(credential.additional_properties)
        for canonical, wire in self._credential_fields(credential.kind).items():
            value = getattr(credential, canonical)
            if value is None:
                continue
            if canonical == "display_name":
                value = self._encode_display_name(value)
            payload[wire] = value
        return payload

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        acceptance: Acceptance,
        *,
        json: Any = None,
        resource_id: str | None = None,
    ) -> tuple[Any, int]:
        """Send a request and return its decoded JSON body and status.

        Raises:
            NotFoundError: The object does not exist and 404 was not accepted.
            ResponseValidationError: Any other unaccepted response, or an
                accepted response whose body is not JSON.
        """
        response = await self._transport.send(method, url, json=json, operation=operation)
        status = response.status_code
        ok, diagnostic = await validate_response(response, acceptance)

        if not ok:
            if status == httpx.codes.NOT_FOUND or (
                status == httpx.codes.BAD_REQUEST
                and odata_error_code(diagnostic) == RESOURCE_NOT_FOUND_CODE
            ):
                raise NotFoundError(
                    f"{operation} found no object",
                    operation=operation,
                    resource_id=resource_id,
                    status=status,
                )
            raise ResponseValidationError(
                f"unexpected status {status}",
                diagnostic_body=diagnostic,
                operation=operation,
                resource_id=resource_id,
                status=status,
            )

        try:
            content = await response.aread()
        finally:
            await response.aclose()

        if not content or status == httpx.codes.NO_CONTENT:
            return None, status
        try:
            return _decode_json(content), status
        except ValueError as e:
            raise ResponseValidationError(
                f"response body is not valid JSON: {e}",
                operation=operation,
                resource_id=resource_id,
                status=status,
            ) from e

    def _next_url(self, body: dict[str, Any], entity: str, page: int, seen: set[str]) -> str | None:
        link = body.get(self.next_link_field)
        if link is None:
            return None
        if not isinstance(link, str) or not link.strip():
            raise PaginationError(
                f"page {page + 1} carries an empty or non-string continuation link",
                operation="list",
                resource_id=entity,
            )
        try:
            url = self._resolve_next_link(link)
        except MalformedRootError as e:
            raise PaginationError(
                f"continuation link {link!r} is malformed",
                operation="list",
                resource_id=entity,
            ) from e
        if url in seen:
            raise PaginationError(
                f"continuation link {link!r} repeats an earlier page",
                operation="list",
                resource_id=entity,
            )
        if page + 1 >= MAX_LIST_PAGES:
            raise PaginationError(
                f"more than {MAX_LIST_PAGES} pages returned",
                operation="list",
                resource_id=entity,
            )
        return url

    @staticmethod
    def _expect_object(body: Any, operation: str, resource_id: str | None) -> dict[str, Any]:
        if not isinstance(body, dict):
            raise ResponseValidationError(
                "API returned an empty or non-object body",
                operation=operation,
                resource_id=resource_id,
            )
        return body


def _decode_json(content: bytes) -> Any:
    return json.loads(content)

