"""Reconcilers: create/read/update/delete for one resource type.

Inbound calls carry a flat field set and return a ReconcileOutcome: the
handle to track (None means untrack), the fields to persist, and any
diagnostics keyed by attribute path. Typed DirectoryErrors are turned into
diagnostics at this boundary; anything else propagates.

MUTATION ORDERING:
Every mutation runs under the named lock of the object it changes. Credential
mutations lock the parent, under the same namespace as the parent's own
updates, so a credential splice and an application update never interleave.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from .backend import DirectoryBackend
from .credentials import CredentialError, build_credential
from .errors import (
    AlreadyExistsError,
    DirectoryError,
    HandleError,
    NotFoundError,
)
from .identity import CredentialId, decode_current, encode, new_credential_id
from .locks import NamedLockRegistry
from .models import Credential, CredentialKind, DirectoryObject, ResourceKind
from .replication import Backoff, wait_for_creation_replication

logger = logging.getLogger(__name__)

DEFAULT_REPLICATION_TIMEOUT_SECONDS = 300.0

# Lock namespaces, shared by an object and its credentials
LOCK_NAMESPACES: dict[ResourceKind, str] = {
    ResourceKind.APPLICATION: "azuread_application",
    ResourceKind.SERVICE_PRINCIPAL: "azuread_service_principal",
    ResourceKind.USER: "azuread_user",
}

# Attribute naming the parent object on credential resources
PARENT_ATTRIBUTES: dict[ResourceKind, str] = {
    ResourceKind.APPLICATION: "application_object_id",
    ResourceKind.SERVICE_PRINCIPAL: "service_principal_id",
}

# Lookup attributes in precedence order: (flat attribute, wire field or None for object ID)
LOOKUP_ATTRIBUTES: dict[ResourceKind, tuple[tuple[str, str | None], ...]] = {
    ResourceKind.APPLICATION: (
        ("object_id", None),
        ("application_id", "appId"),
        ("display_name", "displayName"),
    ),
    ResourceKind.SERVICE_PRINCIPAL: (
        ("object_id", None),
        ("application_id", "appId"),
        ("display_name", "displayName"),
    ),
    ResourceKind.USER: (
        ("user_principal_name", "userPrincipalName"),
        ("object_id", None),
        ("mail_nickname", "mailNickname"),
    ),
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass
class Diagnostic:
    """A failure reported back to the declarative engine."""

    summary: str
    attribute_path: str | None = None
    detail: str | None = None
    error: Exception | None = None


@dataclass
class ReconcileOutcome:
    """Result of one reconciliation call."""

    handle: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.diagnostics

    @property
    def tracked(self) -> bool:
        return self.handle is not None

    @property
    def error(self) -> Exception | None:
        return self.diagnostics[0].error if self.diagnostics else None

    @classmethod
    def failed(
        cls,
        error: Exception,
        summary: str,
        attribute_path: str | None = None,
        handle: str | None = None,
    ) -> ReconcileOutcome:
        return cls(
            handle=handle,
            diagnostics=[
                Diagnostic(
                    summary=summary,
                    attribute_path=attribute_path,
                    detail=str(error),
                    error=error,
                )
            ],
        )


class FieldMapper(Protocol):
    """Expands flat fields into API objects and flattens them back."""

    def expand(
        self, kind: ResourceKind, fields: dict[str, Any], keep_nulls: bool = False
    ) -> DirectoryObject: ...

    def flatten(self, obj: DirectoryObject) -> dict[str, Any]: ...


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class CamelCaseFieldMapper:
    """Maps snake_case fields to camelCase wire properties one-to-one."""

    def expand(
        self, kind: ResourceKind, fields: dict[str, Any], keep_nulls: bool = False
    ) -> DirectoryObject:
        """Build a DirectoryObject; ``keep_nulls`` sends None values as JSON null."""
        properties = {
            snake_to_camel(k): v
            for k, v in fields.items()
            if (keep_nulls or v is not None) and k not in ("object_id", "display_name")
        }
        return DirectoryObject(
            kind=kind,
            object_id=fields.get("object_id"),
            display_name=fields.get("display_name"),
            additional_properties=properties,
        )

    def flatten(self, obj: DirectoryObject) -> dict[str, Any]:
        flat: dict[str, Any] = {
            camel_to_snake(k): v for k, v in obj.additional_properties.items()
        }
        flat["object_id"] = obj.object_id
        flat["display_name"] = obj.display_name
        return flat


class ObjectReconciler:
    """Reconciles applications, service principals and users."""

    def __init__(
        self,
        kind: ResourceKind,
        backend: DirectoryBackend,
        locks: NamedLockRegistry,
        mapper: FieldMapper | None = None,
        replication_timeout: float = DEFAULT_REPLICATION_TIMEOUT_SECONDS,
        backoff: Backoff | None = None,
    ) -> None:
        self.kind = kind
        self._backend = backend
        self._locks = locks
        self._mapper = mapper or CamelCaseFieldMapper()
        self._replication_timeout = replication_timeout
        self._backoff = backoff
        self._namespace = LOCK_NAMESPACES[kind]

    async def create(
        self,
        fields: dict[str, Any],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReconcileOutcome:
        obj = self._mapper.expand(self.kind, fields)
        if self.kind == ResourceKind.USER and not obj.get("mailNickname"):
            # Matches the portal: default to the local part of the UPN
            upn = obj.get_str("userPrincipalName")
            if upn:
                obj.additional_properties["mailNickname"] = upn.split("@")[0]

        try:
            created = await self._backend.create(self.kind, obj)
        except DirectoryError as e:
            return ReconcileOutcome.failed(e, f"Creating {self.kind.value} {obj.display_name!r}")

        object_id = created.object_id or ""
        logger.info(
            "Created directory object",
            extra={"kind": self.kind.value, "object_id": object_id},
        )

        try:
            await wait_for_creation_replication(
                lambda: self._backend.get(self.kind, object_id),
                timeout=self._replication_timeout if timeout is None else timeout,
                resource_id=object_id,
                backoff=self._backoff,
                cancel=cancel,
            )
        except DirectoryError as e:
            # The object exists; keep tracking it so the next run can converge
            return ReconcileOutcome.failed(
                e,
                f"Waiting for {self.kind.value} with object ID {object_id!r}",
                handle=object_id,
            )

        return await self.read(object_id)

    async def read(self, handle: str) -> ReconcileOutcome:
        try:
            obj, _ = await self._backend.get(self.kind, handle)
        except NotFoundError:
            logger.info(
                "Directory object not found, removing from state",
                extra={"kind": self.kind.value, "object_id": handle},
            )
            return ReconcileOutcome(handle=None)
        except DirectoryError as e:
            return ReconcileOutcome.failed(
                e, f"Retrieving {self.kind.value} with object ID {handle!r}", handle=handle
            )
        return ReconcileOutcome(handle=handle, fields=self._mapper.flatten(obj))

    async def update(
        self,
        handle: str,
        fields: dict[str, Any],
        changed: set[str] | None = None,
    ) -> ReconcileOutcome:
        """PATCH the changed fields (all fields when ``changed`` is None).

        A changed field set to None is sent as null to clear it.
        """
        if not handle:
            error = HandleError("object ID is required", operation="update")
            return ReconcileOutcome.failed(error, f"Updating {self.kind.value}", "object_id")

        delta_fields = fields if changed is None else {k: fields.get(k) for k in changed}
        delta = self._mapper.expand(self.kind, delta_fields, keep_nulls=changed is not None)
        delta.object_id = handle

        try:
            async with self._locks.lock(handle, self._namespace):
                await self._backend.update(delta)
        except DirectoryError as e:
            return ReconcileOutcome.failed(
                e, f"Updating {self.kind.value} with object ID {handle!r}", handle=handle
            )
        return await self.read(handle)

    async def delete(self, handle: str) -> ReconcileOutcome:
        try:
            async with self._locks.lock(handle, self._namespace):
                await self._backend.delete(self.kind, handle)
        except DirectoryError as e:
            return ReconcileOutcome.failed(
                e, f"Deleting {self.kind.value} with object ID {handle!r}", handle=handle
            )
        return ReconcileOutcome(handle=None)

    async def lookup(self, fields: dict[str, Any]) -> ReconcileOutcome:
        """Resolve exactly one object from the first lookup attribute supplied."""
        attributes = LOOKUP_ATTRIBUTES[self.kind]
        for attribute, wire_field in attributes:
            value = fields.get(attribute)
            if not value:
                continue
            try:
                if wire_field is None:
                    obj, _ = await self._backend.get(self.kind, value)
                else:
                    obj = await self._backend.find_one(self.kind, wire_field, value)
            except DirectoryError as e:
                return ReconcileOutcome.failed(
                    e, f"Finding {self.kind.value} with {attribute} {value!r}", attribute
                )
            return ReconcileOutcome(handle=obj.object_id, fields=self._mapper.flatten(obj))

        names = ", ".join(f"`{a}`" for a, _ in attributes)
        error = ValueError(f"one of {names} must be specified")
        return ReconcileOutcome.failed(error, f"One of {names} must be specified")


class CredentialReconciler:
    """Reconciles password or certificate credentials on a parent object.

    The credential collection has no partial-update primitive, so every
    mutation is a read-modify-write of the whole collection under the
    parent's named lock.
    """

    def __init__(
        self,
        parent_kind: ResourceKind,
        credential_kind: CredentialKind,
        backend: DirectoryBackend,
        locks: NamedLockRegistry,
        replication_timeout: float = DEFAULT_REPLICATION_TIMEOUT_SECONDS,
        backoff: Backoff | None = None,
    ) -> None:
        if parent_kind not in PARENT_ATTRIBUTES:
            raise ValueError(f"{parent_kind.value} objects do not carry credentials")
        self.parent_kind = parent_kind
        self.credential_kind = credential_kind
        self.parent_attribute = PARENT_ATTRIBUTES[parent_kind]
        self._backend = backend
        self._locks = locks
        self._replication_timeout = replication_timeout
        self._backoff = backoff
        self._namespace = LOCK_NAMESPACES[parent_kind]

    @property
    def _label(self) -> str:
        return f"{self.credential_kind.value} credential"

    async def create(
        self,
        fields: dict[str, Any],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReconcileOutcome:
        parent_id = fields.get(self.parent_attribute)
        if not parent_id:
            error = ValueError(f"{self.parent_attribute} is required")
            return ReconcileOutcome.failed(error, str(error), self.parent_attribute)

        try:
            credential = build_credential(self.credential_kind, fields)
        except CredentialError as e:
            return ReconcileOutcome.failed(
                e, f"Generating {self._label} for {self.parent_kind.value} {parent_id!r}", e.attr
            )

        try:
            credential_id = new_credential_id(parent_id, self.credential_kind, credential.key_id or "")
            handle = encode(credential_id)
        except HandleError as e:
            return ReconcileOutcome.failed(e, "Building resource ID", self.parent_attribute)

        async with self._locks.lock(parent_id, self._namespace):
            try:
                await self._splice_in(credential_id, credential)
            except NotFoundError as e:
                if e.operation == "get":
                    return ReconcileOutcome.failed(
                        e,
                        f"{self.parent_kind.value} with object ID {parent_id!r} was not found",
                        self.parent_attribute,
                    )
                return ReconcileOutcome.failed(e, f"Adding {self._label} {handle!r}")
            except AlreadyExistsError as e:
                return ReconcileOutcome.failed(
                    e, f"{self._label} {handle!r} already exists; import it to manage it"
                )
            except DirectoryError as e:
                return ReconcileOutcome.failed(e, f"Adding {self._label} {handle!r}")

            try:
                stored = await wait_for_creation_replication(
                    lambda: self._fetch(credential_id),
                    timeout=self._replication_timeout if timeout is None else timeout,
                    resource_id=handle,
                    backoff=self._backoff,
                    cancel=cancel,
                )
            except DirectoryError as e:
                # The collection was written; keep tracking the credential
                return ReconcileOutcome.failed(
                    e, f"Waiting for {self._label} {handle!r}", handle=handle
                )

        logger.info(
            "Added credential",
            extra={
                "parent_kind": self.parent_kind.value,
                "parent_id": parent_id,
                "credential_kind": self.credential_kind.value,
                "key_id": credential_id.key_id,
            },
        )
        return ReconcileOutcome(handle=handle, fields=self._flatten(credential_id, stored))

    async def read(self, handle: str) -> ReconcileOutcome:
        try:
            credential_id = self._decode(handle)
        except HandleError as e:
            return ReconcileOutcome.failed(e, f"Parsing {self._label} ID {handle!r}", "id")

        try:
            parent, _ = await self._backend.get(self.parent_kind, credential_id.parent_id)
        except NotFoundError:
            logger.info(
                "Parent object not found, removing credential from state",
                extra={"parent_id": credential_id.parent_id, "handle": handle},
            )
            return ReconcileOutcome(handle=None)
        except DirectoryError as e:
            return ReconcileOutcome.failed(
                e,
                f"Retrieving {self.parent_kind.value} with object ID {credential_id.parent_id!r}",
                self.parent_attribute,
                handle=handle,
            )

        credential = parent.find_credential(self.credential_kind, credential_id.key_id)
        if credential is None:
            logger.info(
                "Credential not found, removing from state",
                extra={"parent_id": credential_id.parent_id, "key_id": credential_id.key_id},
            )
            return ReconcileOutcome(handle=None)

        return ReconcileOutcome(handle=handle, fields=self._flatten(credential_id, credential))

    async def delete(self, handle: str) -> ReconcileOutcome:
        try:
            credential_id = self._decode(handle)
        except HandleError as e:
            return ReconcileOutcome.failed(e, f"Parsing {self._label} ID {handle!r}", "id")

        try:
            async with self._locks.lock(credential_id.parent_id, self._namespace):
                await self._splice_out(credential_id)
        except DirectoryError as e:
            return ReconcileOutcome.failed(
                e, f"Removing {self._label} {handle!r}", self.parent_attribute, handle=handle
            )
        return ReconcileOutcome(handle=None)

    async def _splice_in(self, credential_id: CredentialId, credential: Credential) -> None:
        parent, _ = await self._backend.get(self.parent_kind, credential_id.parent_id)
        collection = parent.credentials(self.credential_kind)
        if any(c.key_id == credential_id.key_id for c in collection):
            raise AlreadyExistsError(
                f"{self._label} with key ID {credential_id.key_id!r} already exists",
                operation="create",
                resource_id=encode(credential_id),
            )
        collection.append(credential)
        await self._backend.update_credentials(
            self.parent_kind, credential_id.parent_id, self.credential_kind, collection
        )

    async def _splice_out(self, credential_id: CredentialId) -> None:
        try:
            parent, _ = await self._backend.get(self.parent_kind, credential_id.parent_id)
        except NotFoundError:
            logger.info(
                "Parent object not found, nothing to delete",
                extra={"parent_id": credential_id.parent_id},
            )
            return

        collection = parent.credentials(self.credential_kind)
        remaining = [c for c in collection if c.key_id != credential_id.key_id]
        if len(remaining) == len(collection):
            logger.info(
                "Credential already absent",
                extra={"parent_id": credential_id.parent_id, "key_id": credential_id.key_id},
            )
            return

        await self._backend.update_credentials(
            self.parent_kind, credential_id.parent_id, self.credential_kind, remaining
        )

    async def _fetch(self, credential_id: CredentialId) -> Credential:
        parent, _ = await self._backend.get(self.parent_kind, credential_id.parent_id)
        credential = parent.find_credential(self.credential_kind, credential_id.key_id)
        if credential is None:
            raise NotFoundError(
                f"{self._label} not yet present on parent",
                operation="wait_for_replication",
                resource_id=encode(credential_id),
            )
        return credential

    def _decode(self, handle: str) -> CredentialId:
        credential_id = decode_current(handle)
        if credential_id.kind != self.credential_kind:
            raise HandleError(
                f"handle is for a {credential_id.kind.value} credential, "
                f"expected {self.credential_kind.value}",
                operation="decode",
                resource_id=handle,
            )
        return credential_id

    def _flatten(self, credential_id: CredentialId, credential: Credential) -> dict[str, Any]:
        flat: dict[str, Any] = {
            self.parent_attribute: credential_id.parent_id,
            "key_id": credential_id.key_id,
            "display_name": credential.display_name or "",
            "start_date": credential.start_date or "",
            "end_date": credential.end_date or "",
        }
        if self.credential_kind == CredentialKind.PASSWORD:
            flat["description"] = credential.display_name or ""
        else:
            flat["type"] = credential.type or ""
        return flat
