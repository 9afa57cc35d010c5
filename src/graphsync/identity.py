"""Resource handles for credential sub-resources.

A handle is the opaque string the state store persists for a credential.
Two shapes exist:

    legacy   {parent_id}/{key_id}              kind implied by resource type
    current  {parent_id}/{kind}/{key_id}       kind explicit

Password and certificate credentials share the parent's key-ID namespace,
so the current shape carries the kind. The shapes are told apart by their
segment count alone; legacy handles carry no version tag.

Upgrading persisted handles is the state store's decision. This module
only knows how to recognise and convert the legacy shape; upgrade_state()
is the versioned hook the store calls before handing state to the core.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import HandleError
from .models import CredentialKind

logger = logging.getLogger(__name__)

SEPARATOR = "/"

# Schema version recorded by credential resources using the current shape
CREDENTIAL_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class CredentialId:
    """The triple a credential handle encodes."""

    parent_id: str
    kind: CredentialKind
    key_id: str

    def __str__(self) -> str:
        return encode(self)


@dataclass(frozen=True)
class LegacyCredentialId:
    """What a legacy handle carries: no kind."""

    parent_id: str
    key_id: str


def _check_segment(name: str, value: str, handle: str | None = None) -> None:
    operation = "decode" if handle else "encode"
    if not value:
        raise HandleError(f"{name} must not be empty", operation=operation, resource_id=handle)
    if SEPARATOR in value:
        raise HandleError(
            f"{name} must not contain {SEPARATOR!r}: {value!r}",
            operation=operation,
            resource_id=handle,
        )


def encode(credential_id: CredentialId) -> str:
    """Encode a triple into a current-shape handle.

    Raises:
        HandleError: If a component is empty or contains the separator.
    """
    _check_segment("parent ID", credential_id.parent_id)
    _check_segment("key ID", credential_id.key_id)
    kind = CredentialKind(credential_id.kind)
    return SEPARATOR.join((credential_id.parent_id, kind.value, credential_id.key_id))


def new_credential_id(parent_id: str, kind: CredentialKind | str, key_id: str) -> CredentialId:
    return CredentialId(parent_id=parent_id, kind=CredentialKind(kind), key_id=key_id)


def is_legacy(handle: str) -> bool:
    """Shape probe: two non-empty segments."""
    segments = handle.split(SEPARATOR)
    return len(segments) == 2 and all(segments)


def is_current(handle: str) -> bool:
    """Shape probe: three non-empty segments with a known kind."""
    segments = handle.split(SEPARATOR)
    if len(segments) != 3 or not all(segments):
        return False
    return segments[1] in {k.value for k in CredentialKind}


def decode_current(handle: str) -> CredentialId:
    """Decode a current-shape handle.

    Raises:
        HandleError: If the handle is not in the current shape.
    """
    segments = handle.split(SEPARATOR)
    if len(segments) != 3:
        hint = " (legacy handle; migrate it first)" if is_legacy(handle) else ""
        raise HandleError(
            f"expected {{parent_id}}/{{kind}}/{{key_id}}, got {len(segments)} segment(s){hint}",
            operation="decode",
            resource_id=handle,
        )
    parent_id, kind, key_id = segments
    _check_segment("parent ID", parent_id, handle)
    _check_segment("key ID", key_id, handle)
    try:
        credential_kind = CredentialKind(kind)
    except ValueError as e:
        valid = [k.value for k in CredentialKind]
        raise HandleError(
            f"credential kind must be one of {valid}: {kind!r}",
            operation="decode",
            resource_id=handle,
        ) from e
    return CredentialId(parent_id=parent_id, kind=credential_kind, key_id=key_id)


def decode_legacy(handle: str) -> LegacyCredentialId:
    """Decode a legacy ``{parent_id}/{key_id}`` handle.

    Raises:
        HandleError: If the handle is not in the legacy shape.
    """
    if not is_legacy(handle):
        raise HandleError(
            "expected {parent_id}/{key_id}",
            operation="decode",
            resource_id=handle,
        )
    parent_id, key_id = handle.split(SEPARATOR)
    return LegacyCredentialId(parent_id=parent_id, key_id=key_id)


def migrate(handle: str, kind: CredentialKind | str) -> str:
    """Upgrade a legacy handle to the current shape.

    ``kind`` comes from the resource type that owns the handle (a password
    resource migrates with ``password``). Current-shape handles are
    returned unchanged, so applying this twice is harmless.

    Raises:
        HandleError: If the handle is in neither shape.
    """
    if is_current(handle):
        return handle
    legacy = decode_legacy(handle)
    return encode(new_credential_id(legacy.parent_id, kind, legacy.key_id))


def validate_handle(handle: str) -> None:
    """Reject malformed handles before an import does any network work."""
    decode_current(handle)


def _upgrade_v0(raw_state: dict[str, Any], kind: CredentialKind) -> dict[str, Any]:
    logger.debug("Migrating credential handle from v0 to v1 format")
    upgraded = dict(raw_state)
    upgraded["id"] = migrate(str(raw_state.get("id", "")), kind)
    return upgraded


StateUpgrader = Callable[[dict[str, Any], CredentialKind], dict[str, Any]]

# from-version -> upgrader producing from-version + 1
STATE_UPGRADERS: dict[int, StateUpgrader] = {
    0: _upgrade_v0,
}


def upgrade_state(
    raw_state: dict[str, Any], from_version: int, kind: CredentialKind | str
) -> dict[str, Any]:
    """Bring persisted credential state up to CREDENTIAL_SCHEMA_VERSION.

    Raises:
        HandleError: If the stored handle cannot be migrated.
        ValueError: If ``from_version`` is negative or newer than this code understands.
    """
    if from_version < 0:
        raise ValueError(f"state schema version {from_version} is negative")
    if from_version > CREDENTIAL_SCHEMA_VERSION:
        raise ValueError(
            f"state schema version {from_version} is newer than {CREDENTIAL_SCHEMA_VERSION}"
        )
    credential_kind = CredentialKind(kind)
    state = raw_state
    for version in range(from_version, CREDENTIAL_SCHEMA_VERSION):
        state = STATE_UPGRADERS[version](state, credential_kind)
    return state
