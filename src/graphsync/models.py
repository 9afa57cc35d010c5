"""Pydantic models for directory objects and their credentials.

These are canonical, generation-neutral shapes. Each backend translates
its own wire format to and from them; fields a model does not know are
kept in ``additional_properties`` rather than dropped.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ResourceKind(str, Enum):
    """Directory object types the reconcilers manage."""

    APPLICATION = "application"
    SERVICE_PRINCIPAL = "service_principal"
    USER = "user"


class CredentialKind(str, Enum):
    """Credential collections attached to applications and service principals.

    Password and certificate credentials share a parent's key-ID namespace,
    so the kind is part of every credential handle.
    """

    PASSWORD = "password"
    CERTIFICATE = "certificate"


class Credential(BaseModel):
    """A password or certificate credential in a parent's collection."""

    model_config = {"extra": "ignore"}

    kind: CredentialKind
    key_id: str | None = None
    display_name: str | None = None
    value: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    # Certificate only
    type: str | None = None
    usage: str | None = None

    # Wire fields with no canonical counterpart, round-tripped untouched
    additional_properties: dict[str, Any] = Field(default_factory=dict)


class DirectoryObject(BaseModel):
    """An application, service principal or user.

    Known fields are typed. Everything else lives in the open
    ``additional_properties`` map; accessors fail closed, returning a
    default for missing keys.
    """

    model_config = {"extra": "ignore"}

    kind: ResourceKind
    object_id: str | None = None
    display_name: str | None = None
    password_credentials: list[Credential] | None = None
    key_credentials: list[Credential] | None = None
    additional_properties: dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a wire property, falling back to ``default``."""
        if key == "displayName":
            return self.display_name if self.display_name is not None else default
        return self.additional_properties.get(key, default)

    def get_str(self, key: str) -> str:
        value = self.additional_properties.get(key)
        return value if isinstance(value, str) else ""

    @property
    def app_id(self) -> str:
        return self.get_str("appId")

    @property
    def user_principal_name(self) -> str:
        return self.get_str("userPrincipalName")

    def credentials(self, kind: CredentialKind) -> list[Credential]:
        """Return a copy of the credential collection of the given kind."""
        collection = (
            self.password_credentials if kind == CredentialKind.PASSWORD else self.key_credentials
        )
        return list(collection or [])

    def find_credential(self, kind: CredentialKind, key_id: str) -> Credential | None:
        for credential in self.credentials(kind):
            if credential.key_id == key_id:
                return credential
        return None
