"""Generation A: the legacy Azure AD Graph API.

URIs are ``{root}/{tenant}/{entity}?api-version=1.6``. Objects are keyed by
``objectId``. Continuation links are usually tenant-relative and must be
re-rooted and re-versioned before they can be followed. Credential
collections are replaced through their own sub-resource.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from .backend import (
    CREDENTIAL_COLLECTIONS,
    ENTITY_PATHS,
    UPDATE_ACCEPTANCE,
    DirectoryBackend,
)
from .config import Generation
from .models import Credential, CredentialKind, ResourceKind
from .uri import QueryParams, build_uri

API_VERSION_PARAM = "api-version"

PASSWORD_FIELDS: dict[str, str] = {
    "key_id": "keyId",
    "value": "value",
    "start_date": "startDate",
    "end_date": "endDate",
    "display_name": "customKeyIdentifier",
}

CERTIFICATE_FIELDS: dict[str, str] = {
    "key_id": "keyId",
    "value": "value",
    "start_date": "startDate",
    "end_date": "endDate",
    "type": "type",
    "usage": "usage",
    "display_name": "customKeyIdentifier",
}


class AadGraphBackend(DirectoryBackend):
    """Directory client for graph.windows.net."""

    generation = Generation.AAD_GRAPH
    id_field = "objectId"
    next_link_field = "odata.nextLink"

    def _uri(self, path: str, params: QueryParams | None = None) -> str:
        query = list(params.items() if isinstance(params, Mapping) else params or [])
        if not any(key == API_VERSION_PARAM for key, _ in query):
            query.append((API_VERSION_PARAM, self._api_version))
        return build_uri(self._endpoint, None, self._tenant_id, True, path, query)

    def _resolve_next_link(self, link: str) -> str:
        parts = urlsplit(link)
        query = parse_qsl(parts.query, keep_blank_values=True)
        if parts.scheme:
            if not any(key == API_VERSION_PARAM for key, _ in query):
                query.append((API_VERSION_PARAM, self._api_version))
            return urlunsplit(
                (parts.scheme, parts.netloc, parts.path, _encode_query(query), "")
            )
        # Tenant-relative, e.g. "directoryObjects/$/Microsoft.DirectoryServices.User?$skiptoken=..."
        return self._uri(parts.path, query)

    def _credential_fields(self, kind: CredentialKind) -> dict[str, str]:
        return PASSWORD_FIELDS if kind == CredentialKind.PASSWORD else CERTIFICATE_FIELDS

    def _encode_display_name(self, value: str) -> Any:
        # customKeyIdentifier is a binary property, carried as base64
        return base64.b64encode(value.encode("utf-8")).decode("ascii")

    def _decode_display_name(self, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        try:
            return base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return value

    async def update_credentials(
        self,
        kind: ResourceKind,
        object_id: str,
        credential_kind: CredentialKind,
        credentials: list[Credential],
    ) -> None:
        collection = CREDENTIAL_COLLECTIONS[credential_kind]
        url = self._uri(f"{ENTITY_PATHS[kind]}/{object_id}/{collection}")
        await self._request(
            "update_credentials",
            "PATCH",
            url,
            UPDATE_ACCEPTANCE,
            json={"value": [self.credential_to_wire(c) for c in credentials]},
            resource_id=object_id,
        )


def _encode_query(query: list[tuple[str, str]]) -> str:
    return urlencode(query, quote_via=quote, safe="$")
