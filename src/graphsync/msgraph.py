"""Generation B: Microsoft Graph.

URIs are ``{root}/{apiVersion}/{entity}``; the tenant is implied by the
token. Objects are keyed by ``id`` and continuation links are absolute.
Many properties arrive outside the typed fields and are kept in the
object's additional-properties map. Credential collections are replaced
by PATCHing the parent object with the full collection.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlsplit

from .backend import (
    CREDENTIAL_COLLECTIONS,
    ENTITY_PATHS,
    UPDATE_ACCEPTANCE,
    DirectoryBackend,
)
from .config import Generation
from .models import Credential, CredentialKind, ResourceKind
from .uri import QueryParams, build_uri

PASSWORD_FIELDS: dict[str, str] = {
    "key_id": "keyId",
    "value": "secretText",
    "start_date": "startDateTime",
    "end_date": "endDateTime",
    "display_name": "displayName",
}

CERTIFICATE_FIELDS: dict[str, str] = {
    "key_id": "keyId",
    "value": "key",
    "start_date": "startDateTime",
    "end_date": "endDateTime",
    "type": "type",
    "usage": "usage",
    "display_name": "displayName",
}


class MsGraphBackend(DirectoryBackend):
    """Directory client for graph.microsoft.com."""

    generation = Generation.MS_GRAPH
    id_field = "id"
    next_link_field = "@odata.nextLink"

    def _uri(self, path: str, params: QueryParams | None = None) -> str:
        return build_uri(self._endpoint, self._api_version, self._tenant_id, False, path, params)

    def _resolve_next_link(self, link: str) -> str:
        parts = urlsplit(link)
        if parts.scheme:
            return link
        query = parse_qsl(parts.query, keep_blank_values=True)
        if parts.path.startswith("/"):
            # Root-relative links already carry the version segment
            return build_uri(self._endpoint, None, None, False, parts.path, query)
        return self._uri(parts.path, query)

    def _credential_fields(self, kind: CredentialKind) -> dict[str, str]:
        return PASSWORD_FIELDS if kind == CredentialKind.PASSWORD else CERTIFICATE_FIELDS

    async def update_credentials(
        self,
        kind: ResourceKind,
        object_id: str,
        credential_kind: CredentialKind,
        credentials: list[Credential],
    ) -> None:
        url = self._uri(f"{ENTITY_PATHS[kind]}/{object_id}")
        await self._request(
            "update_credentials",
            "PATCH",
            url,
            UPDATE_ACCEPTANCE,
            json={
                CREDENTIAL_COLLECTIONS[credential_kind]: [
                    self.credential_to_wire(c) for c in credentials
                ]
            },
            resource_id=object_id,
        )
