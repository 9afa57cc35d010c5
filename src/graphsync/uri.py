"""Request URI composition for the directory APIs."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from .errors import MalformedRootError

QueryParams = Mapping[str, str] | Sequence[tuple[str, str]]

_REPEATED_SLASHES = re.compile(r"/{2,}")


def build_uri(
    root: str,
    api_version: str | None,
    tenant_id: str | None,
    include_tenant: bool,
    path: str,
    params: QueryParams | None = None,
) -> str:
    """Compose ``root/api_version[/tenant_id]/path[?query]``.

    Any path prefix already present on ``root`` is kept. Segments are joined
    with single slashes and are not re-encoded, so callers may pass segments
    that are already percent-encoded.

    Args:
        root: Absolute API root, e.g. ``https://graph.microsoft.com``.
        api_version: Version segment. Omitted when empty (AAD Graph carries
            its version in the query string instead).
        tenant_id: Tenant segment, used only when ``include_tenant`` is set.
        include_tenant: Whether to insert the tenant segment.
        path: Resource path relative to the version/tenant prefix.
        params: Query parameters, in the order they should be encoded.

    Returns:
        The absolute request URI.

    Raises:
        MalformedRootError: If ``root`` is not an absolute http(s) URI.
    """
    try:
        parts = urlsplit(root)
    except ValueError as e:
        raise MalformedRootError(f"API root is not a valid URI: {root!r}") from e

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise MalformedRootError(f"API root must be an absolute http(s) URI: {root!r}")

    segments = [parts.path, api_version or ""]
    if include_tenant:
        if not tenant_id:
            raise MalformedRootError("tenant segment requested but no tenant ID configured")
        segments.append(tenant_id)
    segments.append(path)

    joined = "/" + "/".join(s.strip("/") for s in segments if s and s.strip("/"))
    joined = _REPEATED_SLASHES.sub("/", joined)

    query = urlencode(params, quote_via=quote, safe="$") if params else ""
    return urlunsplit((parts.scheme, parts.netloc, joined, query, ""))
