"""Authenticated HTTP transport.

Attaches JSON headers and a bearer token to each request and dispatches it.
Status codes are not interpreted here; see validation.py. Responses are
returned unread (streamed) so the validator decides whether the body is
drained for diagnostics or handed to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import TransportError
from .security import Authorizer

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class AuthenticatedTransport:
    """Wraps an httpx.AsyncClient with a pluggable credential provider.

    Holds no mutable cross-call state; token caching is the authorizer's job.
    A 401 is returned to the caller like any other status, not retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        authorizer: Authorizer | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._client = client
        self._authorizer = authorizer
        self._user_agent = user_agent

    async def send(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        operation: str | None = None,
    ) -> httpx.Response:
        """Send one request and return the unread response.

        Raises:
            AuthorizationError: If the authorizer cannot produce a token.
            TransportError: On any network-level failure.
        """
        headers = {"Accept": "application/json", "Content-Type": JSON_CONTENT_TYPE}
        if self._user_agent:
            headers["User-Agent"] = self._user_agent

        if self._authorizer is not None:
            token = await self._authorizer.token()
            headers["Authorization"] = f"Bearer {token}"

        request = self._client.build_request(method, url, headers=headers, json=json)

        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            logger.warning(
                "Directory request failed",
                extra={"method": method, "url": url, "error_type": type(e).__name__},
            )
            raise TransportError(
                f"{method} {url} failed: {e}",
                operation=operation,
            ) from e

        logger.debug(
            "Directory request complete",
            extra={"method": method, "url": url, "status": response.status_code},
        )
        return response
