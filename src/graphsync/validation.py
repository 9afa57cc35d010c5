"""Response acceptance policies.

Each API call declares which responses count as success: an explicit set
of status codes, optionally widened by a predicate over the full response
for cases where success depends on the body shape rather than the status.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)

ResponsePredicate = Callable[[httpx.Response], bool]

# OData error code returned by both directory APIs for missing objects
RESOURCE_NOT_FOUND_CODE = "Request_ResourceNotFound"


@dataclass(frozen=True)
class Acceptance:
    """Statuses (and optional predicate) that make a response usable."""

    codes: frozenset[int] = field(default_factory=frozenset)
    predicate: ResponsePredicate | None = None

    @classmethod
    def of(cls, *codes: int, predicate: ResponsePredicate | None = None) -> Acceptance:
        return cls(codes=frozenset(codes), predicate=predicate)

    def with_codes(self, codes: Iterable[int]) -> Acceptance:
        return Acceptance(codes=self.codes | frozenset(codes), predicate=self.predicate)


def odata_error_code(body_text: str) -> str | None:
    """Extract the OData error code from an error response body.

    Handles both ``{"error": {"code": ...}}`` (Microsoft Graph) and
    ``{"odata.error": {"code": ...}}`` (AAD Graph). Fails closed to None.
    """
    try:
        body = json.loads(body_text)
    except json.JSONDecodeError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error") or body.get("odata.error")
    if isinstance(error, dict):
        code = error.get("code")
        return code if isinstance(code, str) else None
    return None


def is_not_found(response: httpx.Response) -> bool:
    """Predicate matching "object does not exist" responses.

    AAD Graph reports some missing objects as 400 with a not-found error
    code, so the status alone is not enough.
    """
    if response.status_code == httpx.codes.NOT_FOUND:
        return True
    return (
        response.status_code == httpx.codes.BAD_REQUEST
        and odata_error_code(response.text) == RESOURCE_NOT_FOUND_CODE
    )


async def validate_response(response: httpx.Response, acceptance: Acceptance) -> tuple[bool, str]:
    """Classify a response against its acceptance policy.

    On rejection the body is drained and the connection released; the
    body text is returned for diagnostics only and the response must not
    be parsed as the target type. On acceptance the caller owns body
    consumption.

    Returns:
        ``(ok, diagnostic_body)``; ``diagnostic_body`` is empty when ok.
    """
    if response.status_code in acceptance.codes:
        return True, ""

    if acceptance.predicate is not None:
        # Predicates may inspect the body; buffer it so the caller can still read it
        await response.aread()
        if acceptance.predicate(response):
            return True, ""

    try:
        body = await response.aread()
    finally:
        await response.aclose()

    diagnostic = body.decode("utf-8", errors="replace")
    logger.debug(
        "Response rejected",
        extra={
            "status": response.status_code,
            "accepted": sorted(acceptance.codes),
        },
    )
    return False, diagnostic
