"""Building credentials from flat resource fields."""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from .models import Credential, CredentialKind

# Encrypted secret cannot be empty and can be at most 1024 bytes
MIN_PASSWORD_LENGTH = 1
MAX_PASSWORD_LENGTH = 863

DEFAULT_CERTIFICATE_TYPE = "AsymmetricX509Cert"
DEFAULT_CERTIFICATE_USAGE = "Verify"

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class CredentialError(ValueError):
    """A credential field is invalid. ``attr`` names the offending field."""

    def __init__(self, message: str, attr: str) -> None:
        super().__init__(message)
        self.attr = attr


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration such as ``8760h`` or ``1h30m``.

    Raises:
        ValueError: If the string is not a positive duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("duration must not be empty")

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return timedelta(seconds=seconds)


def parse_rfc3339(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_credential(
    kind: CredentialKind,
    fields: dict[str, Any],
    now: datetime | None = None,
) -> Credential:
    """Turn flat credential fields into a Credential ready to append.

    ``key_id`` defaults to a new UUID, ``start_date`` to now. Exactly one of
    ``end_date`` and ``end_date_relative`` must be given. ``display_name``
    and its deprecated alias ``description`` are mutually exclusive.

    Raises:
        CredentialError: On any invalid or conflicting field.
    """
    value = fields.get("value")
    if not isinstance(value, str) or not value:
        raise CredentialError("value is required", "value")
    if kind == CredentialKind.PASSWORD and not (
        MIN_PASSWORD_LENGTH <= len(value) <= MAX_PASSWORD_LENGTH
    ):
        raise CredentialError(
            f"value must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters",
            "value",
        )

    display_name = fields.get("display_name")
    description = fields.get("description")
    if display_name and description:
        raise CredentialError("display_name conflicts with description", "display_name")
    display_name = display_name or description or None

    start_raw = fields.get("start_date")
    try:
        start = parse_rfc3339(start_raw) if start_raw else (now or datetime.now(UTC))
    except ValueError as e:
        raise CredentialError(f"start_date is not an RFC3339 time: {start_raw!r}", "start_date") from e

    end_raw = fields.get("end_date")
    relative = fields.get("end_date_relative")
    if end_raw and relative:
        raise CredentialError("end_date conflicts with end_date_relative", "end_date")
    if end_raw:
        try:
            end = parse_rfc3339(end_raw)
        except ValueError as e:
            raise CredentialError(f"end_date is not an RFC3339 time: {end_raw!r}", "end_date") from e
    elif relative:
        try:
            end = start + parse_duration(relative)
        except ValueError as e:
            raise CredentialError(str(e), "end_date_relative") from e
    else:
        raise CredentialError(
            "one of end_date or end_date_relative must be specified", "end_date"
        )

    if end <= start:
        raise CredentialError("end_date must be after start_date", "end_date")

    credential = Credential(
        kind=kind,
        key_id=fields.get("key_id") or str(uuid.uuid4()),
        display_name=display_name,
        value=value,
        start_date=format_rfc3339(start),
        end_date=format_rfc3339(end),
    )
    if kind == CredentialKind.CERTIFICATE:
        credential.type = fields.get("type") or DEFAULT_CERTIFICATE_TYPE
        credential.usage = DEFAULT_CERTIFICATE_USAGE
    return credential
