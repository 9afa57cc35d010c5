"""Typed failures raised by the directory client and reconcilers.

Every error names the operation that was attempted and, where known, the
resource identifier and HTTP status, so the caller can render a precise
diagnostic without re-deriving context.

Only the post-create consistency wait retries; everything else raised
here propagates immediately.
"""

from __future__ import annotations

from typing import Any


class DirectoryError(Exception):
    """Base class for all directory reconciliation failures."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        resource_id: str | None = None,
        status: int | None = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.resource_id = resource_id
        self.status = status
        super().__init__(self._render())

    def _render(self) -> str:
        context: list[str] = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.resource_id:
            context.append(f"resource={self.resource_id!r}")
        if self.status is not None:
            context.append(f"status={self.status}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class MalformedRootError(DirectoryError):
    """Raised when the API root is not a parseable absolute URI."""


class TransportError(DirectoryError):
    """Network-level failure: DNS, connect, TLS or timeout.

    Always fatal to the current operation and never retried here.
    """


class AuthorizationError(DirectoryError):
    """Raised when the credential provider cannot produce a bearer token."""


class ResponseValidationError(DirectoryError):
    """The response status was not accepted for the operation.

    Attributes:
        diagnostic_body: The drained response body, for error reporting only.
    """

    def __init__(self, message: str, *, diagnostic_body: str = "", **kwargs: Any) -> None:
        self.diagnostic_body = diagnostic_body
        super().__init__(message, **kwargs)

    def _render(self) -> str:
        rendered = super()._render()
        if self.diagnostic_body:
            return f"{rendered}: {self.diagnostic_body}"
        return rendered


class NotFoundError(DirectoryError):
    """The object does not exist (or is not yet visible)."""


class AmbiguousMatchError(DirectoryError):
    """A lookup expected exactly one match but found several."""

    def __init__(self, message: str, *, filter: str, count: int, **kwargs: Any) -> None:
        self.filter = filter
        self.count = count
        super().__init__(message, **kwargs)


class AlreadyExistsError(DirectoryError):
    """Create would duplicate an object that already exists.

    Surfaced to the caller as an idempotency conflict; the existing object
    should be imported rather than re-created.
    """


class ReplicationTimeoutError(DirectoryError):
    """The object did not become visible before the consistency deadline."""

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any) -> None:
        self.attempts = attempts
        super().__init__(message, **kwargs)


class PaginationError(DirectoryError):
    """A continuation link could not be followed. No partial result is returned."""


class OperationCancelledError(DirectoryError):
    """The caller signalled cancellation while an operation was waiting."""


class HandleError(DirectoryError):
    """A resource handle could not be decoded."""
