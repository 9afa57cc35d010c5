"""Tests for typed directory errors."""

from __future__ import annotations

from graphsync.errors import (
    AmbiguousMatchError,
    DirectoryError,
    NotFoundError,
    ReplicationTimeoutError,
    ResponseValidationError,
)


class TestDirectoryError:
    """Tests for error rendering."""

    def test_message_only(self) -> None:
        assert str(DirectoryError("boom")) == "boom"

    def test_context_rendered(self) -> None:
        error = NotFoundError("gone", operation="get", resource_id="abc", status=404)

        assert str(error) == "gone (operation=get, resource='abc', status=404)"
        assert error.message == "gone"

    def test_diagnostic_body_appended(self) -> None:
        error = ResponseValidationError("unexpected status 500", diagnostic_body="{}", status=500)

        assert str(error) == "unexpected status 500 (status=500): {}"

    def test_ambiguous_match_fields(self) -> None:
        error = AmbiguousMatchError("2 found", filter="displayName eq 'x'", count=2)

        assert error.count == 2
        assert error.filter == "displayName eq 'x'"
        assert isinstance(error, DirectoryError)

    def test_replication_timeout_attempts(self) -> None:
        assert ReplicationTimeoutError("late", attempts=6).attempts == 6
