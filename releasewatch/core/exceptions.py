"""Custom exception hierarchy for releasewatch."""

from typing import Any


class ReleaseWatchError(Exception):
    """Root exception for all project-specific errors.

    Args:
        message: Human-readable error description.
        details: Optional dict with structured error context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message


class ConfigError(ReleaseWatchError):
    """Configuration loading or validation error."""


class DatabaseError(ReleaseWatchError):
    """Database operation error."""


class StoreUnavailable(DatabaseError):
    """The record or lock store could not be queried or written.

    Never retried inside the dedup core; the ingestion run aborts the
    current candidate and leaves the retry decision to its caller.
    """


class ConstraintViolationError(DatabaseError):
    """A write violated a uniqueness or check constraint."""


class AmbiguousMatchError(ReleaseWatchError):
    """More than one live record satisfies an exact-match tier.

    Indicates the fingerprint uniqueness invariant was already broken
    upstream, so no record is picked silently.
    """


class MergeError(ReleaseWatchError):
    """Invalid merge request (self-merge, unknown record, already merged)."""


class CollectionError(ReleaseWatchError):
    """A candidate source could not be read."""


class IngestionError(ReleaseWatchError):
    """A critical ingestion step failed."""
