"""Exception hierarchy for KumbhID."""

from __future__ import annotations


class KumbhIdError(Exception):
    """Base exception for identity resolution errors."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class InvalidQueryError(KumbhIdError):
    """Raised when a match or record request is malformed."""


class InvalidDescriptorError(InvalidQueryError):
    """Raised when a descriptor has the wrong length or non-finite values."""


class InvalidStatusError(InvalidQueryError):
    """Raised when a record cannot move to the requested lifecycle status."""


class RecordNotFoundError(KumbhIdError):
    """Raised when a person record id does not exist."""


class InferenceUnavailableError(KumbhIdError):
    """Raised when no inference endpoint produced a usable response."""


class CaptureError(KumbhIdError):
    """Raised when a capture cannot proceed because the frame itself is unusable."""
