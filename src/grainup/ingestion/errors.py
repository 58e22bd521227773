"""File readiness errors."""

from __future__ import annotations

from grainup.upload.models import FailureReason


class StabilityError(Exception):
    """Base exception for files that never became ready for upload.

    Attributes:
        reason: Failure classification reported in the outcome.
    """

    reason: FailureReason = FailureReason.FILE_ACCESS_ERROR


class StabilityTimeoutError(StabilityError):
    """Raised when the file kept changing for longer than the allowed time."""

    reason = FailureReason.STABILITY_TIMEOUT


class FileDeletedError(StabilityError):
    """Raised when the file disappears while it is being observed."""

    reason = FailureReason.FILE_DELETED


class FileAccessError(StabilityError):
    """Raised when the file cannot be inspected for a non-transient reason."""

    reason = FailureReason.FILE_ACCESS_ERROR


__all__ = ["StabilityError", "StabilityTimeoutError", "FileDeletedError", "FileAccessError"]
