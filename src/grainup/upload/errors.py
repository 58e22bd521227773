"""Upload session errors."""

from __future__ import annotations

from .models import FailureReason


class SessionError(Exception):
    """Base exception for a stage of the upload session.

    Attributes:
        reason: Failure classification reported in the outcome.
    """

    reason: FailureReason = FailureReason.TRANSPORT_ERROR


class AuthenticationError(SessionError):
    """Raised when credentials are missing or rejected by the remote service."""

    reason = FailureReason.UNAUTHENTICATED


class SubmissionError(SessionError):
    """Raised when the file transfer cannot be started."""

    reason = FailureReason.SUBMISSION_ERROR


class InitiationTimeoutError(SessionError):
    """Raised when the remote service never acknowledged the transfer."""

    reason = FailureReason.INITIATION_TIMEOUT


class CompletionTimeoutError(SessionError):
    """Raised when the remote service never reported the recording as processing."""

    reason = FailureReason.COMPLETION_TIMEOUT


__all__ = [
    "SessionError",
    "AuthenticationError",
    "SubmissionError",
    "InitiationTimeoutError",
    "CompletionTimeoutError",
]
