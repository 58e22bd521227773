"""Upload outcome and session state models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union


class SessionState(str, Enum):
    """Ordered progression of a single upload session."""

    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    SUBMITTING = "submitting"
    AWAITING_INITIATION = "awaiting_initiation"
    AWAITING_COMPLETION = "awaiting_completion"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        """Return whether no further transitions are possible."""
        return self in (SessionState.SUCCEEDED, SessionState.FAILED)


class FailureReason(str, Enum):
    """Why a file did not make it through the pipeline."""

    STABILITY_TIMEOUT = "stability_timeout"
    FILE_DELETED = "file_deleted"
    FILE_ACCESS_ERROR = "file_access_error"
    UNAUTHENTICATED = "unauthenticated"
    SUBMISSION_ERROR = "submission_error"
    INITIATION_TIMEOUT = "initiation_timeout"
    COMPLETION_TIMEOUT = "completion_timeout"
    TRANSPORT_ERROR = "transport_error"
    RELOCATION_FAILED = "relocation_failed"

    @property
    def category(self) -> str:
        """Return the error family: ``detection``, ``session`` or ``bookkeeping``."""
        if self in _DETECTION_REASONS:
            return "detection"
        if self is FailureReason.RELOCATION_FAILED:
            return "bookkeeping"
        return "session"


_DETECTION_REASONS = frozenset(
    {
        FailureReason.STABILITY_TIMEOUT,
        FailureReason.FILE_DELETED,
        FailureReason.FILE_ACCESS_ERROR,
    }
)


@dataclass(frozen=True, slots=True)
class UploadSuccess:
    """The remote service accepted the recording and began processing it.

    Attributes:
        remote_id: Identifier of the recording on the remote service.
        remote_url: Externally addressable link to the recording.
        detail: Diagnostic context such as the transfer id and elapsed time.
    """

    remote_id: str
    remote_url: str
    detail: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class UploadFailure:
    """The file could not be carried through to a terminal success.

    Attributes:
        reason: Failure classification.
        detail: Diagnostic context: last state reached, elapsed time and error text.
        remote_id: Remote identifier when the upload itself succeeded
            (relocation failures only).
        remote_url: Remote link when the upload itself succeeded
            (relocation failures only).
    """

    reason: FailureReason
    detail: Mapping[str, Any] = field(default_factory=dict)
    remote_id: Optional[str] = None
    remote_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        """Return the human-readable error text, falling back to the reason."""
        return str(self.detail.get("error") or self.reason.value)


UploadOutcome = Union[UploadSuccess, UploadFailure]


def outcome_to_payload(outcome: UploadOutcome) -> dict[str, Any]:
    """Return a JSON-ready mapping describing an outcome."""
    if isinstance(outcome, UploadSuccess):
        return {
            "status": "success",
            "remote_id": outcome.remote_id,
            "remote_url": outcome.remote_url,
            "detail": dict(outcome.detail),
        }
    return {
        "status": "failure",
        "reason": outcome.reason.value,
        "category": outcome.reason.category,
        "remote_id": outcome.remote_id,
        "remote_url": outcome.remote_url,
        "detail": dict(outcome.detail),
    }


__all__ = [
    "SessionState",
    "FailureReason",
    "UploadSuccess",
    "UploadFailure",
    "UploadOutcome",
    "outcome_to_payload",
]
