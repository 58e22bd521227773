"""Remote upload session, transport boundary and response classification."""

from .errors import (
    AuthenticationError,
    CompletionTimeoutError,
    InitiationTimeoutError,
    SessionError,
    SubmissionError,
)
from .models import (
    FailureReason,
    SessionState,
    UploadFailure,
    UploadOutcome,
    UploadSuccess,
    outcome_to_payload,
)
from .session import SessionPolicy, UploadSession
from .signals import (
    Completion,
    GrainResponseClassifier,
    Initiation,
    ResponseClassifier,
    Signal,
    Unmatched,
)
from .transport import ObservedResponse, TransportFactory, UploadTransport

__all__ = [
    "AuthenticationError",
    "CompletionTimeoutError",
    "InitiationTimeoutError",
    "SessionError",
    "SubmissionError",
    "FailureReason",
    "SessionState",
    "UploadFailure",
    "UploadOutcome",
    "UploadSuccess",
    "outcome_to_payload",
    "SessionPolicy",
    "UploadSession",
    "Completion",
    "GrainResponseClassifier",
    "Initiation",
    "ResponseClassifier",
    "Signal",
    "Unmatched",
    "ObservedResponse",
    "TransportFactory",
    "UploadTransport",
]
