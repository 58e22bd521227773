"""File readiness detection and single-flight processing for new recordings."""

from .errors import FileAccessError, FileDeletedError, StabilityError, StabilityTimeoutError
from .models import FileReport, QueueEntry, StabilityState, WatchedFile
from .processing import ProcessingQueue
from .stability import StabilityDetector, StabilityPolicy

__all__ = [
    "FileAccessError",
    "FileDeletedError",
    "StabilityError",
    "StabilityTimeoutError",
    "FileReport",
    "QueueEntry",
    "StabilityState",
    "WatchedFile",
    "ProcessingQueue",
    "StabilityDetector",
    "StabilityPolicy",
]
