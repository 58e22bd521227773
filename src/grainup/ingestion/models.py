"""Data models describing files as they move through the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from grainup.upload.models import UploadOutcome, outcome_to_payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StabilityState(str, Enum):
    """Write-completion status of a watched file."""

    PENDING = "pending"
    STABLE = "stable"
    FAILED = "failed"


@dataclass(slots=True)
class WatchedFile:
    """A recording accepted by the controller and not yet out of the pipeline.

    Attributes:
        path: Absolute path; the file's identity.
        detected_at: When the watcher reported the file.
        last_size: Most recent size reading, in bytes.
        stability: Write-completion status.
    """

    path: Path
    detected_at: datetime = field(default_factory=_utcnow)
    last_size: Optional[int] = None
    stability: StabilityState = StabilityState.PENDING


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """A path waiting for its turn in the processing queue."""

    path: Path
    enqueued_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class FileReport:
    """Final record of one file's trip through the pipeline.

    Attributes:
        path: Original location of the file.
        outcome: Upload outcome after the terminal action.
        final_path: Relocated path on success.
        detected_at: When the watcher reported the file.
        finished_at: When the terminal action completed.
    """

    path: Path
    outcome: UploadOutcome
    final_path: Optional[Path] = None
    detected_at: Optional[datetime] = None
    finished_at: datetime = field(default_factory=_utcnow)

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-ready mapping describing the report."""
        return {
            "file": self.path.as_posix(),
            "name": self.path.name,
            "final_path": self.final_path.as_posix() if self.final_path else None,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "finished_at": self.finished_at.isoformat(),
            "outcome": outcome_to_payload(self.outcome),
        }


__all__ = ["StabilityState", "WatchedFile", "QueueEntry", "FileReport"]
