"""Ingestion controller: from "file added" to terminal action."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Iterable, Protocol

from grainup.config.models import WatchSettings
from grainup.notify import Notifier
from grainup.relocation import RelocationError, Relocator
from grainup.upload.models import FailureReason, UploadFailure, UploadOutcome, UploadSuccess

from .errors import StabilityError
from .models import FileReport, QueueEntry, WatchedFile
from .processing import ProcessingQueue
from .stability import StabilityDetector

LOGGER = logging.getLogger(__name__)


class SessionRunner(Protocol):
    """Anything that uploads one file and returns an outcome."""

    async def run(self, path: Path) -> UploadOutcome:
        ...


SessionFactory = Callable[[], SessionRunner]
ReportListener = Callable[[FileReport], None]


def _is_hidden(path: Path, root: Path | None) -> bool:
    parts = path.parts
    if root is not None:
        try:
            parts = path.relative_to(root).parts
        except ValueError:
            parts = (path.name,)
    return any(part.startswith(".") for part in parts if part not in (".", ".."))


class IngestionController:
    """Accept new recordings, serialize their uploads and finish each one.

    For every accepted file the controller waits for the file to stop
    growing, runs a fresh upload session, relocates the file on success (or
    leaves it in place on failure) and sends exactly one notification.
    """

    def __init__(
        self,
        settings: WatchSettings,
        *,
        detector: StabilityDetector,
        session_factory: SessionFactory,
        relocator: Relocator,
        notifier: Notifier,
    ) -> None:
        self._settings = settings
        self._folder = settings.resolved_folder()
        processed = settings.resolved_processed_folder()
        if processed is None:
            raise ValueError("A processed folder (or a watch folder) must be configured.")
        self._processed = processed
        self._extensions = frozenset(settings.supported_extensions)
        self._detector = detector
        self._session_factory = session_factory
        self._relocator = relocator
        self._notifier = notifier
        self._tracked: dict[Path, WatchedFile] = {}
        self._listeners: list[ReportListener] = []
        self._queue = ProcessingQueue(self._handle)

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def queue(self) -> ProcessingQueue:
        return self._queue

    @property
    def processed_folder(self) -> Path:
        return self._processed

    @property
    def tracked(self) -> list[Path]:
        """Return paths currently inside the pipeline."""
        return list(self._tracked)

    def add_listener(self, listener: ReportListener) -> None:
        """Register a callable invoked with every finished report."""
        self._listeners.append(listener)

    def is_candidate(self, path: Path) -> bool:
        """Return whether ``path`` should be uploaded."""
        if path.suffix.lower() not in self._extensions:
            return False
        if path == self._processed or self._processed in path.parents:
            return False
        return not _is_hidden(path, self._folder)

    def file_added(self, path: Path) -> bool:
        """Handle a "new file" notification.

        Args:
            path: Newly observed file.

        Returns:
            bool: Whether the file was queued.
        """
        path = path.expanduser().resolve()
        if not self.is_candidate(path):
            LOGGER.debug("Ignoring %s", path)
            return False
        if path in self._tracked:
            LOGGER.debug("%s is already in the pipeline", path.name)
            return False
        LOGGER.info("New file detected: %s", path.name)
        self._tracked[path] = WatchedFile(path=path)
        self._queue.enqueue(path)
        return True

    def scan_existing(self, folder: Path | None = None) -> int:
        """Offer every file already present in the watch folder.

        Returns:
            int: Number of files queued.
        """
        root = folder or self._folder
        if root is None or not root.is_dir():
            return 0
        queued = 0
        for candidate in sorted(self._iter_files(root)):
            if self.file_added(candidate):
                queued += 1
        if queued:
            LOGGER.info("Queued %d existing file(s) from %s", queued, root)
        return queued

    def start(self) -> None:
        self._queue.start()

    async def join(self) -> None:
        await self._queue.join()

    async def shutdown(self, grace_seconds: float = 0.0) -> None:
        await self._queue.shutdown(grace_seconds)
        self._tracked.clear()

    # ------------------------------------------------------------------ #
    # Handling routine                                                   #
    # ------------------------------------------------------------------ #

    async def _handle(self, entry: QueueEntry) -> FileReport:
        path = entry.path
        watched = self._tracked.get(path) or WatchedFile(path=path)
        try:
            outcome = await self._upload(path, watched)
            report = await self._finish(watched, outcome)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected error while handling %s", path.name)
            failure = UploadFailure(
                reason=FailureReason.TRANSPORT_ERROR,
                detail={"last_state": "handling", "error": str(exc) or exc.__class__.__name__},
            )
            report = FileReport(path=path, outcome=failure, detected_at=watched.detected_at)
            await self._notifier.notify_failure(report)
        finally:
            self._tracked.pop(path, None)
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception:
                LOGGER.exception("Report listener failed for %s", path.name)
        return report

    async def _upload(self, path: Path, watched: WatchedFile) -> UploadOutcome:
        LOGGER.info("Waiting for %s to stabilize", path.name)
        try:
            size = await self._detector.await_stable(path, watched=watched)
        except StabilityError as exc:
            LOGGER.warning("%s is not ready: %s", path.name, exc)
            return UploadFailure(
                reason=exc.reason,
                detail={"last_state": "stabilizing", "error": str(exc), "last_size": watched.last_size},
            )

        LOGGER.info("%s is stable (%d bytes); uploading", path.name, size)
        try:
            session = self._session_factory()
            return await session.run(path)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Upload session for %s crashed", path.name)
            return UploadFailure(
                reason=FailureReason.TRANSPORT_ERROR,
                detail={"last_state": "uploading", "error": str(exc) or exc.__class__.__name__},
            )

    async def _finish(self, watched: WatchedFile, outcome: UploadOutcome) -> FileReport:
        path = watched.path
        if isinstance(outcome, UploadSuccess):
            try:
                final_path = await asyncio.to_thread(self._relocator.relocate, path, self._processed)
            except Exception as exc:
                if isinstance(exc, RelocationError):
                    LOGGER.error("Uploaded %s but failed to move it: %s", path.name, exc)
                    kind = exc.kind
                else:
                    LOGGER.exception("Uploaded %s but the move crashed", path.name)
                    kind = "unexpected"
                failure = UploadFailure(
                    reason=FailureReason.RELOCATION_FAILED,
                    detail={
                        **dict(outcome.detail),
                        "last_state": "relocating",
                        "error": str(exc) or exc.__class__.__name__,
                        "relocation_error": kind,
                    },
                    remote_id=outcome.remote_id,
                    remote_url=outcome.remote_url,
                )
                report = FileReport(path=path, outcome=failure, detected_at=watched.detected_at)
                await self._notifier.notify_failure(report)
                return report

            report = FileReport(
                path=path, outcome=outcome, final_path=final_path, detected_at=watched.detected_at
            )
            await self._notifier.notify_success(report)
            return report

        LOGGER.error("Processing failed for %s, file left in place: %s", path.name, outcome.message)
        report = FileReport(path=path, outcome=outcome, detected_at=watched.detected_at)
        await self._notifier.notify_failure(report)
        return report

    def _iter_files(self, root: Path) -> Iterable[Path]:
        for path in root.iterdir():
            if path.is_file():
                yield path


def describe(report: FileReport) -> str:
    """Return a short status line for ``report``."""
    outcome = report.outcome
    if isinstance(outcome, UploadSuccess):
        return f"{report.path.name}: uploaded ({outcome.remote_url})"
    text = f"{report.path.name}: {outcome.reason.value} ({outcome.message})"
    if outcome.remote_url:
        text += f" - recording at {outcome.remote_url}"
    return text


__all__ = ["IngestionController", "SessionFactory", "SessionRunner", "ReportListener", "describe"]
