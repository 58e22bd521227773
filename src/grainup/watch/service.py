"""Filesystem watch service feeding new recordings into the controller."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

LOGGER = logging.getLogger(__name__)

FileAddedCallback = Callable[[Path], object]


class WatchService:
    """Report files in a folder once filesystem activity on them settles.

    The watchdog observer runs in its own thread; every event is handed to
    the event loop with ``call_soon_threadsafe``. Each path gets a debounce
    timer that is restarted by further events, and ``on_file_added`` runs on
    the loop thread once the timer fires and the path is still a file.
    """

    def __init__(
        self,
        folder: Path,
        on_file_added: FileAddedCallback,
        *,
        ignored: Optional[Path] = None,
        settle_seconds: float = 2.0,
        recursive: bool = False,
    ) -> None:
        """Initialize the watch service.

        Args:
            folder: Directory to monitor.
            on_file_added: Callable invoked with each settled file path.
            ignored: Directory whose contents are never reported (the processed folder).
            settle_seconds: Quiet period required after the last event for a path.
            recursive: Whether to monitor subdirectories.
        """
        self._folder = folder.expanduser().resolve()
        self._on_file_added = on_file_added
        self._ignored = ignored.expanduser().resolve() if ignored else None
        self._settle_seconds = max(0.0, settle_seconds)
        self._recursive = recursive
        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timers: dict[Path, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def folder(self) -> Path:
        return self._folder

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start observing the folder.

        Args:
            loop: Event loop that receives events. Defaults to the running loop.

        Raises:
            RuntimeError: If the service is already running.
        """
        if self._observer is not None:
            raise RuntimeError("WatchService is already running.")
        self._loop = loop or asyncio.get_running_loop()
        handler = _WatchEventHandler(self._folder, self.dispatch, self._ignored)
        observer = Observer()
        observer.schedule(handler, str(self._folder), recursive=self._recursive)
        observer.start()
        self._observer = observer
        LOGGER.info("Watching %s", self._folder)

    def stop(self) -> None:
        """Stop the observer and drop pending debounce timers."""
        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def dispatch(self, path: Path) -> None:
        """Forward an event for ``path`` to the event loop; safe from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._touch, path)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _touch(self, path: Path) -> None:
        existing = self._timers.pop(path, None)
        if existing is not None:
            existing.cancel()
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        self._timers[path] = loop.call_later(self._settle_seconds, self._deliver, path)

    def _deliver(self, path: Path) -> None:
        self._timers.pop(path, None)
        if not path.is_file():
            return
        try:
            self._on_file_added(path)
        except Exception:
            LOGGER.exception("Failed to hand %s to the pipeline", path)


class _WatchEventHandler(FileSystemEventHandler):
    """Forward relevant filesystem events to the service."""

    def __init__(
        self,
        root: Path,
        dispatch: Callable[[Path], None],
        ignored: Optional[Path],
    ) -> None:
        self._root = root
        self._dispatch = dispatch
        self._ignored = ignored

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        self._forward(event.src_path, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        self._forward(event.src_path, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle a file moved or renamed into the folder."""
        self._forward(getattr(event, "dest_path", "") or event.src_path, event)

    def _forward(self, raw_path: str | bytes, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode()
        path = Path(raw_path)
        if not self._relevant(path):
            return
        self._dispatch(path)

    def _relevant(self, path: Path) -> bool:
        if self._ignored is not None and (path == self._ignored or self._ignored in path.parents):
            return False
        try:
            relative = path.relative_to(self._root)
        except ValueError:
            return False
        return not any(part.startswith(".") for part in relative.parts)


__all__ = ["WatchService", "FileAddedCallback"]
