"""Strict FIFO, single-flight processing queue."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .models import QueueEntry

LOGGER = logging.getLogger(__name__)

QueueHandler = Callable[[QueueEntry], Awaitable[object]]


class ProcessingQueue:
    """Feed queued paths one at a time to a handler coroutine.

    ``enqueue`` never blocks; a single worker task drains the queue in
    arrival order and never runs two handlers at once. A handler failure is
    logged and the worker moves on to the next entry.

    All methods must be called from the event loop thread.
    """

    def __init__(self, handler: QueueHandler, *, name: str = "grainup-queue") -> None:
        self._handler = handler
        self._name = name
        self._pending: deque[QueueEntry] = deque()
        self._processing = False
        self._current: Optional[QueueEntry] = None
        self._closed = False
        self._worker: Optional[asyncio.Task[None]] = None
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def processing(self) -> bool:
        """Return whether a handler is currently running."""
        return self._processing

    @property
    def current(self) -> Optional[QueueEntry]:
        """Return the entry being handled, if any."""
        return self._current

    @property
    def depth(self) -> int:
        """Return the number of entries waiting (excluding the one in flight)."""
        return len(self._pending)

    @property
    def pending(self) -> list[Path]:
        """Return a snapshot of queued paths in processing order."""
        return [entry.path for entry in self._pending]

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, path: Path) -> QueueEntry:
        """Append ``path`` to the tail of the queue.

        Raises:
            RuntimeError: If the queue has been shut down.
        """
        if self._closed:
            raise RuntimeError("ProcessingQueue has been shut down.")
        entry = QueueEntry(path=path)
        self._pending.append(entry)
        self._idle.clear()
        self._wakeup.set()
        LOGGER.info("Queued %s (queue length: %d)", path.name, len(self._pending))
        return entry

    def start(self) -> None:
        """Start the worker task on the running event loop."""
        if self.running:
            raise RuntimeError("ProcessingQueue is already running.")
        self._closed = False
        self._worker = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    async def join(self) -> None:
        """Wait until every queued entry has been handled."""
        await self._idle.wait()

    async def shutdown(self, grace_seconds: float = 0.0) -> None:
        """Stop the worker, abandoning queued entries.

        The in-flight entry gets ``grace_seconds`` to finish before it is
        cancelled.
        """
        self._closed = True
        self._wakeup.set()
        dropped = len(self._pending)
        self._pending.clear()
        if dropped:
            LOGGER.info("Dropped %d queued file(s) during shutdown", dropped)

        worker = self._worker
        self._worker = None
        if worker is None or worker.done():
            self._idle.set()
            return
        done, _ = await asyncio.wait({worker}, timeout=max(0.0, grace_seconds))
        if not done:
            if self._current is not None:
                LOGGER.warning("Abandoning in-flight file %s", self._current.path.name)
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._idle.set()

    # ------------------------------------------------------------------ #
    # Worker loop                                                        #
    # ------------------------------------------------------------------ #

    async def _run(self) -> None:
        while True:
            while not self._pending:
                if self._closed:
                    return
                self._idle.set()
                self._wakeup.clear()
                await self._wakeup.wait()
            if self._closed:
                return

            entry = self._pending.popleft()
            self._current = entry
            self._processing = True
            try:
                await self._handler(entry)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Unhandled error while processing %s", entry.path)
            finally:
                self._processing = False
                self._current = None

            if self._pending:
                LOGGER.info("Processing next file in queue (%d remaining)", len(self._pending))


__all__ = ["ProcessingQueue", "QueueHandler"]
