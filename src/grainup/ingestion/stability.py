"""Detect when a recording has finished being written."""

from __future__ import annotations

import asyncio
import errno
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from grainup.config.models import StabilitySettings

from .errors import FileAccessError, FileDeletedError, StabilityTimeoutError
from .models import StabilityState, WatchedFile

LOGGER = logging.getLogger(__name__)

_TRANSIENT_ERRNOS = frozenset({errno.EACCES, errno.EBUSY, errno.ETXTBSY, errno.EAGAIN})


@dataclass(frozen=True, slots=True)
class StabilityPolicy:
    """Polling policy, in milliseconds."""

    poll_interval_ms: int = 500
    required_stable_readings: int = 2
    timeout_ms: int = 30_000

    @classmethod
    def from_settings(cls, settings: StabilitySettings) -> "StabilityPolicy":
        return cls(
            poll_interval_ms=settings.poll_interval_ms,
            required_stable_readings=settings.required_stable_readings,
            timeout_ms=settings.timeout_ms,
        )


class StabilityDetector:
    """Poll file sizes until a run of identical readings is observed.

    A single unchanged reading is not proof that the writer is done, so the
    detector requires ``required_stable_readings`` consecutive equal sizes.
    Transient access errors (locked or busy files) restart the count.
    """

    def __init__(self, policy: StabilityPolicy | None = None) -> None:
        self._policy = policy or StabilityPolicy()

    @property
    def policy(self) -> StabilityPolicy:
        return self._policy

    async def await_stable(
        self,
        path: Path,
        policy: StabilityPolicy | None = None,
        *,
        watched: Optional[WatchedFile] = None,
    ) -> int:
        """Wait until ``path`` stops growing.

        Args:
            path: File to observe.
            policy: Optional override of the detector's policy.
            watched: Tracking record updated with each reading.

        Returns:
            int: Final size of the file in bytes.

        Raises:
            StabilityTimeoutError: If the file is still changing at the deadline.
            FileDeletedError: If the file disappears.
            FileAccessError: If the file cannot be inspected.
        """
        active = policy or self._policy
        interval = active.poll_interval_ms / 1000
        loop = asyncio.get_running_loop()
        deadline = loop.time() + active.timeout_ms / 1000

        previous: Optional[int] = None
        stable_count = 0
        try:
            while True:
                await asyncio.sleep(interval)
                if loop.time() > deadline:
                    raise StabilityTimeoutError(
                        f"{path.name} did not stabilize within {active.timeout_ms}ms"
                    )

                try:
                    size = os.stat(path).st_size
                except FileNotFoundError:
                    raise FileDeletedError(f"{path.name} was deleted while waiting for it to stabilize") from None
                except OSError as exc:
                    if isinstance(exc, PermissionError) or exc.errno in _TRANSIENT_ERRNOS:
                        LOGGER.debug("%s is busy (%s); restarting stability count", path.name, exc)
                        previous = None
                        stable_count = 0
                        continue
                    raise FileAccessError(f"Failed to access {path.name}: {exc}") from exc

                if watched is not None:
                    watched.last_size = size

                if size == previous:
                    stable_count += 1
                    if stable_count >= active.required_stable_readings:
                        if watched is not None:
                            watched.stability = StabilityState.STABLE
                        return size
                else:
                    stable_count = 0
                    previous = size
        except (StabilityTimeoutError, FileDeletedError, FileAccessError):
            if watched is not None:
                watched.stability = StabilityState.FAILED
            raise


__all__ = ["StabilityPolicy", "StabilityDetector"]
