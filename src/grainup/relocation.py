"""Move uploaded recordings into the processed folder."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable

LOGGER = logging.getLogger(__name__)


class RelocationError(Exception):
    """Base exception for failed relocations.

    Attributes:
        kind: Short machine-readable error kind.
    """

    kind = "device_error"


class SourceNotFoundError(RelocationError):
    """Raised when the source file no longer exists."""

    kind = "not_found"


class FileBusyError(RelocationError):
    """Raised when the source file is locked or in use."""

    kind = "busy"


class RelocationPermissionError(RelocationError):
    """Raised when the source cannot be read or the destination written."""

    kind = "permission_denied"


class DeviceError(RelocationError):
    """Raised for any other storage failure."""

    kind = "device_error"


_BUSY_ERRNOS = frozenset({errno.EBUSY, errno.ETXTBSY, errno.EAGAIN})
_PERMISSION_ERRNOS = frozenset({errno.EACCES, errno.EPERM, errno.EROFS})


def _timestamp_suffix() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


class Relocator:
    """Move files into a destination directory without clobbering anything.

    Name collisions get a ``-YYYYMMDD-HHMMSS`` suffix (plus ``-N`` when that is
    also taken). Moves are atomic renames where possible; across storage
    boundaries the file is copied under a hidden temporary name, verified,
    renamed into place and only then removed from the source.
    """

    def __init__(self, *, timestamp: Callable[[], str] = _timestamp_suffix) -> None:
        self._timestamp = timestamp

    def relocate(self, source: Path, destination_dir: Path) -> Path:
        """Move ``source`` into ``destination_dir``.

        Args:
            source: File to move.
            destination_dir: Directory receiving the file. Created when missing.

        Returns:
            Path: Final location of the file.

        Raises:
            SourceNotFoundError: If ``source`` does not exist.
            FileBusyError: If the file is locked by another process.
            RelocationPermissionError: If permissions prevent the move.
            DeviceError: For other storage failures.
        """
        try:
            present = source.is_file()
        except OSError as exc:
            raise _translate(exc, f"Cannot inspect {source}") from exc
        if not present:
            raise SourceNotFoundError(f"Source file does not exist: {source}")
        if not os.access(source, os.R_OK):
            raise RelocationPermissionError(f"No read permission for source file: {source}")

        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise _translate(exc, f"Cannot prepare {destination_dir}") from exc

        try:
            destination = self._unique_destination(destination_dir / source.name)
        except OSError as exc:
            raise _translate(exc, f"Cannot choose a name in {destination_dir}") from exc
        try:
            os.rename(source, destination)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise _translate(exc, "Move failed") from exc
            self._copy_across_devices(source, destination)
        LOGGER.info("Moved %s -> %s", source.name, destination)
        return destination

    def _unique_destination(self, candidate: Path) -> Path:
        if not candidate.exists():
            return candidate
        stamped = candidate.with_name(f"{candidate.stem}-{self._timestamp()}{candidate.suffix}")
        target = stamped
        counter = 1
        while target.exists():
            target = stamped.with_name(f"{stamped.stem}-{counter}{stamped.suffix}")
            counter += 1
        return target

    def _copy_across_devices(self, source: Path, destination: Path) -> None:
        partial = destination.with_name(f".{destination.name}.partial")
        try:
            shutil.copy2(source, partial)
            if partial.stat().st_size != source.stat().st_size:
                raise DeviceError("File size mismatch after copy; copy verification failed")
            os.replace(partial, destination)
        except RelocationError:
            partial.unlink(missing_ok=True)
            raise
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise _translate(exc, "Copy failed") from exc

        try:
            source.unlink()
        except OSError as exc:
            # Leave exactly one copy behind: the original.
            destination.unlink(missing_ok=True)
            raise _translate(exc, "Copied file but could not delete the original") from exc


def _translate(exc: OSError, context: str) -> RelocationError:
    message = f"{context}: {exc.strerror or exc}"
    if isinstance(exc, FileNotFoundError):
        return SourceNotFoundError(message)
    if exc.errno in _BUSY_ERRNOS:
        return FileBusyError(f"{context}: file is locked or in use by another process")
    if isinstance(exc, PermissionError) or exc.errno in _PERMISSION_ERRNOS:
        return RelocationPermissionError(f"{context}: permission denied")
    return DeviceError(message)


__all__ = [
    "Relocator",
    "RelocationError",
    "SourceNotFoundError",
    "FileBusyError",
    "RelocationPermissionError",
    "DeviceError",
]
