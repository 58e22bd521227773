"""Folder monitoring."""

from .service import FileAddedCallback, WatchService

__all__ = ["FileAddedCallback", "WatchService"]
