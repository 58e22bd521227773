"""Transport boundary between the upload session and the remote service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from grainup.config.models import CredentialSettings


@dataclass(frozen=True, slots=True)
class ObservedResponse:
    """A network response seen by the remote session.

    Attributes:
        url: Request URL.
        status: HTTP status code.
        method: HTTP method of the originating request.
        body: Parsed JSON document, or ``None`` for non-JSON bodies.
        received_at: Time the response was observed.
    """

    url: str
    status: int = 200
    method: str = "GET"
    body: Any = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class UploadTransport(Protocol):
    """Stage operations an upload session performs against the remote service.

    A transport instance belongs to exactly one session and is closed by it.
    """

    async def authenticate(self, credentials: CredentialSettings) -> None:
        """Establish an authenticated remote session.

        Raises:
            AuthenticationError: If the remote service rejects the credentials.
        """
        ...

    async def submit(self, path: Path) -> None:
        """Hand the local file to the remote service.

        Raises:
            SubmissionError: If the transfer cannot be initiated.
        """
        ...

    async def next_response(self) -> ObservedResponse:
        """Wait for the next observed network response."""
        ...

    async def close(self) -> None:
        """Release every remote-session resource."""
        ...


TransportFactory = Callable[[], UploadTransport]


__all__ = ["ObservedResponse", "UploadTransport", "TransportFactory"]
