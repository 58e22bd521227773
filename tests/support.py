"""Shared fakes for grainup tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterable, Union

from grainup.config.models import CredentialSettings
from grainup.ingestion.models import FileReport
from grainup.notify import Notifier
from grainup.upload.transport import ObservedResponse

# A float in the script means "sleep this long before the next response".
ScriptItem = Union[ObservedResponse, float]

CREDENTIALS = CredentialSettings(email="ops@example.com", password="hunter2")


def initiation(upload_id: str = "up-1", max_size: int = 5_000_000_000) -> ObservedResponse:
    return ObservedResponse(
        url="https://api.grain.com/_/uploads",
        method="POST",
        body={"upload_id": upload_id, "max_size": max_size},
    )


def completion(
    recording_id: str = "rec-1",
    url: str | None = None,
    *,
    state: str = "processing",
    upload_id: str | None = "up-1",
) -> ObservedResponse:
    recording: dict[str, Any] = {
        "id": recording_id,
        "state": state,
        "url": f"https://grain.com/share/recording/{recording_id}" if url is None else url,
    }
    if upload_id is not None:
        recording["upload_id"] = upload_id
    return ObservedResponse(
        url=f"https://api.grain.com/_/recordings/{recording_id}",
        body={"recording": recording},
    )


def noise(path: str = "/_/me") -> ObservedResponse:
    return ObservedResponse(url=f"https://api.grain.com{path}", body={"user": {"name": "Ops"}})


class FakeTransport:
    """Scripted stand-in for the browser transport.

    Responses are served in order; once the script runs out ``next_response``
    blocks forever so the session's stage timeouts decide the outcome.
    """

    def __init__(
        self,
        script: Iterable[ScriptItem] = (),
        *,
        auth_error: Exception | None = None,
        submit_error: Exception | None = None,
        submit_delay: float = 0.0,
    ) -> None:
        self._script = list(script)
        self._auth_error = auth_error
        self._submit_error = submit_error
        self._submit_delay = submit_delay
        self.calls: list[str] = []
        self.submitted: list[Path] = []
        self.closed = False

    async def authenticate(self, credentials: CredentialSettings) -> None:
        self.calls.append("authenticate")
        if self._auth_error is not None:
            raise self._auth_error

    async def submit(self, path: Path) -> None:
        self.calls.append("submit")
        self.submitted.append(path)
        if self._submit_delay:
            await asyncio.sleep(self._submit_delay)
        if self._submit_error is not None:
            raise self._submit_error

    async def next_response(self) -> ObservedResponse:
        while self._script:
            item = self._script.pop(0)
            if isinstance(item, ObservedResponse):
                return item
            await asyncio.sleep(item)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    async def close(self) -> None:
        self.calls.append("close")
        self.closed = True


def successful_script(recording_id: str = "rec-1", upload_id: str = "up-1") -> list[ScriptItem]:
    return [
        noise(),
        initiation(upload_id),
        0.01,
        completion(recording_id, upload_id=upload_id),
    ]


class RecordingNotifier(Notifier):
    """Notifier that remembers every report it was asked to send."""

    def __init__(self) -> None:
        self.successes: list[FileReport] = []
        self.failures: list[FileReport] = []

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)

    async def _send_success(self, report: FileReport) -> None:
        self.successes.append(report)

    async def _send_failure(self, report: FileReport) -> None:
        self.failures.append(report)
