"""Single-file upload session state machine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from grainup.config.models import CredentialSettings, UploadSettings

from .errors import (
    AuthenticationError,
    CompletionTimeoutError,
    InitiationTimeoutError,
    SessionError,
)
from .models import FailureReason, SessionState, UploadFailure, UploadOutcome, UploadSuccess
from .signals import Completion, Initiation, ResponseClassifier, Signal
from .transport import UploadTransport

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionPolicy:
    """Stage time limits, in seconds."""

    initiation_timeout: float = 60.0
    completion_timeout: float = 1_200.0

    @classmethod
    def from_settings(cls, settings: UploadSettings) -> "SessionPolicy":
        return cls(
            initiation_timeout=settings.initiation_timeout_seconds,
            completion_timeout=settings.completion_timeout_seconds,
        )


class UploadSession:
    """Drive one complete remote interaction for a single file.

    The session authenticates, submits the file, then reads observed responses
    until the classifier reports an initiation acknowledgment followed by a
    completion acknowledgment for the same transfer. Each stage after
    submission is bounded by its own timeout. Whatever happens, ``run``
    returns exactly one outcome and closes the transport before returning.

    Instances are single use; a new session (and transport) is created for
    every file so no remote state leaks between files.
    """

    def __init__(
        self,
        transport: UploadTransport,
        classifier: ResponseClassifier,
        credentials: CredentialSettings,
        policy: SessionPolicy | None = None,
    ) -> None:
        self._transport = transport
        self._classifier = classifier
        self._credentials = credentials
        self._policy = policy or SessionPolicy()
        self._state = SessionState.IDLE
        self._used = False
        self._started_at: float | None = None
        self._initiation: Optional[Initiation] = None
        self._held: list[Completion] = []
        self._responses_seen = 0

    @property
    def state(self) -> SessionState:
        """Return the current session state."""
        return self._state

    async def run(self, path: Path) -> UploadOutcome:
        """Upload ``path`` and return the outcome.

        Args:
            path: Local recording to upload.

        Returns:
            UploadOutcome: Success with the remote id and url, or a failure
            carrying the reason and diagnostic detail.

        Raises:
            RuntimeError: If the session has already been run.
        """
        if self._used:
            raise RuntimeError("UploadSession instances cannot be reused.")
        self._used = True
        loop = asyncio.get_running_loop()
        self._started_at = loop.time()

        try:
            try:
                await self._authenticate()
                await self._submit(path)
                initiation = await self._await_initiation()
                completion = await self._await_completion(initiation)
            except SessionError as exc:
                return self._fail(exc.reason, exc)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.exception("Unexpected transport failure while uploading %s", path.name)
                return self._fail(FailureReason.TRANSPORT_ERROR, exc)
            return self._succeed(initiation, completion)
        finally:
            await self._release()

    # ------------------------------------------------------------------ #
    # Stages                                                             #
    # ------------------------------------------------------------------ #

    async def _authenticate(self) -> None:
        self._transition(SessionState.AUTHENTICATING)
        if not self._credentials.complete:
            raise AuthenticationError("Remote service credentials are not configured.")
        await self._transport.authenticate(self._credentials)

    async def _submit(self, path: Path) -> None:
        self._transition(SessionState.SUBMITTING)
        await self._transport.submit(path)

    async def _await_initiation(self) -> Initiation:
        self._transition(SessionState.AWAITING_INITIATION)
        deadline = self._deadline(self._policy.initiation_timeout)
        while True:
            try:
                signal = await self._next_signal(deadline)
            except asyncio.TimeoutError:
                raise InitiationTimeoutError(
                    f"No upload acknowledgment within {self._policy.initiation_timeout:g}s."
                ) from None
            if isinstance(signal, Initiation):
                LOGGER.info("Upload accepted (transfer %s).", signal.transfer_id)
                self._initiation = signal
                return signal
            if isinstance(signal, Completion):
                # Held until the transfer id is known.
                self._held.append(signal)

    async def _await_completion(self, initiation: Initiation) -> Completion:
        self._transition(SessionState.AWAITING_COMPLETION)
        for held in self._held:
            if self._accepts(held, initiation):
                return held
        self._held.clear()

        deadline = self._deadline(self._policy.completion_timeout)
        while True:
            try:
                signal = await self._next_signal(deadline)
            except asyncio.TimeoutError:
                raise CompletionTimeoutError(
                    f"Recording was not reported as processing within "
                    f"{self._policy.completion_timeout:g}s."
                ) from None
            if isinstance(signal, Completion) and self._accepts(signal, initiation):
                return signal

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    async def _next_signal(self, deadline: float) -> Signal:
        """Wait for the next classified response, bounded by ``deadline``.

        Raises:
            asyncio.TimeoutError: When the deadline passes first.
        """
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise asyncio.TimeoutError
        response = await asyncio.wait_for(self._transport.next_response(), timeout=remaining)
        self._responses_seen += 1
        signal = self._classifier.classify(response)
        LOGGER.debug("Response %s %s -> %s", response.method, response.url, type(signal).__name__)
        return signal

    def _accepts(self, completion: Completion, initiation: Initiation) -> bool:
        if completion.transfer_id is not None and completion.transfer_id != initiation.transfer_id:
            LOGGER.debug(
                "Ignoring completion for transfer %s (expected %s).",
                completion.transfer_id,
                initiation.transfer_id,
            )
            return False
        if not completion.has_reference:
            LOGGER.debug("Ignoring completion for %s without a recording link.", completion.remote_id)
            return False
        return True

    def _deadline(self, timeout: float) -> float:
        return asyncio.get_running_loop().time() + timeout

    def _transition(self, state: SessionState) -> None:
        LOGGER.debug("Upload session %s -> %s", self._state.value, state.value)
        self._state = state

    def _elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return round(asyncio.get_running_loop().time() - self._started_at, 3)

    def _succeed(self, initiation: Initiation, completion: Completion) -> UploadSuccess:
        detail: dict[str, Any] = {
            "transfer_id": initiation.transfer_id,
            "size_limit": initiation.size_limit,
            "remote_state": completion.state,
            "elapsed_seconds": self._elapsed(),
        }
        self._transition(SessionState.SUCCEEDED)
        return UploadSuccess(
            remote_id=completion.remote_id,
            remote_url=completion.remote_url,
            detail=detail,
        )

    def _fail(self, reason: FailureReason, exc: BaseException) -> UploadFailure:
        detail: dict[str, Any] = {
            "last_state": self._state.value,
            "elapsed_seconds": self._elapsed(),
            "error": str(exc) or exc.__class__.__name__,
            "responses_seen": self._responses_seen,
        }
        if self._initiation is not None:
            detail["transfer_id"] = self._initiation.transfer_id
        self._transition(SessionState.FAILED)
        return UploadFailure(reason=reason, detail=detail)

    async def _release(self) -> None:
        try:
            await self._transport.close()
        except Exception:  # pragma: no cover - depends on transport internals
            LOGGER.warning("Failed to release the remote session cleanly.", exc_info=True)


__all__ = ["SessionPolicy", "UploadSession"]
