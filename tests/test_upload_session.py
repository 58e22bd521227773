"""Tests for the two-phase upload session."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from support import (
    CREDENTIALS,
    FakeTransport,
    completion,
    initiation,
    noise,
    successful_script,
)

from grainup.config.models import DEFAULT_COMPLETION_STATES, CredentialSettings
from grainup.upload import (
    AuthenticationError,
    FailureReason,
    SessionPolicy,
    SessionState,
    SubmissionError,
    UploadFailure,
    UploadSession,
    UploadSuccess,
)
from grainup.upload.signals import GrainResponseClassifier

FAST = SessionPolicy(initiation_timeout=0.3, completion_timeout=0.3)


def _session(transport: FakeTransport, *, policy: SessionPolicy = FAST, credentials=CREDENTIALS):
    return UploadSession(
        transport,
        GrainResponseClassifier(DEFAULT_COMPLETION_STATES),
        credentials,
        policy,
    )


def _run(session: UploadSession, path: Path):
    return asyncio.run(session.run(path))


def test_session_succeeds_after_initiation_and_completion(tmp_path: Path) -> None:
    transport = FakeTransport(successful_script())
    session = _session(transport)

    outcome = _run(session, tmp_path / "call.mp4")

    assert isinstance(outcome, UploadSuccess)
    assert outcome.remote_id == "rec-1"
    assert outcome.remote_url == "https://grain.com/share/recording/rec-1"
    assert outcome.detail["transfer_id"] == "up-1"
    assert outcome.detail["remote_state"] == "processing"
    assert session.state is SessionState.SUCCEEDED
    assert transport.calls == ["authenticate", "submit", "close"]
    assert transport.submitted == [tmp_path / "call.mp4"]


def test_missing_credentials_fail_without_contacting_service(tmp_path: Path) -> None:
    transport = FakeTransport(successful_script())
    session = _session(transport, credentials=CredentialSettings(email="ops@example.com"))

    outcome = _run(session, tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.UNAUTHENTICATED
    assert outcome.detail["last_state"] == "authenticating"
    assert "submit" not in transport.calls
    assert transport.closed


def test_rejected_credentials_report_unauthenticated(tmp_path: Path) -> None:
    transport = FakeTransport(auth_error=AuthenticationError("login page still shown"))

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.UNAUTHENTICATED
    assert outcome.message == "login page still shown"
    assert transport.closed


def test_submission_error_is_reported(tmp_path: Path) -> None:
    transport = FakeTransport(submit_error=SubmissionError("file input not found"))

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.SUBMISSION_ERROR
    assert outcome.detail["last_state"] == "submitting"
    assert transport.closed


def test_unexpected_transport_exception_becomes_transport_error(tmp_path: Path) -> None:
    transport = FakeTransport(submit_error=ConnectionResetError("browser went away"))

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.TRANSPORT_ERROR
    assert transport.closed


def test_no_initiation_within_window_times_out(tmp_path: Path) -> None:
    transport = FakeTransport([noise(), noise("/_/feed")])
    session = _session(transport)

    outcome = _run(session, tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.INITIATION_TIMEOUT
    assert outcome.detail["last_state"] == "awaiting_initiation"
    assert outcome.detail["responses_seen"] == 2
    assert session.state is SessionState.FAILED
    assert transport.closed


def test_initiation_inside_window_moves_on_to_completion(tmp_path: Path) -> None:
    # Initiation arrives before its deadline; the completion never does.
    transport = FakeTransport([0.1, initiation()])
    session = _session(transport, policy=SessionPolicy(initiation_timeout=0.5, completion_timeout=0.2))

    outcome = _run(session, tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.COMPLETION_TIMEOUT
    assert outcome.detail["last_state"] == "awaiting_completion"
    assert outcome.detail["transfer_id"] == "up-1"


def test_completion_without_link_is_not_success(tmp_path: Path) -> None:
    transport = FakeTransport([initiation(), completion(url=""), completion(url="   ")])

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.COMPLETION_TIMEOUT


def test_completion_for_another_transfer_is_ignored(tmp_path: Path) -> None:
    transport = FakeTransport(
        [
            initiation("up-1"),
            completion("rec-other", upload_id="up-2"),
            completion("rec-1", upload_id="up-1"),
        ]
    )

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadSuccess)
    assert outcome.remote_id == "rec-1"


def test_first_matching_completion_wins(tmp_path: Path) -> None:
    transport = FakeTransport(
        [
            initiation(),
            completion("rec-1", state="processing"),
            completion("rec-1", state="ready", url="https://grain.com/share/recording/other"),
        ]
    )

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadSuccess)
    assert outcome.detail["remote_state"] == "processing"
    assert outcome.remote_url == "https://grain.com/share/recording/rec-1"


def test_completion_seen_before_initiation_is_held(tmp_path: Path) -> None:
    transport = FakeTransport([completion("rec-1", upload_id="up-1"), initiation("up-1")])

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadSuccess)
    assert outcome.remote_id == "rec-1"


def test_repeated_initiation_is_ignored(tmp_path: Path) -> None:
    transport = FakeTransport([initiation("up-1"), initiation("up-9"), completion(upload_id="up-1")])

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadSuccess)
    assert outcome.detail["transfer_id"] == "up-1"


def test_completion_without_transfer_id_is_accepted(tmp_path: Path) -> None:
    transport = FakeTransport([initiation("up-1"), completion("rec-7", upload_id=None)])

    outcome = _run(_session(transport), tmp_path / "call.mp4")

    assert isinstance(outcome, UploadSuccess)
    assert outcome.remote_id == "rec-7"


def test_sessions_are_single_use(tmp_path: Path) -> None:
    session = _session(FakeTransport(successful_script()))

    async def _twice() -> None:
        await session.run(tmp_path / "a.mp4")
        await session.run(tmp_path / "b.mp4")

    with pytest.raises(RuntimeError):
        asyncio.run(_twice())


def test_cancellation_still_closes_transport(tmp_path: Path) -> None:
    transport = FakeTransport([initiation()])
    session = _session(transport, policy=SessionPolicy(initiation_timeout=5, completion_timeout=5))

    async def _cancel() -> None:
        task = asyncio.create_task(session.run(tmp_path / "a.mp4"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_cancel())

    assert transport.closed
