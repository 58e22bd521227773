"""Tests for the ingestion controller."""

from __future__ import annotations

import asyncio
import errno
from pathlib import Path

import pytest
from support import (
    CREDENTIALS,
    FakeTransport,
    RecordingNotifier,
    completion,
    initiation,
    successful_script,
)

from grainup.config.models import DEFAULT_COMPLETION_STATES, WatchSettings
from grainup.ingestion import StabilityDetector, StabilityPolicy
from grainup.ingestion.controller import IngestionController, describe
from grainup.relocation import Relocator, RelocationError, SourceNotFoundError
from grainup.upload import (
    FailureReason,
    SessionPolicy,
    SessionState,
    UploadFailure,
    UploadSession,
    UploadSuccess,
)
from grainup.upload.signals import GrainResponseClassifier
from grainup.upload.transport import ObservedResponse

FAST_STABILITY = StabilityPolicy(poll_interval_ms=10, required_stable_readings=2, timeout_ms=2_000)
FAST_SESSION = SessionPolicy(initiation_timeout=0.2, completion_timeout=0.2)


class HeldTransport(FakeTransport):
    """Serves an initiation, then holds the completion until released."""

    def __init__(self, reached: asyncio.Event, release: asyncio.Event) -> None:
        super().__init__([initiation()])
        self._reached = reached
        self._release = release

    async def next_response(self) -> ObservedResponse:
        if self._script:
            return await super().next_response()
        self._reached.set()
        await self._release.wait()
        return completion("rec-a")


def _controller(
    folder: Path,
    *,
    session_factory,
    notifier: RecordingNotifier,
    relocator: Relocator | None = None,
    **settings,
) -> IngestionController:
    return IngestionController(
        WatchSettings(folder=folder, **settings),
        detector=StabilityDetector(FAST_STABILITY),
        session_factory=session_factory,
        relocator=relocator or Relocator(),
        notifier=notifier,
    )


def _session(transport: FakeTransport) -> UploadSession:
    return UploadSession(
        transport,
        GrainResponseClassifier(DEFAULT_COMPLETION_STATES),
        CREDENTIALS,
        FAST_SESSION,
    )


def _process(controller: IngestionController, *paths: Path) -> None:
    async def _scenario() -> None:
        controller.start()
        for path in paths:
            controller.file_added(path)
        await controller.join()
        await controller.shutdown()

    asyncio.run(_scenario())


def test_successful_upload_moves_file_and_notifies_once(tmp_path: Path) -> None:
    recording = tmp_path / "standup.mp4"
    recording.write_bytes(b"frames")
    notifier = RecordingNotifier()
    reports = []
    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport(successful_script())),
        notifier=notifier,
    )
    controller.add_listener(reports.append)

    _process(controller, recording)

    assert not recording.exists()
    moved = tmp_path / "Processed" / "standup.mp4"
    assert moved.read_bytes() == b"frames"
    assert notifier.total == 1
    report = notifier.successes[0]
    assert report.final_path == moved.resolve()
    assert isinstance(report.outcome, UploadSuccess)
    assert report.outcome.remote_id == "rec-1"
    assert reports == [report]
    assert controller.tracked == []
    assert "uploaded" in describe(report)


def test_second_file_waits_for_first_to_finish(tmp_path: Path) -> None:
    first = tmp_path / "a.mp3"
    second = tmp_path / "b.mp3"
    first.write_bytes(b"aaa")
    second.write_bytes(b"bbb")
    notifier = RecordingNotifier()
    sessions: list[UploadSession] = []
    transports: list[FakeTransport] = []

    async def _scenario() -> tuple[SessionState, list[Path], list[str]]:
        reached = asyncio.Event()
        release = asyncio.Event()
        patient = SessionPolicy(initiation_timeout=5, completion_timeout=5)

        def _factory() -> UploadSession:
            if transports:
                transport = FakeTransport(successful_script("rec-b"))
            else:
                transport = HeldTransport(reached, release)
            transports.append(transport)
            session = UploadSession(
                transport, GrainResponseClassifier(DEFAULT_COMPLETION_STATES), CREDENTIALS, patient
            )
            sessions.append(session)
            return session

        controller = _controller(tmp_path, session_factory=_factory, notifier=notifier)
        controller.start()
        controller.file_added(first)
        controller.file_added(second)
        await asyncio.wait_for(reached.wait(), timeout=5)
        state = sessions[0].state
        pending = controller.queue.pending
        started = [path.name for transport in transports for path in transport.submitted]
        release.set()
        await controller.join()
        await controller.shutdown()
        return state, pending, started

    state, pending, started = asyncio.run(_scenario())

    assert state is SessionState.AWAITING_COMPLETION
    assert pending == [second.resolve()]
    assert started == ["a.mp3"]
    assert len(sessions) == 2
    assert sorted(path.name for path in (tmp_path / "Processed").iterdir()) == ["a.mp3", "b.mp3"]
    assert [report.outcome.remote_id for report in notifier.successes] == ["rec-a", "rec-b"]


def test_failed_upload_leaves_file_in_place(tmp_path: Path) -> None:
    recording = tmp_path / "call.wav"
    recording.write_bytes(b"pcm")
    notifier = RecordingNotifier()
    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport([initiation()])),
        notifier=notifier,
    )

    _process(controller, recording)

    assert recording.exists()
    assert not (tmp_path / "Processed" / "call.wav").exists()
    assert notifier.successes == []
    assert len(notifier.failures) == 1
    outcome = notifier.failures[0].outcome
    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.COMPLETION_TIMEOUT


def test_relocation_failure_reports_remote_reference(tmp_path: Path) -> None:
    recording = tmp_path / "call.mov"
    recording.write_bytes(b"mov")
    notifier = RecordingNotifier()

    class BrokenRelocator(Relocator):
        def relocate(self, source: Path, destination_dir: Path) -> Path:
            raise SourceNotFoundError(f"Source file does not exist: {source}")

    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport(successful_script("rec-9"))),
        notifier=notifier,
        relocator=BrokenRelocator(),
    )

    _process(controller, recording)

    assert notifier.successes == []
    assert len(notifier.failures) == 1
    outcome = notifier.failures[0].outcome
    assert isinstance(outcome, UploadFailure)
    assert outcome.reason is FailureReason.RELOCATION_FAILED
    assert outcome.remote_id == "rec-9"
    assert outcome.remote_url == "https://grain.com/share/recording/rec-9"
    assert outcome.detail["relocation_error"] == "not_found"
    assert "recording at" in describe(notifier.failures[0])


def test_unreadable_collision_candidate_still_notifies_once(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    recording = tmp_path / "call.mov"
    recording.write_bytes(b"mov")
    (tmp_path / "Processed").mkdir()
    (tmp_path / "Processed" / "call.mov").write_bytes(b"earlier")
    notifier = RecordingNotifier()
    reports = []
    real_exists = Path.exists

    def _exists(self: Path, *args, **kwargs) -> bool:
        if self.name == "call-20240101-120000.mov":
            raise PermissionError(errno.EACCES, "Permission denied")
        return real_exists(self, *args, **kwargs)

    monkeypatch.setattr(Path, "exists", _exists)
    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport(successful_script("rec-4"))),
        notifier=notifier,
        relocator=Relocator(timestamp=lambda: "20240101-120000"),
    )
    controller.add_listener(reports.append)

    _process(controller, recording)

    assert notifier.successes == []
    assert len(notifier.failures) == 1
    outcome = notifier.failures[0].outcome
    assert outcome.reason is FailureReason.RELOCATION_FAILED
    assert outcome.remote_id == "rec-4"
    assert outcome.detail["relocation_error"] == "permission_denied"
    assert reports == notifier.failures
    assert recording.read_bytes() == b"mov"
    assert controller.tracked == []


def test_unexpected_relocation_crash_keeps_remote_reference(tmp_path: Path) -> None:
    recording = tmp_path / "call.mov"
    recording.write_bytes(b"mov")
    notifier = RecordingNotifier()

    class CrashingRelocator(Relocator):
        def relocate(self, source: Path, destination_dir: Path) -> Path:
            raise RuntimeError("disk driver exploded")

    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport(successful_script("rec-7"))),
        notifier=notifier,
        relocator=CrashingRelocator(),
    )

    _process(controller, recording)

    assert notifier.total == 1
    outcome = notifier.failures[0].outcome
    assert outcome.reason is FailureReason.RELOCATION_FAILED
    assert outcome.remote_url == "https://grain.com/share/recording/rec-7"
    assert outcome.detail["relocation_error"] == "unexpected"
    assert outcome.message == "disk driver exploded"
    assert recording.exists()


def test_unexpected_detector_error_becomes_failure(tmp_path: Path) -> None:
    recording = tmp_path / "call.mp4"
    recording.write_bytes(b"x")
    notifier = RecordingNotifier()
    reports = []

    class BrokenDetector(StabilityDetector):
        async def await_stable(self, path: Path, policy=None, *, watched=None) -> int:
            raise ValueError("unexpected stat payload")

    controller = IngestionController(
        WatchSettings(folder=tmp_path),
        detector=BrokenDetector(FAST_STABILITY),
        session_factory=lambda: _session(FakeTransport(successful_script())),
        relocator=Relocator(),
        notifier=notifier,
    )
    controller.add_listener(reports.append)

    _process(controller, recording)

    assert notifier.total == 1
    assert notifier.failures[0].outcome.reason is FailureReason.TRANSPORT_ERROR
    assert notifier.failures[0].outcome.detail["last_state"] == "handling"
    assert reports == notifier.failures
    assert recording.exists()


def test_file_deleted_before_stable_skips_upload(tmp_path: Path) -> None:
    sessions: list[FakeTransport] = []
    notifier = RecordingNotifier()

    def _factory() -> UploadSession:
        transport = FakeTransport(successful_script())
        sessions.append(transport)
        return _session(transport)

    controller = _controller(tmp_path, session_factory=_factory, notifier=notifier)
    ghost = tmp_path / "ghost.mp4"
    ghost.write_bytes(b"x")

    async def _scenario() -> None:
        controller.start()
        controller.file_added(ghost)
        ghost.unlink()
        await controller.join()
        await controller.shutdown()

    asyncio.run(_scenario())

    assert sessions == []
    assert len(notifier.failures) == 1
    assert notifier.failures[0].outcome.reason is FailureReason.FILE_DELETED


def test_crashing_session_factory_still_notifies(tmp_path: Path) -> None:
    recording = tmp_path / "call.mp4"
    recording.write_bytes(b"x")
    notifier = RecordingNotifier()

    def _factory() -> UploadSession:
        raise RuntimeError("browser binary missing")

    controller = _controller(tmp_path, session_factory=_factory, notifier=notifier)

    _process(controller, recording)

    assert recording.exists()
    assert notifier.failures[0].outcome.reason is FailureReason.TRANSPORT_ERROR
    assert notifier.failures[0].outcome.message == "browser binary missing"


def test_candidate_filtering(tmp_path: Path) -> None:
    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport()),
        notifier=RecordingNotifier(),
        supported_extensions=["MP4", ".mp3"],
    )
    processed = tmp_path / "Processed"

    assert controller.is_candidate(tmp_path / "call.MP4")
    assert controller.is_candidate(tmp_path / "memo.mp3")
    assert not controller.is_candidate(tmp_path / "notes.txt")
    assert not controller.is_candidate(tmp_path / ".call.mp4")
    assert not controller.is_candidate(tmp_path / ".hidden" / "call.mp4")
    assert not controller.is_candidate(processed / "call.mp4")


def test_duplicate_notifications_are_ignored(tmp_path: Path) -> None:
    recording = tmp_path / "call.mp4"
    recording.write_bytes(b"x")
    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport(successful_script())),
        notifier=RecordingNotifier(),
    )

    async def _scenario() -> tuple[bool, bool, int]:
        first = controller.file_added(recording)
        second = controller.file_added(recording)
        depth = controller.queue.depth
        await controller.shutdown()
        return first, second, depth

    first, second, depth = asyncio.run(_scenario())

    assert (first, second, depth) == (True, False, 1)


def test_scan_existing_queues_supported_files_only(tmp_path: Path) -> None:
    for name in ("b.mp4", "a.wav", "notes.txt", ".partial.mp4"):
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "Processed").mkdir()
    (tmp_path / "Processed" / "done.mp4").write_bytes(b"x")
    controller = _controller(
        tmp_path,
        session_factory=lambda: _session(FakeTransport()),
        notifier=RecordingNotifier(),
    )

    async def _scenario() -> tuple[int, list[str]]:
        queued = controller.scan_existing()
        names = [path.name for path in controller.queue.pending]
        await controller.shutdown()
        return queued, names

    queued, names = asyncio.run(_scenario())

    assert queued == 2
    assert names == ["a.wav", "b.mp4"]


def test_processed_folder_must_be_resolvable() -> None:
    with pytest.raises(ValueError):
        IngestionController(
            WatchSettings(),
            detector=StabilityDetector(),
            session_factory=lambda: _session(FakeTransport()),
            relocator=Relocator(),
            notifier=RecordingNotifier(),
        )


def test_relocation_error_kinds_are_stable() -> None:
    assert RelocationError("x").kind == "device_error"
    assert SourceNotFoundError("x").kind == "not_found"
