"""Process runner wiring configuration into a running pipeline."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Callable, Optional

from grainup.config import ConfigError, GrainupConfig
from grainup.ingestion.controller import IngestionController, ReportListener
from grainup.ingestion.models import FileReport
from grainup.ingestion.stability import StabilityDetector, StabilityPolicy
from grainup.notify import EmailNotifier, LogNotifier, Notifier
from grainup.relocation import Relocator
from grainup.upload.session import SessionPolicy, UploadSession
from grainup.upload.signals import GrainResponseClassifier
from grainup.upload.transport import TransportFactory, UploadTransport
from grainup.watch import WatchService

LOGGER = logging.getLogger(__name__)


def default_transport_factory(config: GrainupConfig, *, headless: bool | None = None) -> TransportFactory:
    """Return a factory producing a fresh browser transport per file."""

    def _factory() -> UploadTransport:
        from grainup.upload.browser import BrowserTransport

        return BrowserTransport(config.upload, headless=headless)

    return _factory


def default_notifier(config: GrainupConfig) -> Notifier:
    """Return the email notifier when enabled, otherwise a log-only notifier."""
    if config.email.enabled:
        return EmailNotifier(config.email)
    return LogNotifier()


def build_session_factory(
    config: GrainupConfig,
    transport_factory: TransportFactory,
) -> Callable[[], UploadSession]:
    """Return a factory creating one single-use upload session per file."""
    classifier = GrainResponseClassifier(config.upload.completion_states)
    policy = SessionPolicy.from_settings(config.upload)

    def _factory() -> UploadSession:
        return UploadSession(transport_factory(), classifier, config.credentials, policy)

    return _factory


class UploaderApp:
    """Long-running watch-and-upload process.

    ``run`` starts the queue, the folder watcher and the startup scan, then
    waits until :meth:`request_stop` is called (directly or from SIGINT or
    SIGTERM). Shutdown stops the watcher first and gives the in-flight file
    ``watch.shutdown_grace_seconds`` to finish before abandoning it.
    """

    def __init__(
        self,
        config: GrainupConfig,
        *,
        notifier: Notifier | None = None,
        transport_factory: TransportFactory | None = None,
        listener: ReportListener | None = None,
    ) -> None:
        folder = config.watch.resolved_folder()
        if folder is None:
            raise ConfigError("watch.folder is not configured.")
        self._config = config
        self._folder = folder
        factory = transport_factory or default_transport_factory(config)
        self._controller = IngestionController(
            config.watch,
            detector=StabilityDetector(StabilityPolicy.from_settings(config.stability)),
            session_factory=build_session_factory(config, factory),
            relocator=Relocator(),
            notifier=notifier or default_notifier(config),
        )
        if listener is not None:
            self._controller.add_listener(listener)
        self._watcher: Optional[WatchService] = None
        self._stop: Optional[asyncio.Event] = None
        self._stop_requested = False

    @property
    def controller(self) -> IngestionController:
        return self._controller

    @property
    def folder(self) -> Path:
        return self._folder

    def prepare(self) -> None:
        """Check the watch folder and create the processed folder."""
        if not self._folder.is_dir():
            raise ConfigError(f"Watch folder does not exist: {self._folder}")
        processed = self._controller.processed_folder
        try:
            processed.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Failed to create processed folder {processed}: {exc}") from exc
        LOGGER.info("Processed folder ready: %s", processed)

    async def run(self) -> None:
        """Watch the folder until a stop is requested."""
        self.prepare()
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        if self._stop_requested:
            self._stop.set()
        installed = self._install_signal_handlers(loop)

        settings = self._config.watch
        self._controller.start()
        self._watcher = WatchService(
            self._folder,
            self._controller.file_added,
            ignored=self._controller.processed_folder,
            settle_seconds=settings.settle_seconds,
        )
        try:
            self._watcher.start(loop)
            LOGGER.info("Supported extensions: %s", ", ".join(settings.supported_extensions))
            if settings.scan_existing:
                self._controller.scan_existing()
            await self._stop.wait()
        finally:
            LOGGER.info("Shutting down")
            self._watcher.stop()
            self._watcher = None
            await self._controller.shutdown(settings.shutdown_grace_seconds)
            for sig in installed:
                loop.remove_signal_handler(sig)

    async def run_once(self) -> list[FileReport]:
        """Process the files currently in the folder, then return their reports."""
        self.prepare()
        reports: list[FileReport] = []
        self._controller.add_listener(reports.append)
        self._controller.start()
        try:
            self._controller.scan_existing()
            await self._controller.join()
        finally:
            await self._controller.shutdown()
        return reports

    def request_stop(self) -> None:
        """Ask a running :meth:`run` to shut down."""
        self._stop_requested = True
        if self._stop is not None:
            self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[int]:
        installed: list[int] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError, ValueError):
                continue
            installed.append(sig)
        return installed


__all__ = [
    "UploaderApp",
    "build_session_factory",
    "default_notifier",
    "default_transport_factory",
]
