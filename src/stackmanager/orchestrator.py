from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import subprocess
from pathlib import Path

from .app_logging import get_logger, log_with_fields
from .config import AppConfig, ensure_local_paths
from .content import ContentSetInstaller
from .downloads import Downloader
from .events import ARTIFACT_INSTALLED, STACK_READY, Notifier
from .identity import IdentityResolver
from .process import Launcher, OutputSink, ProcessSupervisor
from .readiness import ArtifactReadinessTracker, VerificationOutcome
from .releases import ReleaseCheckPoller
from .remote import HttpFetcher
from .stack import StackController
from .workers import WorkerRegistry


class AppOrchestrator:
    """Wires the stack together: verify artifacts, download, start, poll for releases."""

    def __init__(
        self,
        config: AppConfig,
        *,
        http: HttpFetcher | None = None,
        notifier: Notifier | None = None,
        launcher: Launcher = subprocess.Popen,
        sink: OutputSink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or get_logger()
        self.notifier = notifier or Notifier()
        self.http = http or HttpFetcher(timeout=config.services.request_timeout_seconds)
        self.launcher = launcher
        self.sink = sink

        self.identity = IdentityResolver(
            self.http,
            config.services.coordinator_url,
            config.services.directory_url,
            self.notifier,
            scheme=config.services.address_scheme,
            initial_delay=config.identity.initial_delay_seconds,
            retry_delay=config.identity.retry_delay_seconds,
            max_attempts=config.identity.max_attempts,
            backoff_factor=config.identity.backoff_factor,
        )
        self.workers = WorkerRegistry(
            lambda name: self._supervisor(name, config.worker_executable_path),
            stop_timeout=config.stack.stop_timeout_seconds,
        )
        self.stack = StackController(
            self._supervisor("coordinator", config.coordinator_executable_path),
            self._supervisor("monitor", config.worker_executable_path),
            self.workers,
            self.notifier,
            monitor_pool_size=config.stack.monitor_pool_size,
            stop_timeout=config.stack.stop_timeout_seconds,
            identity=self.identity,
        )
        self.tracker = ArtifactReadinessTracker(config, self.http, self.notifier)
        self.downloader = Downloader(config, self.http, self.notifier)
        self.releases = ReleaseCheckPoller(
            self.http,
            config.services.manifest_url,
            self.notifier,
            current_version=config.release.current_version,
            platform=config.platform,
            project=config.release.project,
            interval_seconds=config.release.interval_seconds,
            user_agent=config.release.user_agent,
        )
        self.content = ContentSetInstaller(
            self.http,
            self.stack,
            self.notifier,
            resources_dir=config.paths.resources,
            coordinator_url=config.services.coordinator_url,
        )
        self.notifier.subscribe(ARTIFACT_INSTALLED, self.tracker.on_file_installed)
        self.notifier.subscribe(STACK_READY, self._on_stack_ready)
        self._release_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    def _supervisor(self, name: str, executable: Path) -> ProcessSupervisor:
        return ProcessSupervisor(
            name,
            executable,
            log_dir=self.config.paths.logs,
            sink=self.sink,
            launcher=self.launcher,
        )

    @property
    def server_address(self) -> str:
        return self.identity.address

    def _on_stack_ready(self, **_: object) -> None:
        if self.config.stack.autostart and not self.stack.running:
            self.stack.toggle(True)

    async def startup(self) -> VerificationOutcome:
        ensure_local_paths(self.config)
        outcome = await self.tracker.verify()
        if not outcome.network_available:
            log_with_fields(self.logger, logging.WARNING, "startup_deferred", reason="network_unavailable")
            return outcome
        pending = outcome.pending
        if pending:
            log_with_fields(self.logger, logging.INFO, "downloads_started", artifacts=[kind.value for kind in pending])
            await self.downloader.download_all(pending)
        return outcome

    def start_release_checks(self) -> asyncio.Task[None]:
        if self._release_task is None or self._release_task.done():
            self._release_task = asyncio.get_running_loop().create_task(self.releases.run_forever())
        return self._release_task

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self.request_stop)
        try:
            self.start_release_checks()
            await self.startup()
            await self._stop_event.wait()
            log_with_fields(self.logger, logging.INFO, "shutdown", reason="stop_requested")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if self._release_task is not None:
            self._release_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._release_task
            self._release_task = None
        await self.identity.cancel()
        self.stack.shutdown()
        await self.http.aclose()
