from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path

from .app_logging import get_logger, log_with_fields
from .config import AppConfig
from .errors import NetworkUnavailable
from .events import NETWORK_UNAVAILABLE, STACK_READY, Notifier
from .models import ArtifactKind, ArtifactState, ReadinessState
from .remote import HttpFetcher
from .utils import checksums_match, md5_file, normalize_checksum, utc_now_iso


@dataclass(slots=True)
class VerificationOutcome:
    state: ReadinessState
    network_available: bool = True

    @property
    def all_ready(self) -> bool:
        return self.state.all_ready()

    @property
    def pending(self) -> list[ArtifactKind]:
        return self.state.pending()


def has_entries(directory: Path) -> bool:
    try:
        return any(True for _ in directory.iterdir())
    except (FileNotFoundError, NotADirectoryError):
        return False


class ArtifactReadinessTracker:
    """Readiness of the four artifacts the stack needs before it may run."""

    def __init__(
        self,
        config: AppConfig,
        http: HttpFetcher,
        notifier: Notifier,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.http = http
        self.notifier = notifier
        self.logger = logger or get_logger("readiness")
        self.state = ReadinessState()
        self.last_checked: str | None = None

    def all_ready(self) -> bool:
        return self.state.all_ready()

    def kind_for_url(self, url: str) -> ArtifactKind | None:
        for kind, artifact in self.config.artifacts.items():
            if artifact.url == url:
                return kind
        return None

    def mark_installed(self, kind: ArtifactKind) -> None:
        was_ready = self.state.all_ready()
        self.state.set(kind, ArtifactState.FRESH)
        log_with_fields(self.logger, logging.INFO, "artifact_installed", artifact=kind.value)
        if not was_ready and self.state.all_ready():
            self._mark_checked()

    def on_file_installed(self, url: str, success: bool, **_: object) -> None:
        """Completion handler for downloads; failures leave the artifact stale."""
        if not success:
            return
        kind = self.kind_for_url(url)
        if kind is not None:
            self.mark_installed(kind)

    def _mark_checked(self) -> None:
        self.last_checked = utc_now_iso()
        log_with_fields(self.logger, logging.INFO, "artifacts_ready", last_checked=self.last_checked)
        self.notifier.emit(STACK_READY, last_checked=self.last_checked)

    async def _fetch_remote_checksum(self, kind: ArtifactKind) -> bytes | None:
        url = self.config.artifacts[kind].checksum_url
        try:
            reply = await self.http.get(url)
        except NetworkUnavailable as exc:
            log_with_fields(self.logger, logging.WARNING, "checksum_fetch_failed", artifact=kind.value, error=str(exc))
            return None
        if not reply.ok:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "checksum_fetch_failed",
                artifact=kind.value,
                status_code=reply.status_code,
            )
            return b""
        return reply.content

    async def _compare(self, kind: ArtifactKind, remote: bytes | None) -> ArtifactState:
        if not remote:
            return ArtifactState.STALE
        local_digest = await asyncio.to_thread(md5_file, self.config.artifact_path(kind))
        fresh = checksums_match(local_digest, remote)
        log_with_fields(
            self.logger,
            logging.INFO,
            "artifact_checked",
            artifact=kind.value,
            local_md5=local_digest,
            remote_md5=normalize_checksum(remote),
            fresh=fresh,
        )
        return ArtifactState.FRESH if fresh else ArtifactState.STALE

    async def verify(self) -> VerificationOutcome:
        """Decide every artifact's state before anything gets downloaded.

        The checksum fetches run concurrently. When the worker executable's
        checksum cannot be fetched at all the network is considered down and
        the pass is abandoned with nothing marked fresh by checksum.
        """
        state = ReadinessState()
        to_check: list[ArtifactKind] = []

        if self.config.uses_local_build:
            state.set(ArtifactKind.WORKER_EXECUTABLE, ArtifactState.FRESH)
            state.set(ArtifactKind.COORDINATOR_EXECUTABLE, ArtifactState.FRESH)
        else:
            to_check += [ArtifactKind.WORKER_EXECUTABLE, ArtifactKind.COORDINATOR_EXECUTABLE]

        if self.config.runtime_probe_path.exists():
            to_check.append(ArtifactKind.RUNTIME_BUNDLE)
        else:
            state.set(ArtifactKind.RUNTIME_BUNDLE, ArtifactState.STALE)

        if has_entries(self.config.paths.resources):
            to_check.append(ArtifactKind.COORDINATOR_RESOURCES)
        else:
            state.set(ArtifactKind.COORDINATOR_RESOURCES, ArtifactState.STALE)

        replies = await asyncio.gather(*(self._fetch_remote_checksum(kind) for kind in to_check))
        remote = dict(zip(to_check, replies))

        if ArtifactKind.WORKER_EXECUTABLE in remote and not normalize_checksum(
            remote[ArtifactKind.WORKER_EXECUTABLE] or b""
        ):
            log_with_fields(self.logger, logging.WARNING, "network_unavailable", stage="artifact_verification")
            self.state = ReadinessState()
            self.notifier.emit(NETWORK_UNAVAILABLE)
            return VerificationOutcome(state=ReadinessState(), network_available=False)

        for kind in to_check:
            state.set(kind, await self._compare(kind, remote[kind]))

        # the outcome keeps this pass's decisions; installs only update self.state
        self.state = replace(state)
        log_with_fields(self.logger, logging.INFO, "artifacts_verified", **state.as_dict())
        if state.all_ready():
            self._mark_checked()
        return VerificationOutcome(state=state)
