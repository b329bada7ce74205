from __future__ import annotations

import asyncio
import logging
import os
import stat
import zipfile
from pathlib import Path

from .app_logging import get_logger, log_with_fields
from .config import AppConfig
from .errors import DownloadWriteFailure, NetworkUnavailable
from .events import ARTIFACT_INSTALLED, Notifier
from .models import ArtifactKind
from .remote import HttpFetcher


def write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(f"{path.name}.part")
    try:
        partial.write_bytes(payload)
        os.replace(partial, path)
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise DownloadWriteFailure(f"could not write {path}: {exc}") from exc


def install_payload(target: Path, payload: bytes, unpack_to: Path | None, executable: bool) -> None:
    write_atomic(target, payload)
    if unpack_to is not None:
        try:
            with zipfile.ZipFile(target) as archive:
                archive.extractall(unpack_to)
        except (zipfile.BadZipFile, OSError) as exc:
            raise DownloadWriteFailure(f"could not unpack {target}: {exc}") from exc
    if executable:
        try:
            target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as exc:
            raise DownloadWriteFailure(f"could not mark {target} executable: {exc}") from exc


class Downloader:
    """Fetches artifacts to their install location and reports ``(url, success)``."""

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
        self.logger = logger or get_logger("downloads")

    async def download(self, kind: ArtifactKind) -> bool:
        url = self.config.artifacts[kind].url
        success = False
        try:
            reply = await self.http.get(url)
            if not reply.ok or not reply.content:
                raise NetworkUnavailable(f"{url} answered {reply.status_code} with {len(reply.content)} bytes")
            executable = kind in (ArtifactKind.WORKER_EXECUTABLE, ArtifactKind.COORDINATOR_EXECUTABLE)
            await asyncio.to_thread(
                install_payload,
                self.config.artifact_path(kind),
                reply.content,
                self.config.install_dir(kind),
                executable,
            )
            success = True
        except (NetworkUnavailable, DownloadWriteFailure) as exc:
            log_with_fields(self.logger, logging.ERROR, "download_failed", artifact=kind.value, url=url, error=str(exc))
        else:
            log_with_fields(self.logger, logging.INFO, "download_installed", artifact=kind.value, url=url)
        self.notifier.emit(ARTIFACT_INSTALLED, url=url, success=success)
        return success

    async def download_all(self, kinds: list[ArtifactKind]) -> dict[ArtifactKind, bool]:
        results = await asyncio.gather(*(self.download(kind) for kind in kinds))
        return dict(zip(kinds, results))
