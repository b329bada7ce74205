from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

from .app_logging import get_logger, log_with_fields
from .errors import DownloadWriteFailure, NetworkUnavailable
from .events import ADDRESS_CHANGED, CONTENT_SET_RESPONSE, INDEX_PATH_RESPONSE, Notifier
from .remote import HttpFetcher
from .stack import StackController

CONTENT_SET_SUFFIX = ".svo"
CONTENT_SET_FILENAME = "models.svo"


def _write_content(path: Path, payload: bytes) -> None:
    try:
        path.write_bytes(payload)
    except OSError as exc:
        raise DownloadWriteFailure(f"could not write {path}: {exc}") from exc


class ContentSetInstaller:
    """Installs a content set into the running stack and updates the index path."""

    def __init__(
        self,
        http: HttpFetcher,
        stack: StackController,
        notifier: Notifier,
        *,
        resources_dir: Path,
        coordinator_url: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.http = http
        self.stack = stack
        self.notifier = notifier
        self.resources_dir = resources_dir
        self.coordinator_url = coordinator_url.rstrip("/")
        self.logger = logger or get_logger("content")

    async def install(self, url: str) -> bool:
        """Download, swap the content file with the monitor paused, then set the index path."""
        if not urlsplit(url).path.endswith(CONTENT_SET_SUFFIX):
            log_with_fields(self.logger, logging.WARNING, "content_set_rejected", url=url)
            return self._respond(False)

        try:
            reply = await self.http.get(url)
        except NetworkUnavailable as exc:
            log_with_fields(self.logger, logging.ERROR, "content_set_download_failed", url=url, error=str(exc))
            return self._respond(False)
        if not reply.ok:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "content_set_download_failed",
                url=url,
                status_code=reply.status_code,
            )
            return self._respond(False)

        target = self.resources_dir / CONTENT_SET_FILENAME
        # stopping may wait out the monitor's stop timeout
        await asyncio.to_thread(self.stack.toggle_monitor, False)
        try:
            await asyncio.to_thread(_write_content, target, reply.content)
        except DownloadWriteFailure as exc:
            log_with_fields(self.logger, logging.ERROR, "content_set_write_failed", path=str(target), error=str(exc))
            return self._respond(False)
        finally:
            self.stack.toggle_monitor(True)

        log_with_fields(self.logger, logging.INFO, "content_set_installed", path=str(target), url=url)
        self.notifier.emit(CONTENT_SET_RESPONSE, success=True)
        index_path = parse_qs(urlsplit(url).query).get("path", [""])[0]
        if index_path:
            await self.change_index_path(index_path)
        self.notifier.emit(ADDRESS_CHANGED)
        return True

    async def change_index_path(self, new_path: str) -> bool:
        if not new_path:
            return False
        payload = {"paths": {"/": {"viewpoint": new_path}}}
        url = f"{self.coordinator_url}/settings.json"
        try:
            reply = await self.http.post_json(url, payload)
            success = reply.ok
        except NetworkUnavailable as exc:
            log_with_fields(self.logger, logging.ERROR, "index_path_change_failed", error=str(exc))
            success = False
        log_with_fields(self.logger, logging.INFO, "index_path_changed", path=new_path, success=success)
        self.notifier.emit(INDEX_PATH_RESPONSE, success=success)
        return success

    def _respond(self, success: bool) -> bool:
        self.notifier.emit(CONTENT_SET_RESPONSE, success=success)
        self.notifier.emit(ADDRESS_CHANGED)
        return success
