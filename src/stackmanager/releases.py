from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET

from .app_logging import get_logger, log_with_fields
from .errors import ManifestParseFailure, NetworkUnavailable
from .events import UPDATE_AVAILABLE, Notifier
from .models import VersionRecord
from .remote import HttpFetcher

KNOWN_PLATFORMS = frozenset({"windows", "mac", "ubuntu"})
UNVERSIONED_BUILDS = frozenset({"", "dev"})

Manifest = dict[str, dict[str, VersionRecord]]


def _text(element: ET.Element) -> str:
    return (element.text or "").strip()


def _parse_build(project: str, platform: str, build: ET.Element) -> VersionRecord | None:
    record = VersionRecord(project=project, platform=platform, version="")
    for child in build:
        if child.tag == "version":
            record.version = _text(child)
        elif child.tag == "url":
            record.url = _text(child)
        elif child.tag == "timestamp":
            record.timestamp = _text(child)
        elif child.tag == "note":
            record.notes.append(_text(child))
    try:
        ordinal = record.ordinal
    except ValueError:
        return None
    if ordinal <= 0:
        return None
    return record


def parse_manifest(data: bytes | str) -> Manifest:
    """Latest build per project and platform.

    Only a strictly greater version replaces a retained build, so the first
    of several equal versions wins. Unknown platforms, unnamed projects and
    builds without a positive integer version are skipped.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise ManifestParseFailure(str(exc)) from exc

    manifest: Manifest = {}
    for project in root.iter("project"):
        project_name = project.get("name", "")
        if not project_name:
            continue
        for platform in project.iter("platform"):
            platform_name = platform.get("name", "")
            if platform_name not in KNOWN_PLATFORMS:
                continue
            for build in platform.iter("build"):
                record = _parse_build(project_name, platform_name, build)
                if record is None:
                    continue
                platforms = manifest.setdefault(project_name, {})
                current = platforms.get(platform_name)
                if current is None or record.ordinal > current.ordinal:
                    platforms[platform_name] = record
    return manifest


def available_update(
    manifest: Manifest,
    project: str,
    platform: str,
    current_version: str,
) -> VersionRecord | None:
    if current_version.strip() in UNVERSIONED_BUILDS:
        return None
    latest = manifest.get(project, {}).get(platform)
    if latest is None or latest.version == current_version.strip():
        return None
    return latest


class ReleaseCheckPoller:
    def __init__(
        self,
        http: HttpFetcher,
        manifest_url: str,
        notifier: Notifier,
        *,
        current_version: str,
        platform: str,
        project: str = "stackmanager",
        interval_seconds: float = 86400,
        user_agent: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.http = http
        self.manifest_url = manifest_url
        self.notifier = notifier
        self.current_version = current_version
        self.platform = platform
        self.project = project
        self.interval_seconds = interval_seconds
        self.user_agent = user_agent
        self.logger = logger or get_logger("releases")
        self.latest: VersionRecord | None = None

    async def check_once(self) -> VersionRecord | None:
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        try:
            reply = await self.http.get(self.manifest_url, headers=headers)
            if not reply.ok:
                raise ManifestParseFailure(f"manifest request answered {reply.status_code}")
            manifest = parse_manifest(reply.content)
        except (NetworkUnavailable, ManifestParseFailure) as exc:
            log_with_fields(self.logger, logging.INFO, "release_check_skipped", error=str(exc))
            return None

        self.latest = manifest.get(self.project, {}).get(self.platform)
        update = available_update(manifest, self.project, self.platform, self.current_version)
        if update is None:
            log_with_fields(
                self.logger,
                logging.DEBUG,
                "release_check_done",
                current_version=self.current_version,
                latest_version=self.latest.version if self.latest else None,
            )
            return None
        log_with_fields(
            self.logger,
            logging.INFO,
            "update_available",
            current_version=self.current_version,
            version=update.version,
            url=update.url,
        )
        self.notifier.emit(
            UPDATE_AVAILABLE,
            version=update.version,
            url=update.url,
            release_notes=update.release_notes,
        )
        return update

    async def run_forever(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval_seconds)
