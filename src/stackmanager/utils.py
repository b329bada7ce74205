from __future__ import annotations

import hashlib
import re
import sys
import uuid
from datetime import UTC, datetime
from pathlib import Path

MD5_HEX_REGEX = re.compile(r"(?<![0-9a-f])([0-9a-f]{32})(?![0-9a-f])", re.IGNORECASE)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def md5_bytes(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def md5_file(path: Path) -> str:
    """Checksum of a local file; a missing file hashes like empty content."""
    hasher = hashlib.md5()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                hasher.update(chunk)
    except (FileNotFoundError, IsADirectoryError):
        return md5_bytes(b"")
    return hasher.hexdigest()


def normalize_checksum(raw: bytes | str) -> str:
    """Extract a lower-case hex digest from a remote checksum reply.

    Replies produced on some platforms wrap the digest, e.g. trailing
    newlines, ``md5sum`` style ``<digest>  <file>`` lines or a leading
    description line. The first 32-digit hex token wins; otherwise the
    first whitespace-separated token is used as-is.
    """
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="ignore")
    else:
        text = raw
    text = text.replace("\x00", "").strip()
    if not text:
        return ""
    match = MD5_HEX_REGEX.search(text)
    if match:
        return match.group(1).lower()
    return text.split()[0].lower()


def checksums_match(local_digest: str, remote_raw: bytes | str) -> bool:
    remote_digest = normalize_checksum(remote_raw)
    if not remote_digest:
        return False
    return local_digest.strip().lower() == remote_digest


def parse_identifier(raw: str) -> str | None:
    """Return the canonical form of a UUID-shaped identifier, or None."""
    text = raw.strip()
    if not text:
        return None
    try:
        parsed = uuid.UUID(text)
    except ValueError:
        return None
    if parsed.int == 0:
        return None
    return str(parsed)


def current_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "mac"
    return "ubuntu"


def executable_name(name: str, platform: str | None = None) -> str:
    platform = platform or current_platform()
    if platform == "windows" and not name.lower().endswith(".exe"):
        return f"{name}.exe"
    return name
