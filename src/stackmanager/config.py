from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import ArtifactKind
from .utils import current_platform, executable_name

DEFAULT_COORDINATOR_URL = "http://localhost:40100"
DEFAULT_DIRECTORY_URL = "https://metaverse.highfidelity.com/api/v1"
DEFAULT_MANIFEST_URL = "https://highfidelity.io/builds.xml"
DEFAULT_USER_AGENT = "Mozilla/5.0 (StackManager)"

RUNTIME_PROBES = {
    "mac": "QtCore.framework",
    "windows": "Qt5Core.dll",
    "ubuntu": "libQt5Core.so.5",
}

DEFAULT_ARCHIVES = {
    ArtifactKind.RUNTIME_BUNDLE: "requirements.zip",
    ArtifactKind.COORDINATOR_RESOURCES: "resources.zip",
}


@dataclass(slots=True)
class PathsConfig:
    launch: Path
    resources: Path
    logs: Path
    log: Path


@dataclass(slots=True)
class ArtifactConfig:
    kind: ArtifactKind
    url: str
    checksum_url: str
    archive: str | None = None


@dataclass(slots=True)
class ServicesConfig:
    coordinator_url: str = DEFAULT_COORDINATOR_URL
    directory_url: str = DEFAULT_DIRECTORY_URL
    manifest_url: str = DEFAULT_MANIFEST_URL
    address_scheme: str = "hifi"
    request_timeout_seconds: float = 30.0


@dataclass(slots=True)
class StackConfig:
    coordinator_executable: str = "domain-server"
    worker_executable: str = "assignment-client"
    monitor_pool_size: int = 4
    stop_timeout_seconds: float = 5.0
    autostart: bool = True
    build_directory: Path | None = None


@dataclass(slots=True)
class IdentityConfig:
    initial_delay_seconds: float = 1.0
    retry_delay_seconds: float = 1.0
    max_attempts: int = 5
    backoff_factor: float = 2.0


@dataclass(slots=True)
class ReleaseConfig:
    interval_seconds: int = 86400
    current_version: str = "dev"
    project: str = "stackmanager"
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    artifacts: dict[ArtifactKind, ArtifactConfig]
    services: ServicesConfig = field(default_factory=ServicesConfig)
    stack: StackConfig = field(default_factory=StackConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    platform: str = field(default_factory=current_platform)

    @property
    def uses_local_build(self) -> bool:
        return self.stack.build_directory is not None

    def _executable_dir(self) -> Path:
        if self.stack.build_directory is not None:
            return self.stack.build_directory
        return self.paths.launch

    @property
    def coordinator_executable_path(self) -> Path:
        return self._executable_dir() / executable_name(self.stack.coordinator_executable, self.platform)

    @property
    def worker_executable_path(self) -> Path:
        return self._executable_dir() / executable_name(self.stack.worker_executable, self.platform)

    @property
    def runtime_probe_path(self) -> Path:
        return self.paths.launch / RUNTIME_PROBES.get(self.platform, RUNTIME_PROBES["ubuntu"])

    def artifact_path(self, kind: ArtifactKind) -> Path:
        """Local file whose checksum is compared against the remote one."""
        if kind is ArtifactKind.COORDINATOR_EXECUTABLE:
            return self.coordinator_executable_path
        if kind is ArtifactKind.WORKER_EXECUTABLE:
            return self.worker_executable_path
        archive = self.artifacts[kind].archive or DEFAULT_ARCHIVES[kind]
        return self.paths.launch / archive

    def install_dir(self, kind: ArtifactKind) -> Path | None:
        """Where an archive artifact is unpacked; None for plain executables."""
        if kind is ArtifactKind.RUNTIME_BUNDLE:
            return self.paths.launch
        if kind is ArtifactKind.COORDINATOR_RESOURCES:
            return self.paths.resources
        return None


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _mapping(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def load_config(path: str | Path, build_directory: str | Path | None = None) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _require(raw, "paths", "root")
    artifacts_raw = _require(raw, "artifacts", "root")
    if not isinstance(paths_raw, dict):
        raise ValueError("`paths` must be a mapping")
    if not isinstance(artifacts_raw, dict):
        raise ValueError("`artifacts` must be a mapping")
    services_raw = _mapping(raw, "services")
    stack_raw = _mapping(raw, "stack")
    identity_raw = _mapping(raw, "identity")
    release_raw = _mapping(raw, "release")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    logs_dir = to_path(_require(paths_raw, "logs", "paths"))
    paths = PathsConfig(
        launch=to_path(_require(paths_raw, "launch", "paths")),
        resources=to_path(_require(paths_raw, "resources", "paths")),
        logs=logs_dir,
        log=to_path(paths_raw["log"]) if "log" in paths_raw else logs_dir / "last_run.log",
    )

    artifacts: dict[ArtifactKind, ArtifactConfig] = {}
    for kind in ArtifactKind:
        section = f"artifacts.{kind.value}"
        item = _require(artifacts_raw, kind.value, "artifacts")
        if not isinstance(item, dict):
            raise ValueError(f"`{section}` must be a mapping")
        archive = item.get("archive")
        artifacts[kind] = ArtifactConfig(
            kind=kind,
            url=str(_require(item, "url", section)),
            checksum_url=str(_require(item, "checksum_url", section)),
            archive=str(archive) if archive else None,
        )
    unknown = set(artifacts_raw) - {kind.value for kind in ArtifactKind}
    if unknown:
        raise ValueError(f"Unknown artifacts in config: {', '.join(sorted(unknown))}")

    services = ServicesConfig(
        coordinator_url=str(services_raw.get("coordinator_url", DEFAULT_COORDINATOR_URL)).rstrip("/"),
        directory_url=str(services_raw.get("directory_url", DEFAULT_DIRECTORY_URL)).rstrip("/"),
        manifest_url=str(services_raw.get("manifest_url", DEFAULT_MANIFEST_URL)),
        address_scheme=str(services_raw.get("address_scheme", "hifi")),
        request_timeout_seconds=float(services_raw.get("request_timeout_seconds", 30.0)),
    )
    if services.request_timeout_seconds <= 0:
        raise ValueError("`services.request_timeout_seconds` must be > 0")

    build_raw = build_directory if build_directory is not None else stack_raw.get("build_directory")
    stack = StackConfig(
        coordinator_executable=str(stack_raw.get("coordinator_executable", "domain-server")),
        worker_executable=str(stack_raw.get("worker_executable", "assignment-client")),
        monitor_pool_size=int(stack_raw.get("monitor_pool_size", 4)),
        stop_timeout_seconds=float(stack_raw.get("stop_timeout_seconds", 5.0)),
        autostart=bool(stack_raw.get("autostart", True)),
        build_directory=to_path(build_raw) if build_raw else None,
    )
    if stack.monitor_pool_size < 1:
        raise ValueError("`stack.monitor_pool_size` must be >= 1")
    if stack.stop_timeout_seconds < 0:
        raise ValueError("`stack.stop_timeout_seconds` must be >= 0")

    identity = IdentityConfig(
        initial_delay_seconds=float(identity_raw.get("initial_delay_seconds", 1.0)),
        retry_delay_seconds=float(identity_raw.get("retry_delay_seconds", 1.0)),
        max_attempts=int(identity_raw.get("max_attempts", 5)),
        backoff_factor=float(identity_raw.get("backoff_factor", 2.0)),
    )
    if identity.initial_delay_seconds < 0 or identity.retry_delay_seconds < 0:
        raise ValueError("`identity` delays must be >= 0")
    if identity.max_attempts < 1:
        raise ValueError("`identity.max_attempts` must be >= 1")
    if identity.backoff_factor < 1:
        raise ValueError("`identity.backoff_factor` must be >= 1")

    release = ReleaseConfig(
        interval_seconds=int(release_raw.get("interval_seconds", 86400)),
        current_version=str(release_raw.get("current_version", "dev")),
        project=str(release_raw.get("project", "stackmanager")),
        user_agent=str(release_raw.get("user_agent", DEFAULT_USER_AGENT)),
    )
    if release.interval_seconds < 1:
        raise ValueError("`release.interval_seconds` must be >= 1")

    platform = str(raw.get("platform", current_platform()))
    if platform not in RUNTIME_PROBES:
        raise ValueError(f"`platform` must be one of {', '.join(sorted(RUNTIME_PROBES))}")

    return AppConfig(
        paths=paths,
        artifacts=artifacts,
        services=services,
        stack=stack,
        identity=identity,
        release=release,
        platform=platform,
    )


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.launch.mkdir(parents=True, exist_ok=True)
    config.paths.resources.mkdir(parents=True, exist_ok=True)
    config.paths.logs.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)
