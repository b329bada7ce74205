from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .process import ProcessSupervisor

DEFAULT_DOMAIN_NAME = "localhost"


class ProcessState(str, Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ArtifactKind(str, Enum):
    RUNTIME_BUNDLE = "runtime_bundle"
    WORKER_EXECUTABLE = "worker_executable"
    COORDINATOR_EXECUTABLE = "coordinator_executable"
    COORDINATOR_RESOURCES = "coordinator_resources"


class ArtifactState(str, Enum):
    UNKNOWN = "unknown"
    STALE = "stale"
    FRESH = "fresh"


class IdentityStage(str, Enum):
    NO_ID = "no-id"
    ID_REQUESTED = "id-requested"
    ID_KNOWN = "id-known"
    NAME_REQUESTED = "name-requested"
    NAME_KNOWN = "name-known"


@dataclass(slots=True)
class ReadinessState:
    runtime_bundle: ArtifactState = ArtifactState.UNKNOWN
    worker_executable: ArtifactState = ArtifactState.UNKNOWN
    coordinator_executable: ArtifactState = ArtifactState.UNKNOWN
    coordinator_resources: ArtifactState = ArtifactState.UNKNOWN

    def get(self, kind: ArtifactKind) -> ArtifactState:
        return getattr(self, kind.value)

    def set(self, kind: ArtifactKind, state: ArtifactState) -> None:
        setattr(self, kind.value, state)

    def all_ready(self) -> bool:
        return all(self.get(kind) is ArtifactState.FRESH for kind in ArtifactKind)

    def pending(self) -> list[ArtifactKind]:
        return [kind for kind in ArtifactKind if self.get(kind) is not ArtifactState.FRESH]

    def as_dict(self) -> dict[str, str]:
        return {kind.value: self.get(kind).value for kind in ArtifactKind}


@dataclass(slots=True)
class WorkerTask:
    task_id: str
    args: list[str]
    supervisor: ProcessSupervisor
    pool: str | None = None


@dataclass(slots=True)
class CoordinatorIdentity:
    domain_id: str | None = None
    name: str = DEFAULT_DOMAIN_NAME

    def address(self, scheme: str) -> str:
        return f"{scheme}://{self.name}"


@dataclass(slots=True)
class VersionRecord:
    project: str
    platform: str
    version: str
    url: str = ""
    timestamp: str = ""
    notes: list[str] = field(default_factory=list)

    @property
    def ordinal(self) -> int:
        return int(self.version)

    @property
    def release_notes(self) -> str:
        return "\n".join(self.notes)
