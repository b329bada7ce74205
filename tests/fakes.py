from __future__ import annotations

import itertools
import subprocess
import time
from pathlib import Path
from typing import Any, Callable

import httpx

from stackmanager.config import AppConfig, ArtifactConfig, PathsConfig, StackConfig
from stackmanager.models import ArtifactKind
from stackmanager.remote import HttpFetcher

_pids = itertools.count(4000)

BASE = "https://downloads.example.com"


class FakeProcess:
    def __init__(self, args: list[str], ignore_terminate: bool = False, blocking_wait: bool = False) -> None:
        self.args = args
        self.blocking_wait = blocking_wait
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.ignore_terminate = ignore_terminate
        self.terminated = False
        self.killed = False

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_terminate:
            self.returncode = -15

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def wait(self, timeout: float | None = None) -> int:
        if self.returncode is None:
            if self.blocking_wait and timeout:
                time.sleep(timeout)
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode


class FakeLauncher:
    def __init__(self, ignore_terminate: bool = False, blocking_wait: bool = False) -> None:
        self.ignore_terminate = ignore_terminate
        self.blocking_wait = blocking_wait
        self.processes: list[FakeProcess] = []

    def __call__(self, args: list[str], **kwargs: Any) -> FakeProcess:
        process = FakeProcess(args, ignore_terminate=self.ignore_terminate, blocking_wait=self.blocking_wait)
        self.processes.append(process)
        return process

    def commands(self) -> list[list[str]]:
        return [process.args for process in self.processes]


class RecordingSink:
    def __init__(self) -> None:
        self.attached: list[str] = []
        self.detached: list[str] = []

    def attach(self, name: str, log_path: Path | None) -> None:
        self.attached.append(name)

    def detach(self, name: str) -> None:
        self.detached.append(name)


def make_config(root: Path, *, build_directory: Path | None = None, platform: str = "ubuntu") -> AppConfig:
    paths = PathsConfig(
        launch=root / "launch",
        resources=root / "resources",
        logs=root / "logs",
        log=root / "logs" / "last_run.log",
    )
    for directory in [paths.launch, paths.resources, paths.logs]:
        directory.mkdir(parents=True, exist_ok=True)
    artifacts = {
        kind: ArtifactConfig(
            kind=kind,
            url=f"{BASE}/{kind.value}.bin",
            checksum_url=f"{BASE}/{kind.value}.md5",
        )
        for kind in ArtifactKind
    }
    return AppConfig(
        paths=paths,
        artifacts=artifacts,
        stack=StackConfig(build_directory=build_directory, stop_timeout_seconds=0.1),
        platform=platform,
    )


Handler = Callable[[httpx.Request], httpx.Response]


class Routes:
    """Maps URLs to canned responses and records every request."""

    def __init__(self) -> None:
        self.responses: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, status_code: int = 200, content: bytes | str = b"", json: Any = None) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status_code, json=json)
            return httpx.Response(status_code, content=content)

        self.responses[url] = handler

    def fail(self, url: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.responses[url] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?", 1)[0]
        handler = self.responses.get(url)
        if handler is None:
            raise httpx.ConnectError(f"no route to {url}", request=request)
        return handler(request)

    def requested(self, url: str) -> bool:
        return any(str(request.url).split("?", 1)[0] == url for request in self.requests)

    def fetcher(self) -> HttpFetcher:
        return HttpFetcher(transport=httpx.MockTransport(self))
