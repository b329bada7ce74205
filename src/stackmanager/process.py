from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import IO, Any, Callable, Protocol

from .app_logging import get_logger, log_with_fields
from .models import ProcessState

NOT_RUNNING_PID = 0
DEFAULT_STOP_TIMEOUT = 5.0

Launcher = Callable[..., Any]


class OutputSink(Protocol):
    """Consumer of a supervised process's output (log viewer, tailer...)."""

    def attach(self, name: str, log_path: Path | None) -> None: ...

    def detach(self, name: str) -> None: ...


class ProcessSupervisor:
    """Lifecycle of one named child process.

    ``launcher`` defaults to ``subprocess.Popen``; anything returning an
    object with ``pid``, ``poll``, ``terminate``, ``kill`` and ``wait`` works.
    """

    def __init__(
        self,
        name: str,
        executable: Path,
        *,
        log_dir: Path | None = None,
        sink: OutputSink | None = None,
        launcher: Launcher = subprocess.Popen,
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.executable = executable
        self.log_dir = log_dir
        self.sink = sink
        self.launcher = launcher
        self.logger = logger or get_logger("process")
        self.state = ProcessState.NOT_STARTED
        self.last_args: list[str] = []
        self._handle: Any = None
        self._log_handle: IO[bytes] | None = None
        self._attached = False

    @property
    def log_path(self) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / f"{self.name}.log"

    def is_running(self) -> bool:
        if self._handle is None:
            return False
        if self._handle.poll() is None:
            return True
        if self.state is ProcessState.RUNNING:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "process_exited",
                process=self.name,
                returncode=self._handle.returncode,
            )
            self.state = ProcessState.STOPPED
            self._detach_output()
        return False

    def process_id(self) -> int:
        if not self.is_running():
            return NOT_RUNNING_PID
        return int(self._handle.pid)

    def start(self, args: list[str] | None = None, *, restart: bool = False) -> int:
        """Launch with ``args`` (or the last used ones); a live process is kept unless ``restart``."""
        if self.is_running():
            if not restart:
                return self.process_id()
            self.stop()
        if args is not None:
            self.last_args = list(args)

        command = [str(self.executable), *self.last_args]
        stdout: Any = subprocess.DEVNULL
        log_path = self.log_path
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_handle = log_path.open("ab")
            stdout = self._log_handle
        try:
            self._handle = self.launcher(command, stdout=stdout, stderr=subprocess.STDOUT)
        except OSError as exc:
            self._close_log()
            self.state = ProcessState.STOPPED
            log_with_fields(
                self.logger,
                logging.ERROR,
                "process_start_failed",
                process=self.name,
                command=command,
                error=str(exc),
            )
            return NOT_RUNNING_PID

        self.state = ProcessState.RUNNING
        if self.sink is not None:
            self.sink.attach(self.name, log_path)
            self._attached = True
        log_with_fields(
            self.logger,
            logging.INFO,
            "process_started",
            process=self.name,
            pid=self._handle.pid,
            args=self.last_args,
        )
        return int(self._handle.pid)

    def terminate(self) -> None:
        if self.is_running():
            self.state = ProcessState.STOPPING
            self._handle.terminate()

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Graceful stop, bounded wait, then force-kill."""
        if self._handle is None:
            return
        if self.is_running():
            self.terminate()
            try:
                self._handle.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "process_kill",
                    process=self.name,
                    pid=self._handle.pid,
                    timeout=timeout,
                )
                self._handle.kill()
                self._handle.wait()
            log_with_fields(
                self.logger,
                logging.INFO,
                "process_stopped",
                process=self.name,
                returncode=self._handle.returncode,
            )
        self.state = ProcessState.STOPPED
        self._detach_output()

    def _detach_output(self) -> None:
        if self._attached and self.sink is not None:
            self.sink.detach(self.name)
        self._attached = False
        self._close_log()

    def _close_log(self) -> None:
        if self._log_handle is not None:
            self._log_handle.close()
            self._log_handle = None
