from __future__ import annotations

import logging
import uuid
from typing import Callable

from .app_logging import get_logger, log_with_fields
from .models import WorkerTask
from .process import DEFAULT_STOP_TIMEOUT, ProcessSupervisor

SupervisorFactory = Callable[[str], ProcessSupervisor]

SCRIPTED_WORKER_ARGS = ["-t", "2"]


def build_worker_args(pool: str | None = None) -> list[str]:
    args = list(SCRIPTED_WORKER_ARGS)
    if pool:
        args += ["--pool", pool]
    return args


def new_task_id() -> str:
    return str(uuid.uuid4())


class WorkerRegistry:
    """Keyed set of scripted worker processes, at most one per task id."""

    def __init__(
        self,
        factory: SupervisorFactory,
        *,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.factory = factory
        self.stop_timeout = stop_timeout
        self.logger = logger or get_logger("workers")
        self._tasks: dict[str, WorkerTask] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> WorkerTask | None:
        return self._tasks.get(task_id)

    def spawn(self, task_id: str, args: list[str], pool: str | None = None) -> int:
        """Start the worker for ``task_id``; an existing entry keeps its own arguments."""
        existing = self._tasks.get(task_id)
        if existing is not None:
            return existing.supervisor.start(existing.args)

        supervisor = self.factory(f"worker-{task_id}")
        task = WorkerTask(task_id=task_id, args=list(args), supervisor=supervisor, pool=pool)
        self._tasks[task_id] = task
        pid = supervisor.start(task.args)
        log_with_fields(
            self.logger,
            logging.INFO,
            "worker_spawned",
            task_id=task_id,
            pool=pool,
            pid=pid,
        )
        return pid

    def stop(self, task_id: str) -> None:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return
        task.supervisor.stop(self.stop_timeout)
        log_with_fields(self.logger, logging.INFO, "worker_removed", task_id=task_id)

    def stop_all(self) -> None:
        """Stop every worker but keep the entries so ``start_all`` can bring them back."""
        for task_id in list(self._tasks):
            task = self._tasks.get(task_id)
            if task is not None:
                task.supervisor.stop(self.stop_timeout)

    def start_all(self) -> None:
        for task_id in list(self._tasks):
            task = self._tasks.get(task_id)
            if task is not None:
                task.supervisor.start(task.args)

    def shutdown(self) -> None:
        """Stop and forget every worker."""
        for task_id in list(self._tasks):
            self.stop(task_id)
