from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .app_logging import get_logger, log_with_fields
from .errors import StackManagerError
from .events import STACK_STATE_CHANGED, Notifier
from .models import IdentityStage, WorkerTask
from .process import DEFAULT_STOP_TIMEOUT, ProcessSupervisor
from .workers import WorkerRegistry, build_worker_args, new_task_id

if TYPE_CHECKING:
    from .identity import IdentityResolver


class StackController:
    def __init__(
        self,
        coordinator: ProcessSupervisor,
        monitor: ProcessSupervisor,
        workers: WorkerRegistry,
        notifier: Notifier,
        *,
        monitor_pool_size: int = 4,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        identity: IdentityResolver | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.monitor = monitor
        self.workers = workers
        self.notifier = notifier
        self.monitor_pool_size = monitor_pool_size
        self.stop_timeout = stop_timeout
        self.identity = identity
        self.logger = logger or get_logger("stack")
        self.running = False

    def toggle(self, start: bool) -> None:
        self.toggle_coordinator(start)
        self.toggle_monitor(start)
        self.toggle_workers(start)
        self.running = start
        log_with_fields(self.logger, logging.INFO, "stack_toggled", running=start)
        self.notifier.emit(STACK_STATE_CHANGED, running=start)

    def toggle_coordinator(self, start: bool) -> None:
        if not start:
            self.coordinator.stop(self.stop_timeout)
            return
        self.coordinator.start([])
        if self.identity is not None and self.identity.stage is IdentityStage.NO_ID:
            # the coordinator needs a moment before its listener answers
            self.identity.resolve_soon()

    def toggle_monitor(self, start: bool) -> None:
        if start:
            self.monitor.start(["-n", str(self.monitor_pool_size)])
        else:
            self.monitor.stop(self.stop_timeout)

    def toggle_workers(self, start: bool) -> None:
        if start:
            self.workers.start_all()
        else:
            self.workers.stop_all()

    def start_worker(self, task_id: str | None = None, pool: str | None = None) -> WorkerTask:
        task_id = task_id or new_task_id()
        self.workers.spawn(task_id, build_worker_args(pool), pool=pool)
        task = self.workers.get(task_id)
        if task is None:
            raise StackManagerError(f"worker {task_id} was not registered")
        return task

    def stop_worker(self, task_id: str) -> None:
        self.workers.stop(task_id)

    def shutdown(self) -> None:
        log_with_fields(self.logger, logging.INFO, "stack_shutdown", workers=len(self.workers))
        self.workers.shutdown()
        self.coordinator.stop(self.stop_timeout)
        self.monitor.stop(self.stop_timeout)
        if self.running:
            self.running = False
            self.notifier.emit(STACK_STATE_CHANGED, running=False)
