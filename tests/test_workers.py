from __future__ import annotations

from pathlib import Path
import unittest

from fakes import FakeLauncher
from stackmanager.process import ProcessSupervisor
from stackmanager.workers import WorkerRegistry, build_worker_args


class WorkerRegistryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.launcher = FakeLauncher()
        self.registry = WorkerRegistry(
            lambda name: ProcessSupervisor(name, Path("assignment-client"), launcher=self.launcher),
            stop_timeout=0.01,
        )

    def test_build_worker_args(self) -> None:
        self.assertEqual(build_worker_args(), ["-t", "2"])
        self.assertEqual(build_worker_args("scripts"), ["-t", "2", "--pool", "scripts"])

    def test_spawn_is_idempotent_per_task(self) -> None:
        first = self.registry.spawn("task-a", ["-t", "2"])
        second = self.registry.spawn("task-a", ["-t", "2", "--pool", "other"])
        self.assertEqual(first, second)
        self.assertEqual(len(self.registry), 1)
        self.assertEqual(len(self.launcher.processes), 1)

    def test_spawn_restarts_dead_task_with_its_own_args(self) -> None:
        self.registry.spawn("task-a", ["-t", "2", "--pool", "p1"])
        self.launcher.processes[0].returncode = 1
        self.registry.spawn("task-a", ["--ignored"])
        self.assertEqual(len(self.registry), 1)
        self.assertEqual(self.launcher.commands()[-1], ["assignment-client", "-t", "2", "--pool", "p1"])

    def test_stop_removes_and_missing_is_noop(self) -> None:
        self.registry.spawn("task-a", ["-t", "2"])
        self.registry.stop("task-a")
        self.registry.stop("task-a")
        self.registry.stop("unknown")
        self.assertNotIn("task-a", self.registry)
        self.assertTrue(self.launcher.processes[0].terminated)

    def test_stop_all_then_start_all_reuses_args(self) -> None:
        self.registry.spawn("task-a", ["-t", "2"])
        self.registry.spawn("task-b", ["-t", "2", "--pool", "p"])
        self.registry.stop_all()
        self.assertEqual(len(self.registry), 2)
        self.assertTrue(all(process.terminated for process in self.launcher.processes))

        self.registry.start_all()
        self.assertEqual(len(self.launcher.processes), 4)
        self.assertEqual(
            sorted(map(tuple, self.launcher.commands()[2:])),
            [("assignment-client", "-t", "2"), ("assignment-client", "-t", "2", "--pool", "p")],
        )

    def test_shutdown_tolerates_reentrant_removal(self) -> None:
        self.registry.spawn("task-a", ["-t", "2"])
        self.registry.spawn("task-b", ["-t", "2"])
        task_a = self.registry.get("task-a")
        assert task_a is not None
        original_stop = task_a.supervisor.stop

        def stop_and_remove_other(timeout: float = 0.0) -> None:
            original_stop(timeout)
            self.registry.stop("task-b")

        task_a.supervisor.stop = stop_and_remove_other  # type: ignore[method-assign]
        self.registry.shutdown()
        self.assertEqual(len(self.registry), 0)


if __name__ == "__main__":
    unittest.main()
