from __future__ import annotations

from pathlib import Path
import unittest

from fakes import FakeLauncher, Routes
from stackmanager.errors import StackManagerError
from stackmanager.events import IDENTITY_MISSING, STACK_STATE_CHANGED, Notifier
from stackmanager.identity import IdentityResolver
from stackmanager.models import IdentityStage
from stackmanager.process import ProcessSupervisor
from stackmanager.stack import StackController
from stackmanager.workers import WorkerRegistry


def build_stack(launcher: FakeLauncher, notifier: Notifier, identity: IdentityResolver | None = None) -> StackController:
    workers = WorkerRegistry(
        lambda name: ProcessSupervisor(name, Path("assignment-client"), launcher=launcher),
        stop_timeout=0.01,
    )
    return StackController(
        ProcessSupervisor("coordinator", Path("domain-server"), launcher=launcher),
        ProcessSupervisor("monitor", Path("assignment-client"), launcher=launcher),
        workers,
        notifier,
        monitor_pool_size=4,
        stop_timeout=0.01,
        identity=identity,
    )


class StackControllerTest(unittest.TestCase):
    def test_toggle_starts_and_stops_everything(self) -> None:
        launcher = FakeLauncher()
        notifier = Notifier()
        states: list[bool] = []
        notifier.subscribe(STACK_STATE_CHANGED, lambda running: states.append(running))
        stack = build_stack(launcher, notifier)

        task = stack.start_worker(task_id="script-1", pool="scripts")
        self.assertEqual(task.args, ["-t", "2", "--pool", "scripts"])
        stack.toggle(False)
        self.assertFalse(stack.workers.get("script-1").supervisor.is_running())

        stack.toggle(True)
        self.assertTrue(stack.running)
        self.assertIn(["domain-server"], launcher.commands())
        self.assertIn(["assignment-client", "-n", "4"], launcher.commands())
        self.assertTrue(stack.workers.get("script-1").supervisor.is_running())

        stack.toggle(False)
        self.assertFalse(stack.coordinator.is_running())
        self.assertFalse(stack.monitor.is_running())
        self.assertEqual(len(stack.workers), 1)
        self.assertEqual(states, [False, True, False])

    def test_generated_task_id(self) -> None:
        stack = build_stack(FakeLauncher(), Notifier())
        task = stack.start_worker()
        self.assertIn(task.task_id, stack.workers)
        stack.stop_worker(task.task_id)
        self.assertEqual(len(stack.workers), 0)

    def test_unregistered_worker_raises(self) -> None:
        class DroppingRegistry(WorkerRegistry):
            def spawn(self, task_id: str, args: list[str], pool: str | None = None) -> int:
                return 0

        stack = StackController(
            ProcessSupervisor("coordinator", Path("domain-server"), launcher=FakeLauncher()),
            ProcessSupervisor("monitor", Path("assignment-client"), launcher=FakeLauncher()),
            DroppingRegistry(lambda name: ProcessSupervisor(name, Path("assignment-client"))),
            Notifier(),
        )
        with self.assertRaises(StackManagerError):
            stack.start_worker(task_id="lost")

    def test_shutdown_forgets_workers(self) -> None:
        stack = build_stack(FakeLauncher(), Notifier())
        stack.toggle(True)
        stack.start_worker(task_id="a")
        stack.shutdown()
        self.assertEqual(len(stack.workers), 0)
        self.assertFalse(stack.running)
        self.assertFalse(stack.coordinator.is_running())


class StackIdentityScheduleTest(unittest.IsolatedAsyncioTestCase):
    async def test_first_coordinator_start_schedules_identity(self) -> None:
        routes = Routes()
        routes.add("http://localhost:40100/id", content=b"not-a-uuid")
        notifier = Notifier()
        async with routes.fetcher() as http:
            identity = IdentityResolver(
                http,
                "http://localhost:40100",
                "https://directory.example.com/api/v1",
                notifier,
                initial_delay=0.0,
            )
            stack = build_stack(FakeLauncher(), notifier, identity=identity)
            stack.toggle(True)
            task = identity._inflight
            self.assertIsNotNone(task)
            await task
            self.assertTrue(routes.requested("http://localhost:40100/id"))
            stack.shutdown()

    async def test_unusable_identity_is_not_requested_again(self) -> None:
        routes = Routes()
        routes.add("http://localhost:40100/id", content=b"abc-123")
        notifier = Notifier()
        missing: list[bool] = []
        notifier.subscribe(IDENTITY_MISSING, lambda: missing.append(True))
        async with routes.fetcher() as http:
            identity = IdentityResolver(
                http,
                "http://localhost:40100",
                "https://directory.example.com/api/v1",
                notifier,
                initial_delay=0.0,
            )
            stack = build_stack(FakeLauncher(), notifier, identity=identity)
            for _ in range(3):
                stack.toggle(True)
                if identity._inflight is not None:
                    await identity._inflight
                stack.toggle(False)
            stack.shutdown()
        id_requests = [request for request in routes.requests if request.url.path == "/id"]
        self.assertEqual(len(id_requests), 1)
        self.assertEqual(missing, [True])
        self.assertEqual(identity.stage, IdentityStage.ID_KNOWN)


if __name__ == "__main__":
    unittest.main()
