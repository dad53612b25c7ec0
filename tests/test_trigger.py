"""Unit tests for push-event intake and run supervision."""

import json
import multiprocessing
import threading

import pytest

from src.orchestrator import RunStatus
from src.trigger import (
    FileRunNumberAllocator,
    InMemoryRunNumberAllocator,
    PipelineTrigger,
    PushEvent,
    RunSupervisor,
)
from tests.pipeline_test_helpers import make_run, make_stages


def _allocate_run_numbers(path, count, results):
    allocator = FileRunNumberAllocator(path)
    results.put([allocator.next_run_number() for _ in range(count)])


class TestPushEvent:
    def test_from_webhook(self):
        event = PushEvent.from_webhook(
            {
                "ref": "refs/heads/main",
                "after": "9f1c2e",
                "repository": {"clone_url": "https://example.com/acme/web.git"},
            }
        )
        assert event.branch == "main"
        assert event.commit == "9f1c2e"
        assert event.repository_url == "https://example.com/acme/web.git"

    def test_from_webhook_falls_back_to_url(self):
        event = PushEvent.from_webhook(
            {"ref": "release", "after": "abc", "repository": {"url": "https://example.com/r"}}
        )
        assert event.branch == "release"
        assert event.repository_url == "https://example.com/r"

    def test_from_webhook_without_repository(self):
        event = PushEvent.from_webhook({"ref": "refs/heads/main", "after": "abc"})
        assert event.repository_url == ""


class TestRunNumberAllocators:
    def test_in_memory_is_monotonic(self):
        allocator = InMemoryRunNumberAllocator()
        assert [allocator.next_run_number() for _ in range(3)] == [1, 2, 3]
        assert allocator.last_run_number() == 3

    def test_in_memory_start(self):
        allocator = InMemoryRunNumberAllocator(start=41)
        assert allocator.next_run_number() == 42

    def test_file_allocator_persists(self, tmp_path):
        path = tmp_path / "state" / "runs.json"
        first = FileRunNumberAllocator(path)
        assert first.last_run_number() == 0
        assert first.next_run_number() == 1
        assert first.next_run_number() == 2

        second = FileRunNumberAllocator(path)
        assert second.next_run_number() == 3
        assert json.loads(path.read_text()) == {"last_run_number": 3}

    def test_file_allocator_threads_get_unique_numbers(self, tmp_path):
        allocator = FileRunNumberAllocator(tmp_path / "runs.json")
        numbers = []
        lock = threading.Lock()

        def take():
            for _ in range(10):
                value = allocator.next_run_number()
                with lock:
                    numbers.append(value)

        threads = [threading.Thread(target=take) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(numbers) == list(range(1, 41))

    def test_file_allocator_processes_get_unique_numbers(self, tmp_path):
        ctx = multiprocessing.get_context("fork")
        results = ctx.Queue()
        path = tmp_path / "runs.json"
        workers = [
            ctx.Process(target=_allocate_run_numbers, args=(path, 25, results))
            for _ in range(6)
        ]
        for worker in workers:
            worker.start()

        numbers = []
        for _ in workers:
            numbers.extend(results.get(timeout=30))
        for worker in workers:
            worker.join(timeout=30)

        assert [w.exitcode for w in workers] == [0] * 6
        assert sorted(numbers) == list(range(1, 151))
        assert json.loads(path.read_text()) == {"last_run_number": 150}
        assert not list(tmp_path.glob("*.tmp"))


class TestPipelineTrigger:
    def test_creates_run_for_watched_branch(self):
        trigger = PipelineTrigger(make_stages(), allocator=InMemoryRunNumberAllocator(start=41))

        run = trigger.handle(
            PushEvent(repository_url="https://example.com/web.git", branch="main", commit="abc")
        )

        assert run.run_number == 42
        assert run.source.commit == "abc"
        assert run.source.context_path == "/workspace"
        assert run.stage_names == ["build", "publish", "deploy"]

    def test_ignores_other_branches(self):
        allocator = InMemoryRunNumberAllocator()
        trigger = PipelineTrigger(make_stages(), allocator=allocator)

        assert trigger.handle(PushEvent(repository_url="", branch="feature/x", commit="abc")) is None
        assert allocator.last_run_number() == 0

    def test_ignores_push_without_commit(self):
        trigger = PipelineTrigger(make_stages())
        assert trigger.handle(PushEvent(repository_url="", branch="main", commit="")) is None

    def test_custom_branches(self):
        trigger = PipelineTrigger(make_stages(), branches=["release"])
        assert trigger.watches("release") is True
        assert trigger.watches("main") is False

    def test_consecutive_runs_have_increasing_numbers(self):
        trigger = PipelineTrigger(make_stages())
        first = trigger.handle(PushEvent(repository_url="", branch="main", commit="a"))
        second = trigger.handle(PushEvent(repository_url="", branch="main", commit="b"))
        assert second.run_number > first.run_number


class BlockingExecutor:
    """Executor stand-in whose runs last until cancelled or released."""

    def __init__(self):
        self.started = {}
        self.release = threading.Event()

    def run(self, pipeline_run, cancel_token=None):
        started = self.started.setdefault(pipeline_run.run_number, threading.Event())
        started.set()
        while not self.release.is_set():
            if cancel_token.wait(0.01):
                return RunStatus.ABORTED, cancel_token.reason
        return RunStatus.SUCCEEDED, None

    def wait_started(self, run_number, timeout=5):
        started = self.started.setdefault(run_number, threading.Event())
        assert started.wait(timeout)


class TestRunSupervisor:
    def test_newer_run_supersedes_older_on_same_branch(self):
        executor = BlockingExecutor()
        supervisor = RunSupervisor(executor)
        try:
            supervisor.submit(make_run(run_number=1))
            executor.wait_started(1)
            supervisor.submit(make_run(run_number=2))

            status, reason = supervisor.wait(1, timeout=5)
            assert status is RunStatus.ABORTED
            assert reason == "superseded by run 2"

            executor.release.set()
            assert supervisor.wait(2, timeout=5) == (RunStatus.SUCCEEDED, None)
        finally:
            executor.release.set()
            supervisor.shutdown()

    def test_cancel_unknown_run(self):
        supervisor = RunSupervisor(BlockingExecutor())
        try:
            assert supervisor.cancel(99) is False
        finally:
            supervisor.shutdown()

    def test_cancel_running_run(self):
        executor = BlockingExecutor()
        supervisor = RunSupervisor(executor)
        try:
            supervisor.submit(make_run(run_number=5))
            executor.wait_started(5)
            assert supervisor.cancel(5, reason="operator request") is True
            assert supervisor.wait(5, timeout=5) == (RunStatus.ABORTED, "operator request")
        finally:
            executor.release.set()
            supervisor.shutdown()

    def test_shutdown_cancels_running(self):
        executor = BlockingExecutor()
        supervisor = RunSupervisor(executor)
        future = supervisor.submit(make_run(run_number=7))
        executor.wait_started(7)

        supervisor.shutdown(cancel_running=True)

        assert future.result(timeout=0)[0] is RunStatus.ABORTED

    def test_wait_unknown_run(self):
        supervisor = RunSupervisor(BlockingExecutor())
        try:
            with pytest.raises(KeyError):
                supervisor.wait(1)
        finally:
            supervisor.shutdown()
