"""RunSupervisor - runs independent pipeline runs concurrently."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from src.orchestrator import CancellationToken, PipelineExecutor, PipelineResult, PipelineRun

logger = logging.getLogger(__name__)


class RunSupervisor:
    """Executes runs on a thread pool, one thread per run.

    Runs share nothing but the external registry and deployment target.
    A newer run for a branch supersedes the older one still in flight:
    the older run's token is cancelled and it ends as aborted after
    releasing its environment.
    """

    def __init__(self, executor: PipelineExecutor, max_workers: int = 4):
        self._executor = executor
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="run")
        self._lock = threading.Lock()
        self._futures: dict[int, Future] = {}
        self._tokens: dict[int, CancellationToken] = {}
        self._latest_by_branch: dict[str, int] = {}

    def submit(self, run: PipelineRun) -> Future:
        """Start the run, superseding any in-flight run of the same branch."""
        token = CancellationToken()
        with self._lock:
            previous = self._latest_by_branch.get(run.source.branch)
            if previous is not None and not self._futures[previous].done():
                logger.info("Run %d supersedes run %d", run.run_number, previous)
                self._tokens[previous].cancel(f"superseded by run {run.run_number}")
            self._latest_by_branch[run.source.branch] = run.run_number
            self._tokens[run.run_number] = token
            future = self._pool.submit(self._executor.run, run, token)
            self._futures[run.run_number] = future
        return future

    def cancel(self, run_number: int, reason: str = "cancelled") -> bool:
        """Request cancellation of a run. Returns False for unknown runs."""
        with self._lock:
            token = self._tokens.get(run_number)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def wait(self, run_number: int, timeout: Optional[float] = None) -> PipelineResult:
        """Block until the run finishes and return its result."""
        with self._lock:
            future = self._futures[run_number]
        return future.result(timeout=timeout)

    def shutdown(self, cancel_running: bool = False) -> None:
        if cancel_running:
            with self._lock:
                tokens = list(self._tokens.values())
            for token in tokens:
                token.cancel("supervisor shutdown")
        self._pool.shutdown(wait=True)
