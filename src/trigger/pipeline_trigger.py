"""PipelineTrigger - turns push events into pipeline runs."""

import logging
from typing import Iterable, Optional, Sequence

from src.builder import SourceRef
from src.orchestrator import PipelineRun, StageSpec

from .models import PushEvent
from .state import InMemoryRunNumberAllocator, RunNumberAllocator

logger = logging.getLogger(__name__)


class PipelineTrigger:
    """Creates a PipelineRun for each push to a watched branch.

    Every accepted event gets the next run number from the allocator.
    Events for other branches are ignored.
    """

    def __init__(
        self,
        stages: Sequence[StageSpec],
        allocator: Optional[RunNumberAllocator] = None,
        branches: Optional[Iterable[str]] = None,
        context_path: str = "/workspace",
    ):
        """Initialize the trigger.

        Args:
            stages: Stage list every run executes.
            allocator: Source of run numbers. In-memory if not provided.
            branches: Branches that start runs. Defaults to "main".
            context_path: Build context path inside build environments.
        """
        self._stages = tuple(stages)
        self._allocator = allocator or InMemoryRunNumberAllocator()
        self._branches = frozenset(branches or ("main",))
        self._context_path = context_path

    def watches(self, branch: str) -> bool:
        return branch in self._branches

    def handle(self, event: PushEvent) -> Optional[PipelineRun]:
        """Create a run for the event, or None if its branch is not watched."""
        if not self.watches(event.branch):
            logger.info("Ignoring push to unwatched branch %s", event.branch)
            return None
        if not event.commit:
            logger.warning("Ignoring push to %s without a head commit", event.branch)
            return None

        run = PipelineRun(
            run_number=self._allocator.next_run_number(),
            stages=self._stages,
            source=SourceRef(
                repository_url=event.repository_url,
                branch=event.branch,
                commit=event.commit,
                context_path=self._context_path,
            ),
        )
        logger.info(
            "Created run %d for %s@%s", run.run_number, event.branch, event.commit[:12]
        )
        return run
