"""Push-event intake: run creation, run numbers and run supervision.

Public API:
    - PushEvent: Source-control push
    - PipelineTrigger: Creates runs for watched branches
    - RunNumberAllocator: Interface for monotonic run numbers
    - InMemoryRunNumberAllocator, FileRunNumberAllocator: Implementations
    - RunSupervisor: Executes runs concurrently, superseding older ones
"""

from .models import PushEvent
from .pipeline_trigger import PipelineTrigger
from .state import FileRunNumberAllocator, InMemoryRunNumberAllocator, RunNumberAllocator
from .supervisor import RunSupervisor

__all__ = [
    "PushEvent",
    "PipelineTrigger",
    "RunNumberAllocator",
    "InMemoryRunNumberAllocator",
    "FileRunNumberAllocator",
    "RunSupervisor",
]
