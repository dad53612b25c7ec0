"""Pipeline orchestrator for the deploy pipeline.

Runs a declared list of build, publish and trigger stages, each in its
own isolated environment, with fail-fast semantics and structured
per-stage results.
"""

from .cancellation import CancellationToken
from .events import EventSink, LoggingEventSink, PipelineEvent, RecordingEventSink
from .exceptions import (
    PipelineDefinitionError,
    PipelineError,
    StageCancelledError,
    StageTimeoutError,
)
from .models import (
    ActionKind,
    BuildAction,
    PipelineResult,
    PipelineRun,
    PublishAction,
    RetryPolicy,
    RunStatus,
    StageAction,
    StagePhase,
    StageResult,
    StageSpec,
    StageStatus,
    TriggerAction,
)
from .pipeline import PipelineExecutor

__all__ = [
    "PipelineExecutor",
    "PipelineRun",
    "PipelineResult",
    "StageSpec",
    "StageResult",
    "StageAction",
    "BuildAction",
    "PublishAction",
    "TriggerAction",
    "ActionKind",
    "RetryPolicy",
    "RunStatus",
    "StageStatus",
    "StagePhase",
    "CancellationToken",
    "EventSink",
    "LoggingEventSink",
    "RecordingEventSink",
    "PipelineEvent",
    "PipelineError",
    "PipelineDefinitionError",
    "StageTimeoutError",
    "StageCancelledError",
]
