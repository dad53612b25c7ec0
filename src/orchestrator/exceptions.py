"""Exceptions for the pipeline orchestrator."""


class PipelineError(Exception):
    """Base exception for pipeline orchestration errors."""

    pass


class PipelineDefinitionError(PipelineError):
    """Raised when a stage list or pipeline definition is invalid."""

    pass


class StageTimeoutError(PipelineError):
    """Raised when a stage attempt exceeds its timeout."""

    def __init__(self, stage_name: str, timeout_seconds: float):
        self.stage_name = stage_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Stage '{stage_name}' timed out after {timeout_seconds}s")


class StageCancelledError(PipelineError):
    """Raised inside a stage when its run was cancelled."""

    def __init__(self, stage_name: str, reason: str | None = None):
        self.stage_name = stage_name
        self.reason = reason
        suffix = f": {reason}" if reason else ""
        super().__init__(f"Stage '{stage_name}' cancelled{suffix}")
