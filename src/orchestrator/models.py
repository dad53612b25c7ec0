"""Data models for pipeline definition and execution results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Mapping, Optional, Union

from src.builder import Artifact, SourceRef
from src.deployment import DeploymentTarget, TriggerAck
from src.provisioner import EnvironmentSpec
from src.registry import PublishAck

from .exceptions import PipelineDefinitionError


class RunStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED)


class StageStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class StagePhase(Enum):
    """Steps every stage attempt goes through, in order."""

    ACQUIRING = "acquiring"
    SECRET_RESOLVING = "secret_resolving"
    EXECUTING = "executing"
    RELEASING = "releasing"
    DONE = "done"


class ActionKind(Enum):
    BUILD = "build"
    PUBLISH = "publish"
    TRIGGER = "trigger"


@dataclass(frozen=True)
class RetryPolicy:
    """How often a stage is attempted and how long each attempt may take.

    Attributes:
        max_attempts: Total attempts, at least 1.
        backoff_seconds: Delay before the second attempt.
        backoff_multiplier: Growth factor of the delay per attempt.
        timeout_seconds: Limit for a single attempt's action. None disables it.
        retry_on_provision_error: Also retry when the environment could
            not be created.
    """

    max_attempts: int = 1
    backoff_seconds: float = 0.0
    backoff_multiplier: float = 2.0
    timeout_seconds: Optional[float] = None
    retry_on_provision_error: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise PipelineDefinitionError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise PipelineDefinitionError("backoff_seconds must not be negative")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise PipelineDefinitionError("timeout_seconds must be positive")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryPolicy":
        return cls(
            max_attempts=int(data.get("max_attempts", 1)),
            backoff_seconds=float(data.get("backoff_seconds", 0.0)),
            backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            timeout_seconds=(
                float(data["timeout_seconds"])
                if data.get("timeout_seconds") is not None
                else None
            ),
            retry_on_provision_error=bool(data.get("retry_on_provision_error", False)),
        )


@dataclass(frozen=True)
class BuildAction:
    """Build the run's source into an artifact."""

    kind: ClassVar[ActionKind] = ActionKind.BUILD

    repository: str
    dockerfile: str = "Dockerfile"
    build_args: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PublishAction:
    """Push the run's artifact to a registry.

    Attributes:
        registry_url: Registry host.
        username: Registry user name.
        password_secret: Name of the credential holding the password.
        tags: Tags to push. None means [run number, "latest"].
    """

    kind: ClassVar[ActionKind] = ActionKind.PUBLISH

    registry_url: str
    username: str
    password_secret: str
    tags: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class TriggerAction:
    """Ask a deployment target to converge on the newest artifact.

    Attributes:
        target: Service to update.
        credentials_secret: Credential holding a service account key
            for the update, if the ambient identity should not be used.
    """

    kind: ClassVar[ActionKind] = ActionKind.TRIGGER

    target: DeploymentTarget
    credentials_secret: Optional[str] = None


StageAction = Union[BuildAction, PublishAction, TriggerAction]


@dataclass(frozen=True)
class StageSpec:
    """Declarative description of one pipeline stage.

    Attributes:
        name: Unique name within the run.
        environment: Environment the stage's action runs in.
        action: What the stage does.
        secret_scopes: Credentials the stage may read. No other
            credential value ever reaches the stage.
        retry: Attempts, backoff and timeout.
    """

    name: str
    environment: EnvironmentSpec
    action: StageAction
    secret_scopes: frozenset[str] = frozenset()
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise PipelineDefinitionError("Stage name must be a non-empty string")
        required = self.required_secrets
        missing = required - self.secret_scopes
        if missing:
            raise PipelineDefinitionError(
                f"Stage '{self.name}' uses undeclared secrets: {sorted(missing)}"
            )

    @property
    def kind(self) -> ActionKind:
        return self.action.kind

    @property
    def required_secrets(self) -> frozenset[str]:
        if isinstance(self.action, PublishAction):
            return frozenset({self.action.password_secret})
        if isinstance(self.action, TriggerAction) and self.action.credentials_secret:
            return frozenset({self.action.credentials_secret})
        return frozenset()


@dataclass(frozen=True)
class PipelineRun:
    """Immutable context of one pipeline execution.

    Created when a push triggers the pipeline and handed to every stage
    in place of shared pipeline-wide variables.

    Attributes:
        run_number: Monotonically increasing build number.
        stages: Stages in execution order.
        source: Revision being built.
        created_at: When the run was created.
    """

    run_number: int
    stages: tuple[StageSpec, ...]
    source: SourceRef
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.run_number < 1:
            raise PipelineDefinitionError("run_number must be positive")
        if not self.stages:
            raise PipelineDefinitionError("A pipeline needs at least one stage")

        seen: set[str] = set()
        built = False
        for stage in self.stages:
            if stage.name in seen:
                raise PipelineDefinitionError(f"Duplicate stage name: {stage.name}")
            seen.add(stage.name)
            if stage.kind is ActionKind.BUILD:
                if built:
                    raise PipelineDefinitionError("A pipeline may build only one artifact")
                built = True
            elif stage.kind is ActionKind.PUBLISH and not built:
                raise PipelineDefinitionError(
                    f"Publish stage '{stage.name}' has no preceding build stage"
                )

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]


@dataclass
class StageResult:
    """Outcome of a single pipeline stage."""

    name: str
    kind: ActionKind
    status: StageStatus
    attempts: int = 0
    duration_seconds: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None

    @property
    def success(self) -> bool:
        return self.status is StageStatus.SUCCEEDED

    @property
    def skipped(self) -> bool:
        return self.status is StageStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration_seconds": self.duration_seconds,
            "details": self.details,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class PipelineResult:
    """Aggregate result of a pipeline run."""

    run_number: int
    started_at: datetime
    status: RunStatus = RunStatus.PENDING
    finished_at: datetime | None = None
    stages: list[StageResult] = field(default_factory=list)
    artifact: Optional[Artifact] = None
    publish_ack: Optional[PublishAck] = None
    trigger_ack: Optional[TriggerAck] = None

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    def stage(self, name: str) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_number": self.run_number,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "stages": [s.to_dict() for s in self.stages],
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "publish_ack": self.publish_ack.to_dict() if self.publish_ack else None,
            "trigger_ack": self.trigger_ack.to_dict() if self.trigger_ack else None,
        }
