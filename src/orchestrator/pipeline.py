"""PipelineExecutor - runs a declared stage list against isolated environments."""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from src.builder import Artifact, ArtifactBuilder
from src.credentials import SecretRedactor, SecretResolver, default_redactor
from src.deployment import CloudRunDeploymentTrigger, DeploymentTrigger, TriggerAck, TriggerError
from src.provisioner import EnvironmentHandle, EnvironmentProvisioner, ProvisionError
from src.registry import PublishAck, PublishError, RegistryPublisher

from .cancellation import CancellationToken
from .events import EventSink, LoggingEventSink, PipelineEvent
from .exceptions import PipelineError, StageCancelledError, StageTimeoutError
from .models import (
    BuildAction,
    PipelineResult,
    PipelineRun,
    PublishAction,
    RunStatus,
    StagePhase,
    StageResult,
    StageSpec,
    StageStatus,
    TriggerAction,
)

logger = logging.getLogger(__name__)

# How often a running action is checked for cancellation
CANCEL_POLL_SECONDS = 0.2

# Publish failure reasons that get another attempt
RETRYABLE_PUBLISH_REASONS = frozenset({"network", "auth"})


@dataclass
class _ActionOutcome:
    details: dict[str, Any] = field(default_factory=dict)
    artifact: Optional[Artifact] = None
    publish_ack: Optional[PublishAck] = None
    trigger_ack: Optional[TriggerAck] = None


@dataclass
class _RunState:
    """Outputs carried forward to later stages of the same run."""

    artifact: Optional[Artifact] = None
    publish_ack: Optional[PublishAck] = None
    trigger_ack: Optional[TriggerAck] = None

    def apply(self, outcome: _ActionOutcome) -> None:
        if outcome.artifact is not None:
            self.artifact = outcome.artifact
        if outcome.publish_ack is not None:
            self.publish_ack = outcome.publish_ack
        if outcome.trigger_ack is not None:
            self.trigger_ack = outcome.trigger_ack


class PipelineExecutor:
    """Runs pipeline stages strictly in order, one environment at a time.

    For every stage attempt the executor acquires an environment,
    resolves only the secrets the stage declares, runs the action and
    releases the environment before anything else happens. The first
    stage that fails stops the run; later stages are recorded as
    skipped and nothing already published is undone.

    Example:
        executor = PipelineExecutor(
            provisioner=DockerProvisioner(granted_capabilities=[...]),
            secret_resolver=SecretManagerResolver("my-project"),
        )
        result = executor.run(pipeline_run)
        print(result.status)
    """

    def __init__(
        self,
        provisioner: EnvironmentProvisioner,
        secret_resolver: SecretResolver,
        builder: Optional[ArtifactBuilder] = None,
        publisher: Optional[RegistryPublisher] = None,
        deployer: Optional[DeploymentTrigger] = None,
        event_sink: Optional[EventSink] = None,
        redactor: Optional[SecretRedactor] = None,
    ):
        self._provisioner = provisioner
        self._secret_resolver = secret_resolver
        self._builder = builder
        self._publisher = publisher
        self._deployer = deployer
        self._event_sink = event_sink or LoggingEventSink()
        self._redactor = redactor or default_redactor

    def _get_builder(self) -> ArtifactBuilder:
        if self._builder is None:
            self._builder = ArtifactBuilder(self._provisioner)
        return self._builder

    def _get_publisher(self) -> RegistryPublisher:
        if self._publisher is None:
            self._publisher = RegistryPublisher(self._provisioner)
        return self._publisher

    def _get_deployer(self) -> DeploymentTrigger:
        if self._deployer is None:
            self._deployer = CloudRunDeploymentTrigger()
        return self._deployer

    def _emit(self, event: str, run: PipelineRun, **fields: Any) -> None:
        self._event_sink.emit(PipelineEvent(event=event, run_number=run.run_number, **fields))

    def _phase(self, run: PipelineRun, stage: StageSpec, phase: StagePhase, attempt: int) -> None:
        self._emit("stage.phase", run, stage=stage.name, phase=phase.value, attempt=attempt)

    # -------------------- Stage actions --------------------

    def _run_build(
        self, run: PipelineRun, action: BuildAction, handle: EnvironmentHandle
    ) -> _ActionOutcome:
        artifact = self._get_builder().build(
            handle,
            run.source,
            run.run_number,
            repository=action.repository,
            dockerfile=action.dockerfile,
            build_args=action.build_args,
        )
        return _ActionOutcome(
            details={"artifact": artifact.reference, "digest": artifact.digest},
            artifact=artifact,
        )

    def _run_publish(
        self,
        action: PublishAction,
        handle: EnvironmentHandle,
        secrets: dict[str, str],
        state: _RunState,
    ) -> _ActionOutcome:
        if state.artifact is None:
            raise PublishError("No artifact was built before publishing", reason="missing_artifact")
        ack = self._get_publisher().publish(
            handle,
            state.artifact,
            registry_url=action.registry_url,
            username=action.username,
            password=secrets.get(action.password_secret),
            tags=action.tags,
        )
        return _ActionOutcome(
            details={"tags": list(ack.tags), "repo_digest": ack.repo_digest},
            publish_ack=ack,
        )

    def _run_trigger(
        self,
        action: TriggerAction,
        secrets: dict[str, str],
        state: _RunState,
        stop: Optional[threading.Event] = None,
    ) -> _ActionOutcome:
        credentials_info = None
        if action.credentials_secret:
            try:
                credentials_info = json.loads(secrets[action.credentials_secret])
                if not isinstance(credentials_info, dict):
                    raise ValueError("expected a JSON object")
            except (KeyError, ValueError) as e:
                raise TriggerError(
                    f"Credential '{action.credentials_secret}' is not a service account key",
                    reason="invalid",
                ) from e
        ack = self._get_deployer().trigger(
            action.target,
            artifact=state.artifact,
            publish_ack=state.publish_ack,
            credentials_info=credentials_info,
            stop_event=stop,
        )
        return _ActionOutcome(
            details={"image": ack.image, "changed": ack.changed, "operation": ack.operation},
            trigger_ack=ack,
        )

    def _execute_action(
        self,
        run: PipelineRun,
        stage: StageSpec,
        handle: EnvironmentHandle,
        secrets: dict[str, str],
        state: _RunState,
        stop: Optional[threading.Event] = None,
    ) -> _ActionOutcome:
        action = stage.action
        if isinstance(action, BuildAction):
            return self._run_build(run, action, handle)
        if isinstance(action, PublishAction):
            return self._run_publish(action, handle, secrets, state)
        if isinstance(action, TriggerAction):
            return self._run_trigger(action, secrets, state, stop)
        raise PipelineError(f"Stage '{stage.name}' has unsupported action {action!r}")

    def _execute_with_deadline(
        self,
        pool: ThreadPoolExecutor,
        stop: threading.Event,
        run: PipelineRun,
        stage: StageSpec,
        handle: EnvironmentHandle,
        secrets: dict[str, str],
        state: _RunState,
        token: CancellationToken,
    ) -> _ActionOutcome:
        """Run the action on a worker thread, honoring timeout and cancellation.

        On timeout or cancellation ``stop`` is set before raising. The
        caller joins the worker after releasing the environment, so an
        abandoned action has ended before the stage reports its status.
        """
        timeout = stage.retry.timeout_seconds
        deadline = time.monotonic() + timeout if timeout is not None else None
        future = pool.submit(self._execute_action, run, stage, handle, secrets, state, stop)
        while True:
            wait_for = CANCEL_POLL_SECONDS
            if deadline is not None:
                wait_for = max(0.0, min(wait_for, deadline - time.monotonic()))
            done, _ = wait([future], timeout=wait_for)
            if done:
                return future.result()
            if token.cancelled:
                stop.set()
                raise StageCancelledError(stage.name, token.reason)
            if deadline is not None and time.monotonic() >= deadline:
                stop.set()
                raise StageTimeoutError(stage.name, timeout)

    def _attempt(
        self,
        run: PipelineRun,
        stage: StageSpec,
        attempt: int,
        state: _RunState,
        token: CancellationToken,
        held_secrets: list[str],
    ) -> _ActionOutcome:
        """Run one attempt: acquire, resolve secrets, execute, release."""
        token.raise_if_cancelled(stage.name)
        self._phase(run, stage, StagePhase.ACQUIRING, attempt)
        handle = self._provisioner.acquire(stage.environment, stage.name)
        stop = threading.Event()
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{stage.name}")
        try:
            token.raise_if_cancelled(stage.name)
            self._phase(run, stage, StagePhase.SECRET_RESOLVING, attempt)
            secrets: dict[str, str] = {}
            if stage.secret_scopes:
                secrets = self._secret_resolver.resolve(
                    sorted(stage.secret_scopes), stage_name=stage.name
                )
                held_secrets.extend(secrets.values())
                self._redactor.register(secrets.values())

            token.raise_if_cancelled(stage.name)
            self._phase(run, stage, StagePhase.EXECUTING, attempt)
            return self._execute_with_deadline(
                pool, stop, run, stage, handle, secrets, state, token
            )
        finally:
            self._phase(run, stage, StagePhase.RELEASING, attempt)
            self._provisioner.release(handle)
            # Removing the environment ends any command still running in it
            pool.shutdown(wait=True)

    def _is_retryable(self, stage: StageSpec, error: Exception) -> bool:
        if isinstance(error, PublishError):
            return error.reason in RETRYABLE_PUBLISH_REASONS
        if isinstance(error, ProvisionError):
            return stage.retry.retry_on_provision_error
        return False

    def _run_stage(
        self,
        run: PipelineRun,
        stage: StageSpec,
        state: _RunState,
        token: CancellationToken,
    ) -> StageResult:
        result = StageResult(name=stage.name, kind=stage.kind, status=StageStatus.RUNNING)
        self._emit("stage.start", run, stage=stage.name, status=result.status.value)
        start = time.monotonic()
        held_secrets: list[str] = []
        try:
            while True:
                result.attempts += 1
                try:
                    outcome = self._attempt(run, stage, result.attempts, state, token, held_secrets)
                except StageCancelledError as e:
                    result.status = StageStatus.ABORTED
                    result.error = str(e)
                    result.error_type = type(e).__name__
                    logger.warning("Stage '%s' aborted: %s", stage.name, e)
                    break
                except Exception as e:
                    retry = (
                        self._is_retryable(stage, e)
                        and result.attempts < stage.retry.max_attempts
                    )
                    if not retry:
                        result.status = StageStatus.FAILED
                        result.error = self._redactor.redact(str(e))
                        result.error_type = type(e).__name__
                        logger.exception("Stage '%s' failed", stage.name)
                        break
                    delay = stage.retry.delay_for(result.attempts)
                    logger.warning(
                        "Stage '%s' attempt %d/%d failed (%s); retrying in %.1fs",
                        stage.name,
                        result.attempts,
                        stage.retry.max_attempts,
                        e,
                        delay,
                    )
                    if delay > 0 and token.wait(delay):
                        result.status = StageStatus.ABORTED
                        result.error = str(StageCancelledError(stage.name, token.reason))
                        result.error_type = StageCancelledError.__name__
                        break
                    continue

                state.apply(outcome)
                result.status = StageStatus.SUCCEEDED
                result.details = outcome.details
                break
        finally:
            self._redactor.discard(held_secrets)

        result.duration_seconds = round(time.monotonic() - start, 2)
        self._phase(run, stage, StagePhase.DONE, result.attempts)
        self._emit(
            "stage.end",
            run,
            stage=stage.name,
            status=result.status.value,
            attempt=result.attempts,
            duration_seconds=result.duration_seconds,
            error=result.error,
        )
        return result

    def run(
        self, pipeline_run: PipelineRun, cancel_token: Optional[CancellationToken] = None
    ) -> PipelineResult:
        """Execute every stage of the run in declared order.

        Args:
            pipeline_run: The run to execute.
            cancel_token: Token another thread may set to abort the run.

        Returns:
            PipelineResult with the run status and one StageResult per stage.
        """
        token = cancel_token or CancellationToken()
        result = PipelineResult(
            run_number=pipeline_run.run_number, started_at=datetime.now(timezone.utc)
        )
        result.status = RunStatus.RUNNING
        self._emit("run.start", pipeline_run, status=result.status.value)
        logger.info(
            "Run %d started for %s@%s: %s",
            pipeline_run.run_number,
            pipeline_run.source.branch,
            pipeline_run.source.commit,
            ", ".join(pipeline_run.stage_names),
        )

        start = time.monotonic()
        state = _RunState()
        for index, stage in enumerate(pipeline_run.stages):
            if token.cancelled:
                result.status = RunStatus.ABORTED
                remaining = pipeline_run.stages[index:]
            else:
                stage_result = self._run_stage(pipeline_run, stage, state, token)
                result.stages.append(stage_result)
                if stage_result.success:
                    continue
                aborted = stage_result.status is StageStatus.ABORTED
                result.status = RunStatus.ABORTED if aborted else RunStatus.FAILED
                remaining = pipeline_run.stages[index + 1:]

            for skipped in remaining:
                result.stages.append(
                    StageResult(name=skipped.name, kind=skipped.kind, status=StageStatus.SKIPPED)
                )
            break

        if result.status is RunStatus.RUNNING:
            result.status = RunStatus.SUCCEEDED
        result.artifact = state.artifact
        result.publish_ack = state.publish_ack
        result.trigger_ack = state.trigger_ack
        result.finished_at = datetime.now(timezone.utc)
        self._emit(
            "run.end",
            pipeline_run,
            status=result.status.value,
            duration_seconds=round(time.monotonic() - start, 2),
        )
        logger.info("Run %d finished: %s", pipeline_run.run_number, result.status.value)
        return result
