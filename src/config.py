"""Configuration for the deploy pipeline.

Settings come from environment variables (the CLI loads a ``.env`` file
first). The stage list is either the built-in build/publish/trigger
sequence or a JSON pipeline definition file.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from src.deployment import DeploymentTarget, ImagePolicy
from src.orchestrator import (
    BuildAction,
    PipelineDefinitionError,
    PublishAction,
    RetryPolicy,
    StageAction,
    StageSpec,
    TriggerAction,
)
from src.provisioner import Capability, EnvironmentSpec, MountRequest


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


@dataclass(frozen=True)
class PipelineConfig:
    """Settings for the default three-stage pipeline.

    Attributes:
        repository: Image repository, e.g. "us-docker.pkg.dev/proj/repo/app".
        registry_url: Registry host. Defaults to the repository's host.
        registry_username: Registry login user.
        registry_secret: Credential holding the registry password.
        tool_image: Image every stage environment runs.
        docker_socket: Host path of the container runtime socket.
        workspace: Host checkout mounted as the build context.
        branch: Branch that triggers runs.
        state_path: File holding the last run number.
        publish_attempts: Attempts for the publish stage.
        stage_timeout: Per-attempt timeout in seconds, None for no limit.
        deploy_target: Service updated by the trigger stage.
        deploy_credentials_secret: Credential holding a deploy service
            account key, or None to use the ambient identity.
        secret_project: Project owning Secret Manager secrets.
    """

    repository: str
    registry_url: str
    registry_username: str
    registry_secret: str
    tool_image: str
    docker_socket: str
    workspace: str
    branch: str
    state_path: Path
    publish_attempts: int
    stage_timeout: Optional[float]
    deploy_target: DeploymentTarget
    deploy_credentials_secret: Optional[str]
    secret_project: str

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build configuration from environment variables.

        Raises:
            ConfigError: If a required variable is missing or malformed.
        """
        env = os.environ if environ is None else environ

        def required(name: str) -> str:
            value = env.get(name, "").strip()
            if not value:
                raise ConfigError(f"Environment variable {name} is required")
            return value

        repository = required("PIPELINE_REPOSITORY")
        policy_name = env.get("DEPLOY_IMAGE_POLICY", ImagePolicy.VERSION.value).lower()
        try:
            image_policy = ImagePolicy(policy_name)
        except ValueError as e:
            raise ConfigError(f"Unknown DEPLOY_IMAGE_POLICY: {policy_name}") from e

        try:
            publish_attempts = int(env.get("PIPELINE_PUBLISH_ATTEMPTS", "3"))
            timeout_raw = env.get("PIPELINE_STAGE_TIMEOUT", "1800")
            stage_timeout = float(timeout_raw) if timeout_raw else None
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        deploy_project = required("DEPLOY_CLUSTER")
        return cls(
            repository=repository,
            registry_url=env.get("PIPELINE_REGISTRY_URL") or repository.split("/", 1)[0],
            registry_username=env.get("PIPELINE_REGISTRY_USERNAME", "_json_key"),
            registry_secret=env.get("PIPELINE_REGISTRY_SECRET", "registry-password"),
            tool_image=env.get("PIPELINE_TOOL_IMAGE", "docker:27-cli"),
            docker_socket=env.get("PIPELINE_DOCKER_SOCKET", "/var/run/docker.sock"),
            workspace=env.get("PIPELINE_WORKSPACE", os.getcwd()),
            branch=env.get("PIPELINE_BRANCH", "main"),
            state_path=Path(env.get("PIPELINE_STATE_PATH", ".pipeline/state.json")),
            publish_attempts=publish_attempts,
            stage_timeout=stage_timeout,
            deploy_target=DeploymentTarget(
                cluster=deploy_project,
                service=required("DEPLOY_SERVICE"),
                region=required("DEPLOY_REGION"),
                image_policy=image_policy,
            ),
            deploy_credentials_secret=env.get("DEPLOY_CREDENTIALS_SECRET") or None,
            secret_project=env.get("SECRET_PROJECT") or deploy_project,
        )


def default_stage_specs(config: PipelineConfig) -> list[StageSpec]:
    """The standard build/publish/trigger stage list.

    Only the build and publish environments get the container runtime
    socket; the trigger stage talks to the deployment API and needs
    neither the socket nor the source checkout.
    """
    docker_env = EnvironmentSpec(
        image=config.tool_image,
        mounts=(MountRequest(config.workspace, "/workspace", read_only=True),),
        capabilities=frozenset({Capability.CONTAINER_RUNTIME_SOCKET}),
    )
    trigger_scopes = (
        frozenset({config.deploy_credentials_secret})
        if config.deploy_credentials_secret
        else frozenset()
    )
    return [
        StageSpec(
            name="build",
            environment=docker_env,
            action=BuildAction(repository=config.repository),
            retry=RetryPolicy(timeout_seconds=config.stage_timeout),
        ),
        StageSpec(
            name="publish",
            environment=docker_env,
            action=PublishAction(
                registry_url=config.registry_url,
                username=config.registry_username,
                password_secret=config.registry_secret,
            ),
            secret_scopes=frozenset({config.registry_secret}),
            retry=RetryPolicy(
                max_attempts=config.publish_attempts,
                backoff_seconds=5.0,
                timeout_seconds=config.stage_timeout,
            ),
        ),
        StageSpec(
            name="deploy",
            environment=EnvironmentSpec(image=config.tool_image),
            action=TriggerAction(
                target=config.deploy_target,
                credentials_secret=config.deploy_credentials_secret,
            ),
            secret_scopes=trigger_scopes,
            retry=RetryPolicy(timeout_seconds=config.stage_timeout),
        ),
    ]


def _parse_action(data: dict[str, Any]) -> StageAction:
    action_type = data.get("type")
    if action_type == "build":
        return BuildAction(
            repository=data["repository"],
            dockerfile=data.get("dockerfile", "Dockerfile"),
            build_args=dict(data.get("build_args", {})),
        )
    if action_type == "publish":
        tags = data.get("tags")
        return PublishAction(
            registry_url=data["registry_url"],
            username=data["username"],
            password_secret=data["password_secret"],
            tags=tuple(str(t) for t in tags) if tags else None,
        )
    if action_type == "trigger":
        return TriggerAction(
            target=DeploymentTarget.from_dict(data["target"]),
            credentials_secret=data.get("credentials_secret"),
        )
    raise PipelineDefinitionError(f"Unknown action type: {action_type!r}")


def parse_stage_spec(data: dict[str, Any]) -> StageSpec:
    """Create a StageSpec from its definition-file form.

    Raises:
        PipelineDefinitionError: If a field is missing or invalid.
    """
    try:
        return StageSpec(
            name=data["name"],
            environment=EnvironmentSpec.from_dict(data["environment"]),
            action=_parse_action(data["action"]),
            secret_scopes=frozenset(data.get("secret_scopes", [])),
            retry=RetryPolicy.from_dict(data.get("retry", {})),
        )
    except KeyError as e:
        raise PipelineDefinitionError(
            f"Stage definition {data.get('name', '?')!r} is missing {e}"
        ) from e
    except (TypeError, ValueError) as e:
        raise PipelineDefinitionError(
            f"Stage definition {data.get('name', '?')!r} is invalid: {e}"
        ) from e


def load_pipeline_definition(path: Path) -> list[StageSpec]:
    """Load the stage list from a JSON pipeline definition file.

    The file holds ``{"stages": [...]}``, one object per stage with
    name, environment, action (with a "type" of build, publish or
    trigger), secret_scopes and retry.

    Raises:
        PipelineDefinitionError: If the file is unreadable or invalid.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise PipelineDefinitionError(f"Cannot read pipeline definition {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise PipelineDefinitionError(f"Pipeline definition {path} is not valid JSON: {e}") from e

    stages = data.get("stages") if isinstance(data, dict) else None
    if not isinstance(stages, list) or not stages:
        raise PipelineDefinitionError(f"Pipeline definition {path} has no stages")
    return [parse_stage_spec(stage) for stage in stages]
