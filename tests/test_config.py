"""Unit tests for pipeline configuration."""

import json

import pytest

from src.config import (
    ConfigError,
    PipelineConfig,
    default_stage_specs,
    load_pipeline_definition,
    parse_stage_spec,
)
from src.deployment import ImagePolicy
from src.orchestrator import ActionKind, PipelineDefinitionError, PublishAction
from src.provisioner import Capability

BASE_ENV = {
    "PIPELINE_REPOSITORY": "us-docker.pkg.dev/acme/apps/web",
    "DEPLOY_CLUSTER": "acme",
    "DEPLOY_SERVICE": "web",
    "DEPLOY_REGION": "us-central1",
    "PIPELINE_WORKSPACE": "/src/web",
}


def _env(**overrides):
    env = dict(BASE_ENV)
    env.update(overrides)
    return env


class TestPipelineConfig:
    def test_defaults(self):
        config = PipelineConfig.from_env(_env())

        assert config.registry_url == "us-docker.pkg.dev"
        assert config.registry_username == "_json_key"
        assert config.registry_secret == "registry-password"
        assert config.branch == "main"
        assert config.publish_attempts == 3
        assert config.stage_timeout == 1800.0
        assert config.deploy_target.image_policy is ImagePolicy.VERSION
        assert config.deploy_credentials_secret is None
        assert config.secret_project == "acme"

    @pytest.mark.parametrize(
        "missing", ["PIPELINE_REPOSITORY", "DEPLOY_CLUSTER", "DEPLOY_SERVICE", "DEPLOY_REGION"]
    )
    def test_required_variables(self, missing):
        env = _env()
        del env[missing]
        with pytest.raises(ConfigError, match=missing):
            PipelineConfig.from_env(env)

    def test_image_policy(self):
        config = PipelineConfig.from_env(_env(DEPLOY_IMAGE_POLICY="DIGEST"))
        assert config.deploy_target.image_policy is ImagePolicy.DIGEST

    def test_unknown_image_policy(self):
        with pytest.raises(ConfigError, match="DEPLOY_IMAGE_POLICY"):
            PipelineConfig.from_env(_env(DEPLOY_IMAGE_POLICY="newest"))

    def test_invalid_number(self):
        with pytest.raises(ConfigError):
            PipelineConfig.from_env(_env(PIPELINE_PUBLISH_ATTEMPTS="three"))

    def test_empty_timeout_disables_it(self):
        assert PipelineConfig.from_env(_env(PIPELINE_STAGE_TIMEOUT="")).stage_timeout is None

    def test_separate_secret_project(self):
        config = PipelineConfig.from_env(_env(SECRET_PROJECT="acme-secrets"))
        assert config.secret_project == "acme-secrets"


class TestDefaultStageSpecs:
    def test_build_publish_deploy(self):
        stages = default_stage_specs(PipelineConfig.from_env(_env()))

        assert [s.name for s in stages] == ["build", "publish", "deploy"]
        assert [s.kind for s in stages] == [ActionKind.BUILD, ActionKind.PUBLISH, ActionKind.TRIGGER]

    def test_only_docker_stages_get_socket(self):
        build, publish, deploy = default_stage_specs(PipelineConfig.from_env(_env()))

        socket = Capability.CONTAINER_RUNTIME_SOCKET
        assert socket in build.environment.capabilities
        assert socket in publish.environment.capabilities
        assert socket not in deploy.environment.capabilities
        assert deploy.environment.mounts == ()

    def test_workspace_mounted_read_only(self):
        build = default_stage_specs(PipelineConfig.from_env(_env()))[0]
        mount = build.environment.mounts[0]
        assert (mount.host_path, mount.container_path, mount.read_only) == (
            "/src/web",
            "/workspace",
            True,
        )

    def test_secret_scopes(self):
        config = PipelineConfig.from_env(_env(DEPLOY_CREDENTIALS_SECRET="deploy-key"))
        build, publish, deploy = default_stage_specs(config)

        assert build.secret_scopes == frozenset()
        assert publish.secret_scopes == frozenset({"registry-password"})
        assert deploy.secret_scopes == frozenset({"deploy-key"})

    def test_publish_retry_from_config(self):
        config = PipelineConfig.from_env(_env(PIPELINE_PUBLISH_ATTEMPTS="5"))
        publish = default_stage_specs(config)[1]
        assert publish.retry.max_attempts == 5
        assert publish.retry.backoff_seconds == 5.0


STAGE_DEFINITION = {
    "stages": [
        {
            "name": "build",
            "environment": {"image": "docker:27-cli", "capabilities": ["container_runtime_socket"]},
            "action": {"type": "build", "repository": "registry.local/web"},
        },
        {
            "name": "publish",
            "environment": {"image": "docker:27-cli", "capabilities": ["container_runtime_socket"]},
            "action": {
                "type": "publish",
                "registry_url": "registry.local",
                "username": "ci",
                "password_secret": "registry-password",
                "tags": [42, "stable"],
            },
            "secret_scopes": ["registry-password"],
            "retry": {"max_attempts": 3, "backoff_seconds": 1},
        },
        {
            "name": "deploy",
            "environment": {"image": "alpine"},
            "action": {
                "type": "trigger",
                "target": {"cluster": "acme", "service": "web", "region": "us-central1"},
            },
        },
    ]
}


class TestLoadPipelineDefinition:
    def test_loads_stages(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps(STAGE_DEFINITION))

        stages = load_pipeline_definition(path)

        assert [s.name for s in stages] == ["build", "publish", "deploy"]
        publish = stages[1]
        assert isinstance(publish.action, PublishAction)
        assert publish.action.tags == ("42", "stable")
        assert publish.retry.max_attempts == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(PipelineDefinitionError, match="Cannot read"):
            load_pipeline_definition(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text("{stages: ")
        with pytest.raises(PipelineDefinitionError, match="not valid JSON"):
            load_pipeline_definition(path)

    def test_no_stages(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps({"stages": []}))
        with pytest.raises(PipelineDefinitionError, match="no stages"):
            load_pipeline_definition(path)

    def test_unknown_action_type(self):
        with pytest.raises(PipelineDefinitionError, match="Unknown action type"):
            parse_stage_spec(
                {"name": "x", "environment": {"image": "alpine"}, "action": {"type": "lint"}}
            )

    def test_missing_field(self):
        with pytest.raises(PipelineDefinitionError, match="missing"):
            parse_stage_spec({"name": "x", "action": {"type": "build", "repository": "r"}})

    def test_undeclared_secret(self):
        stage = dict(STAGE_DEFINITION["stages"][1])
        stage.pop("secret_scopes")
        with pytest.raises(PipelineDefinitionError, match="undeclared"):
            parse_stage_spec(stage)

    def test_unknown_capability(self):
        with pytest.raises(PipelineDefinitionError, match="invalid"):
            parse_stage_spec(
                {
                    "name": "x",
                    "environment": {"image": "alpine", "capabilities": ["root"]},
                    "action": {"type": "build", "repository": "r"},
                }
            )
