"""CLI entry point for the deploy pipeline."""

import argparse
import json
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from src.config import ConfigError, PipelineConfig, default_stage_specs, load_pipeline_definition
from src.credentials import Credential, InMemorySecretResolver, SecretManagerResolver
from src.logging_config import configure_logging
from src.orchestrator import CancellationToken, PipelineDefinitionError, PipelineExecutor, RunStatus
from src.provisioner import Capability, DockerProvisioner
from src.trigger import FileRunNumberAllocator, PipelineTrigger, PushEvent

# Local secrets: PIPELINE_SECRET_REGISTRY_PASSWORD -> "registry-password"
LOCAL_SECRET_PREFIX = "PIPELINE_SECRET_"

EXIT_CODES = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.FAILED: 1,
    RunStatus.ABORTED: 2,
}


def _local_secret_resolver() -> InMemorySecretResolver:
    credentials = [
        Credential(name=key[len(LOCAL_SECRET_PREFIX):].lower().replace("_", "-"), value=value)
        for key, value in os.environ.items()
        if key.startswith(LOCAL_SECRET_PREFIX)
    ]
    return InMemorySecretResolver(credentials)


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the build, publish and deploy pipeline")
    parser.add_argument("--commit", required=True, help="Commit SHA that was pushed")
    parser.add_argument(
        "--branch",
        default=None,
        help="Branch that was pushed (defaults to PIPELINE_BRANCH)",
    )
    parser.add_argument(
        "--repository-url",
        default="",
        help="Source repository URL recorded on the image",
    )
    parser.add_argument(
        "--definition",
        type=Path,
        default=None,
        help="JSON pipeline definition (default: build, publish, deploy)",
    )
    parser.add_argument(
        "--secret-backend",
        choices=["secret-manager", "env"],
        default="secret-manager",
        help="Where stage secrets come from (env reads PIPELINE_SECRET_* variables)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (overrides LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON instead of a summary",
    )
    args = parser.parse_args()
    configure_logging(level_override=args.log_level)

    try:
        config = PipelineConfig.from_env()
        stages = (
            load_pipeline_definition(args.definition)
            if args.definition
            else default_stage_specs(config)
        )
    except (ConfigError, PipelineDefinitionError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    branch = args.branch or config.branch
    trigger = PipelineTrigger(
        stages,
        allocator=FileRunNumberAllocator(config.state_path),
        branches=[config.branch],
    )
    run = trigger.handle(
        PushEvent(repository_url=args.repository_url, branch=branch, commit=args.commit)
    )
    if run is None:
        print(f"Branch {branch} does not trigger the pipeline")
        return 0

    if args.secret_backend == "env":
        resolver = _local_secret_resolver()
    else:
        resolver = SecretManagerResolver(project_id=config.secret_project)

    executor = PipelineExecutor(
        provisioner=DockerProvisioner(
            socket_path=config.docker_socket,
            granted_capabilities=[Capability.CONTAINER_RUNTIME_SOCKET],
        ),
        secret_resolver=resolver,
    )

    token = CancellationToken()

    def _cancel(signum, frame):
        token.cancel(f"received {signal.Signals(signum).name}")

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)

    result = executor.run(run, cancel_token=token)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return EXIT_CODES[result.status]

    # Print summary
    print(f"\n--- Run {result.run_number} Summary ---")
    for stage in result.stages:
        print(
            f"  {stage.name}: {stage.status.value.upper()} "
            f"({stage.duration_seconds}s, attempts={stage.attempts})"
        )
        for key, value in stage.details.items():
            print(f"    {key}: {value}")
        if stage.error:
            print(f"    error: {stage.error}")

    print(f"\nResult: {result.status.value.upper()}")

    return EXIT_CODES[result.status]


if __name__ == "__main__":
    sys.exit(main())
