"""ArtifactBuilder - builds a tagged image inside a stage environment."""

import logging
from typing import Mapping, Optional

from src.provisioner import EnvironmentHandle, EnvironmentProvisioner

from .exceptions import BuildError
from .models import DIGEST_PATTERN, Artifact, SourceRef

logger = logging.getLogger(__name__)

# Lines of build output kept on BuildError
OUTPUT_TAIL_LINES = 40

REVISION_LABEL = "org.opencontainers.image.revision"
SOURCE_LABEL = "org.opencontainers.image.source"


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class ArtifactBuilder:
    """Builds container images with the docker CLI of a stage environment.

    The environment must have the container runtime socket capability.
    The resulting tag is always ``{repository}:{tag_hint}``, so the same
    source and run number always yield the same reference.
    """

    def __init__(self, provisioner: EnvironmentProvisioner):
        self._provisioner = provisioner

    def build(
        self,
        environment: EnvironmentHandle,
        source_ref: SourceRef,
        tag_hint: int | str,
        repository: str,
        dockerfile: str = "Dockerfile",
        build_args: Optional[Mapping[str, str]] = None,
    ) -> Artifact:
        """Build the source into a versioned artifact.

        Args:
            environment: Environment to build in.
            source_ref: Revision and build context path.
            tag_hint: Version tag, normally the run number.
            repository: Image repository to tag into.
            dockerfile: Dockerfile path relative to the context.
            build_args: Extra ``--build-arg`` values.

        Returns:
            Artifact identified by its content digest.

        Raises:
            BuildError: Missing build context, failed build, or no digest.
        """
        tag = str(tag_hint)
        reference = f"{repository}:{tag}"
        context = source_ref.context_path

        context_check = self._provisioner.exec(environment, ["test", "-d", context])
        if not context_check.ok:
            raise BuildError(
                f"Build context {context} is missing", exit_code=context_check.exit_code
            )

        command = [
            "docker",
            "build",
            "--file",
            f"{context.rstrip('/')}/{dockerfile}",
            "--tag",
            reference,
            "--label",
            f"{REVISION_LABEL}={source_ref.commit}",
            "--label",
            f"{SOURCE_LABEL}={source_ref.repository_url}",
        ]
        for key, value in sorted((build_args or {}).items()):
            command += ["--build-arg", f"{key}={value}"]
        command.append(context)

        logger.info("Building %s from commit %s", reference, source_ref.commit)
        result = self._provisioner.exec(environment, command)
        if not result.ok:
            raise BuildError(
                f"docker build for {reference} exited with {result.exit_code}",
                exit_code=result.exit_code,
                output=_tail(result.stderr or result.stdout),
            )

        inspect = self._provisioner.exec(
            environment, ["docker", "image", "inspect", "--format", "{{.Id}}", reference]
        )
        digest = inspect.stdout.strip()
        if not inspect.ok or not DIGEST_PATTERN.match(digest):
            raise BuildError(
                f"Could not read digest of {reference}",
                exit_code=inspect.exit_code,
                output=_tail(inspect.stderr),
            )

        artifact = Artifact(
            repository=repository, tag=tag, digest=digest, source_commit=source_ref.commit
        )
        logger.info("Built %s (%s)", artifact.reference, artifact.digest)
        return artifact
