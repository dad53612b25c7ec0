"""RegistryPublisher - pushes built artifacts under their tags."""

import logging
import re
from typing import Optional, Sequence

from src.builder import Artifact
from src.provisioner import EnvironmentHandle, EnvironmentProvisioner, ExecResult

from .exceptions import PublishError
from .models import PublishAck

logger = logging.getLogger(__name__)

LATEST_TAG = "latest"

_PUSH_DIGEST = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")
_AUTH_MARKERS = ("unauthorized", "denied", "authentication required", "forbidden")


def _failure_reason(result: ExecResult) -> str:
    output = f"{result.stdout}\n{result.stderr}".lower()
    if any(marker in output for marker in _AUTH_MARKERS):
        return "auth"
    return "network"


class RegistryPublisher:
    """Publishes artifacts with the docker CLI of a stage environment.

    Pushes a versioned tag for traceability and rollback, plus a
    floating "latest" tag as a convenience pointer. Pushing content the
    registry already holds is a no-op on the registry side, so repeated
    publishes of the same artifact are safe.
    """

    def __init__(self, provisioner: EnvironmentProvisioner):
        self._provisioner = provisioner

    def _login(
        self, environment: EnvironmentHandle, registry_url: str, username: str, password: str
    ) -> None:
        result = self._provisioner.exec(
            environment,
            ["docker", "login", "--username", username, "--password-stdin", registry_url],
            stdin=password,
        )
        if not result.ok:
            raise PublishError(
                f"Login to {registry_url} failed: {result.stderr.strip()}",
                reason=_failure_reason(result) if result.stderr else "auth",
            )

    def _push(self, environment: EnvironmentHandle, reference: str) -> str:
        result = self._provisioner.exec(environment, ["docker", "push", reference])
        if not result.ok:
            raise PublishError(
                f"Push of {reference} failed: {result.stderr.strip()}",
                reason=_failure_reason(result),
            )
        match = _PUSH_DIGEST.search(result.stdout)
        if match is None:
            raise PublishError(f"Registry did not report a digest for {reference}")
        return match.group(1)

    def publish(
        self,
        environment: EnvironmentHandle,
        artifact: Artifact,
        registry_url: str,
        username: str,
        password: Optional[str],
        tags: Optional[Sequence[str]] = None,
    ) -> PublishAck:
        """Push the artifact under each tag.

        Args:
            environment: Environment holding the built image.
            artifact: Artifact produced by the build stage.
            registry_url: Registry host to authenticate against.
            username: Registry user name.
            password: Stage-scoped registry credential.
            tags: Tags to push. Defaults to [run number, "latest"].

        Returns:
            PublishAck with the manifest digest of every tag.

        Raises:
            PublishError: Missing credentials, login or push failure, or
                tags resolving to different digests.
        """
        if not password:
            raise PublishError(
                f"No credentials available for {registry_url}", reason="missing_credentials"
            )

        tags = list(tags) if tags else [artifact.tag, LATEST_TAG]
        self._login(environment, registry_url, username, password)
        digests: dict[str, str] = {}
        try:
            for tag in tags:
                reference = f"{artifact.repository}:{tag}"
                if tag != artifact.tag:
                    tagged = self._provisioner.exec(
                        environment, ["docker", "tag", artifact.reference, reference]
                    )
                    if not tagged.ok:
                        raise PublishError(
                            f"Could not tag {artifact.reference} as {reference}: "
                            f"{tagged.stderr.strip()}"
                        )
                digests[tag] = self._push(environment, reference)
                logger.info("Pushed %s (%s)", reference, digests[tag])
        finally:
            logout = self._provisioner.exec(environment, ["docker", "logout", registry_url])
            if not logout.ok:
                logger.warning("Logout from %s failed: %s", registry_url, logout.stderr.strip())

        if len(set(digests.values())) != 1:
            raise PublishError(
                f"Tags of {artifact.repository} resolved to different digests: {digests}",
                reason="digest_mismatch",
            )
        return PublishAck(
            artifact=artifact, registry_url=registry_url, tags=tuple(tags), digests=digests
        )
