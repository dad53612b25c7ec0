"""Deployment triggers asking a target service to adopt a new artifact."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from src.builder import Artifact
from src.gcp_auth import GcpAuthError, GcpAuthenticator
from src.registry import LATEST_TAG, PublishAck

from .exceptions import TargetNotFoundError, TriggerError
from .models import DeploymentTarget, ImagePolicy, TriggerAck

logger = logging.getLogger(__name__)

ARTIFACT_ANNOTATION = "deploy-pipeline/artifact-digest"
REDEPLOY_ANNOTATION = "deploy-pipeline/redeployed-at"


def repository_of(image: str) -> str:
    """Strip the tag or digest from an image reference."""
    if "@" in image:
        return image.split("@", 1)[0]
    head, sep, tail = image.rpartition(":")
    if sep and "/" not in tail:
        return head
    return image


def desired_image(
    target: DeploymentTarget,
    current_image: str,
    artifact: Optional[Artifact] = None,
    publish_ack: Optional[PublishAck] = None,
) -> str:
    """Compute the image reference the target should run.

    Without an artifact the target is pointed at the floating tag of the
    repository it already runs, matching a plain "redeploy latest".

    Raises:
        TriggerError: DIGEST policy without a published digest.
    """
    if artifact is None:
        return f"{repository_of(current_image)}:{LATEST_TAG}"
    if target.image_policy is ImagePolicy.VERSION:
        return artifact.reference
    if target.image_policy is ImagePolicy.LATEST:
        return f"{artifact.repository}:{LATEST_TAG}"
    repo_digest = publish_ack.repo_digest if publish_ack else None
    if repo_digest is None:
        raise TriggerError(
            f"Digest policy for {target.service} needs a published manifest digest",
            reason="invalid",
        )
    return f"{artifact.repository}@{repo_digest}"


class DeploymentTrigger(ABC):
    """Interface for requesting convergence of a deployment target.

    trigger() must be idempotent for an artifact: repeating it leaves the
    target in the same end state. Without an artifact it always forces a
    new rollout of the floating tag. It must not block waiting for the
    rollout to finish.
    """

    @abstractmethod
    def trigger(
        self,
        target: DeploymentTarget,
        artifact: Optional[Artifact] = None,
        publish_ack: Optional[PublishAck] = None,
        credentials_info: Optional[dict[str, Any]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> TriggerAck:
        """Ask the target to replace its instances with the newest artifact.

        Args:
            target: Service to update.
            artifact: Artifact built by this run, if any.
            publish_ack: Publish result carrying manifest digests.
            credentials_info: Stage-scoped service account key.
            stop_event: Set by the caller once the stage has been abandoned
                (timeout or cancellation). No update is sent after that.

        Returns:
            TriggerAck describing what was requested.

        Raises:
            TriggerError: Authorization failure, API error or abandoned stage.
            TargetNotFoundError: The target does not exist.
        """
        pass


class CloudRunDeploymentTrigger(DeploymentTrigger):
    """Updates a Cloud Run service to the artifact of a run.

    The service revision template gets the desired image and an
    annotation recording the artifact digest. When both already match,
    no request is sent. A trigger without an artifact stamps the
    template with a redeploy time so Cloud Run pulls the floating tag
    again. The patch starts a rollout whose operation name is returned
    without waiting for it.

    Each thread gets its own service object unless one was injected.
    """

    def __init__(
        self,
        authenticator: Optional[GcpAuthenticator] = None,
        service: Optional[Resource] = None,
    ):
        """Initialize the trigger.

        Args:
            authenticator: GcpAuthenticator for the Cloud Run Admin API.
                Created automatically if not provided.
            service: Pre-built Cloud Run v2 service resource, used from
                every thread. Overrides authenticator if provided.
        """
        self._authenticator = authenticator
        self._service = service
        self._local = threading.local()
        self._lock = threading.Lock()

    def _get_service(self, credentials_info: Optional[dict[str, Any]] = None) -> Resource:
        """Get the Cloud Run service, scoped to credentials_info if given.

        Raises:
            TriggerError: If the credentials cannot be loaded.
        """
        try:
            if credentials_info is not None:
                return GcpAuthenticator(credentials_info=credentials_info).get_service(
                    "run", "v2"
                )
            if self._service is not None:
                return self._service
            service = getattr(self._local, "service", None)
            if service is None:
                with self._lock:
                    if self._authenticator is None:
                        self._authenticator = GcpAuthenticator()
                service = self._authenticator.build_service("run", "v2")
                self._local.service = service
            return service
        except GcpAuthError as e:
            raise TriggerError(
                f"Cannot authenticate to the Cloud Run API: {e}", reason="unauthorized"
            ) from e

    def _check_stop(self, stop_event: Optional[threading.Event], target: DeploymentTarget) -> None:
        if stop_event is not None and stop_event.is_set():
            raise TriggerError(
                f"Trigger for {target.resource_name} abandoned before the update",
                reason="aborted",
            )

    def _handle_http_error(self, error: HttpError, target: DeploymentTarget) -> None:
        """Convert HttpError to the matching TriggerError.

        Raises:
            TargetNotFoundError: If the error indicates a 404.
            TriggerError: For authorization and other API errors.
        """
        status_code = error.resp.status
        reason = error.reason if hasattr(error, "reason") else str(error)
        logger.error("Cloud Run API error (status=%d): %s", status_code, reason)

        if status_code == 404:
            raise TargetNotFoundError(target.resource_name) from error
        if status_code in (401, 403):
            raise TriggerError(
                f"Not authorized to update {target.resource_name}",
                reason="unauthorized",
                status_code=status_code,
            ) from error
        raise TriggerError(
            f"Cloud Run API error for {target.resource_name}: {reason}",
            status_code=status_code,
        ) from error

    def trigger(
        self,
        target: DeploymentTarget,
        artifact: Optional[Artifact] = None,
        publish_ack: Optional[PublishAck] = None,
        credentials_info: Optional[dict[str, Any]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> TriggerAck:
        self._check_stop(stop_event, target)
        services = self._get_service(credentials_info).projects().locations().services()
        try:
            current = services.get(name=target.resource_name).execute()
        except HttpError as e:
            self._handle_http_error(e, target)
            raise  # Never reached, but satisfies type checker

        template = current.get("template", {})
        containers = template.get("containers") or []
        if not containers:
            raise TriggerError(
                f"Service {target.resource_name} has no containers", reason="invalid"
            )
        current_image = containers[0].get("image", "")
        image = desired_image(target, current_image, artifact, publish_ack)

        annotations = dict(template.get("annotations") or {})
        if artifact is None:
            digest = annotations.get(ARTIFACT_ANNOTATION)
            annotations[REDEPLOY_ANNOTATION] = datetime.now(timezone.utc).isoformat()
        else:
            digest = artifact.digest
            if current_image == image and annotations.get(ARTIFACT_ANNOTATION) == digest:
                logger.info("%s already runs %s; nothing to trigger", target.service, image)
                return TriggerAck(
                    target=target, image=image, changed=False, artifact_digest=digest
                )
            annotations[ARTIFACT_ANNOTATION] = digest

        updated = copy.deepcopy(current)
        updated["template"]["containers"][0]["image"] = image
        updated["template"]["annotations"] = annotations

        self._check_stop(stop_event, target)
        try:
            operation = services.patch(name=target.resource_name, body=updated).execute()
        except HttpError as e:
            self._handle_http_error(e, target)
            raise

        operation_name = operation.get("name")
        logger.info(
            "Requested rollout of %s to %s (operation=%s)", target.service, image, operation_name
        )
        return TriggerAck(
            target=target,
            image=image,
            changed=True,
            operation=operation_name,
            artifact_digest=digest,
        )
