"""Data models for the deployment trigger module."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ImagePolicy(Enum):
    """Which image reference the deployment target is pointed at.

    VERSION pins the run's version tag, DIGEST pins the manifest digest,
    LATEST follows the floating tag and is only as reliable as whatever
    last moved it.
    """

    VERSION = "version"
    DIGEST = "digest"
    LATEST = "latest"


@dataclass(frozen=True)
class DeploymentTarget:
    """A service that should converge on the newest artifact.

    Attributes:
        cluster: Project hosting the service.
        service: Service name.
        region: Region of the service.
        image_policy: Reference the service is updated to.
    """

    cluster: str
    service: str
    region: str
    image_policy: ImagePolicy = ImagePolicy.VERSION

    @property
    def resource_name(self) -> str:
        return f"projects/{self.cluster}/locations/{self.region}/services/{self.service}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster,
            "service": self.service,
            "region": self.region,
            "image_policy": self.image_policy.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentTarget":
        return cls(
            cluster=data["cluster"],
            service=data["service"],
            region=data["region"],
            image_policy=ImagePolicy(data.get("image_policy", ImagePolicy.VERSION.value)),
        )


@dataclass(frozen=True)
class TriggerAck:
    """Acknowledgement that a convergence request was accepted.

    Attributes:
        target: The deployment target.
        image: Image reference the target now points at.
        changed: False when the target already matched and nothing was sent.
        operation: Name of the asynchronous rollout operation, if one started.
        artifact_digest: Digest of the artifact the target was moved to.
    """

    target: DeploymentTarget
    image: str
    changed: bool
    operation: Optional[str] = None
    artifact_digest: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "image": self.image,
            "changed": self.changed,
            "operation": self.operation,
            "artifact_digest": self.artifact_digest,
        }
