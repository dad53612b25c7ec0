"""Deployment trigger for converging a service on the newest artifact."""

from .exceptions import TargetNotFoundError, TriggerError
from .models import DeploymentTarget, ImagePolicy, TriggerAck
from .trigger import (
    ARTIFACT_ANNOTATION,
    REDEPLOY_ANNOTATION,
    CloudRunDeploymentTrigger,
    DeploymentTrigger,
    desired_image,
    repository_of,
)

__all__ = [
    "DeploymentTrigger",
    "CloudRunDeploymentTrigger",
    "DeploymentTarget",
    "ImagePolicy",
    "TriggerAck",
    "TriggerError",
    "TargetNotFoundError",
    "ARTIFACT_ANNOTATION",
    "REDEPLOY_ANNOTATION",
    "desired_image",
    "repository_of",
]
