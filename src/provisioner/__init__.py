"""Isolated, ephemeral execution environments for pipeline stages.

Public API:
    - EnvironmentProvisioner: Interface for acquiring/releasing environments
    - DockerProvisioner: One container per stage attempt
    - EnvironmentSpec, MountRequest, Capability: Environment description
    - EnvironmentHandle, ExecResult: Live environment and command outcome
    - ProvisionError, CapabilityDeniedError, CommandError: Failures
"""

from .docker import DockerProvisioner, run_command
from .exceptions import CapabilityDeniedError, CommandError, ProvisionError
from .models import Capability, EnvironmentHandle, EnvironmentSpec, ExecResult, MountRequest
from .provisioner import EnvironmentProvisioner

__all__ = [
    "EnvironmentProvisioner",
    "DockerProvisioner",
    "run_command",
    "EnvironmentSpec",
    "MountRequest",
    "Capability",
    "EnvironmentHandle",
    "ExecResult",
    "ProvisionError",
    "CapabilityDeniedError",
    "CommandError",
]
