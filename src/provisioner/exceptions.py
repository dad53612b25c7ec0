"""Exceptions for the environment provisioner module."""

from typing import Sequence


class ProvisionError(Exception):
    """Raised when an execution environment cannot be created."""

    pass


class CapabilityDeniedError(ProvisionError):
    """Raised when a stage asks for a capability the provisioner does not grant.

    Privileged host resources (such as the container runtime socket) are
    only mounted for stages that request them and only by provisioners
    configured to allow them.
    """

    def __init__(self, capability: str, stage_name: str):
        self.capability = capability
        self.stage_name = stage_name
        super().__init__(
            f"Stage '{stage_name}' requested capability '{capability}' "
            "which this provisioner does not grant"
        )


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}: {stderr.strip()}"
        )
