"""Environment provisioner interface."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional, Sequence

from .models import EnvironmentHandle, EnvironmentSpec, ExecResult


class EnvironmentProvisioner(ABC):
    """Interface for creating and tearing down isolated stage environments.

    Implementations must make release() idempotent and tolerant of
    environments whose process already exited. Callers should prefer
    the environment() context manager, which pairs every successful
    acquire with exactly one release.
    """

    @abstractmethod
    def acquire(self, spec: EnvironmentSpec, stage_name: str) -> EnvironmentHandle:
        """Create an environment for one stage attempt.

        Args:
            spec: Image, mounts and capabilities for the environment.
            stage_name: Stage that will own the environment.

        Returns:
            Handle for the running environment.

        Raises:
            ProvisionError: The image or a required mount is unavailable.
            CapabilityDeniedError: A requested capability is not granted.
        """
        pass

    @abstractmethod
    def exec(
        self,
        handle: EnvironmentHandle,
        command: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        stdin: Optional[str] = None,
    ) -> ExecResult:
        """Run a command inside the environment.

        Args:
            handle: Environment to run in.
            command: Command and arguments.
            env: Extra environment variables. Values must not appear on
                any command line.
            stdin: Text fed to the command's standard input.

        Returns:
            ExecResult with exit code and captured output.

        Raises:
            ProvisionError: The environment is gone or unreachable.
        """
        pass

    @abstractmethod
    def release(self, handle: EnvironmentHandle) -> None:
        """Tear down the environment. Safe to call more than once.

        A teardown that fails leaves the handle open so release() can be
        called again.
        """
        pass

    @contextmanager
    def environment(
        self, spec: EnvironmentSpec, stage_name: str
    ) -> Iterator[EnvironmentHandle]:
        """Acquire an environment and release it on every exit path."""
        handle = self.acquire(spec, stage_name)
        try:
            yield handle
        finally:
            self.release(handle)
