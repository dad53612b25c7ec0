"""Docker-backed environment provisioner."""

import logging
import os
import re
import subprocess
import threading
import uuid
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from .exceptions import CapabilityDeniedError, CommandError, ProvisionError
from .models import Capability, EnvironmentHandle, EnvironmentSpec, ExecResult, MountRequest
from .provisioner import EnvironmentProvisioner

logger = logging.getLogger(__name__)

DEFAULT_DOCKER_SOCKET = "/var/run/docker.sock"
KEEPALIVE_ENTRYPOINT = ("sleep", "infinity")

_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_.-]+")


def run_command(
    command: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    stdin: Optional[str] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Execute a subprocess command and return the completed process."""
    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    result = subprocess.run(
        list(command),
        env=process_env,
        input=stdin,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


class DockerProvisioner(EnvironmentProvisioner):
    """Provisions one throwaway container per stage attempt.

    Each container is started detached with a keep-alive entrypoint so
    stage actions can run several commands in it via ``docker exec``.
    Containers are force-removed on release.

    Example:
        provisioner = DockerProvisioner(
            granted_capabilities={Capability.CONTAINER_RUNTIME_SOCKET},
        )
        with provisioner.environment(spec, "build") as handle:
            provisioner.exec(handle, ["docker", "version"])
    """

    def __init__(
        self,
        docker_binary: str = "docker",
        socket_path: str = DEFAULT_DOCKER_SOCKET,
        granted_capabilities: Optional[Iterable[Capability]] = None,
        pull_policy: str = "missing",
        name_prefix: str = "pipeline",
    ):
        """Initialize the provisioner.

        Args:
            docker_binary: Docker CLI executable.
            socket_path: Host path of the container runtime socket.
            granted_capabilities: Capabilities stages may request.
                Nothing privileged is granted by default.
            pull_policy: "always", "missing" or "never".
            name_prefix: Prefix for container names.
        """
        if pull_policy not in ("always", "missing", "never"):
            raise ValueError(f"Unknown pull policy: {pull_policy}")
        self._docker = docker_binary
        self._socket_path = socket_path
        self._granted = frozenset(granted_capabilities or ())
        self._pull_policy = pull_policy
        self._name_prefix = name_prefix
        self._lock = threading.Lock()
        self._open: dict[str, EnvironmentHandle] = {}

    @property
    def open_handles(self) -> list[EnvironmentHandle]:
        """Environments acquired and not yet released."""
        with self._lock:
            return list(self._open.values())

    def _capability_mounts(self, spec: EnvironmentSpec, stage_name: str) -> list[MountRequest]:
        mounts: list[MountRequest] = []
        for capability in sorted(spec.capabilities, key=lambda c: c.value):
            if capability not in self._granted:
                raise CapabilityDeniedError(capability.value, stage_name)
            if capability is Capability.CONTAINER_RUNTIME_SOCKET:
                if not Path(self._socket_path).exists():
                    raise ProvisionError(
                        f"Container runtime socket {self._socket_path} is unavailable"
                    )
                mounts.append(MountRequest(self._socket_path, DEFAULT_DOCKER_SOCKET))
        return mounts

    def _ensure_image(self, image: str) -> None:
        if self._pull_policy == "never":
            return
        if self._pull_policy == "missing":
            present = run_command([self._docker, "image", "inspect", image], check=False)
            if present.returncode == 0:
                return
        try:
            run_command([self._docker, "pull", image])
        except CommandError as e:
            raise ProvisionError(f"Could not obtain image {image}: {e.stderr.strip()}") from e

    def _container_name(self, stage_name: str) -> str:
        safe_stage = _NAME_UNSAFE.sub("-", stage_name).strip("-") or "stage"
        return f"{self._name_prefix}-{safe_stage}-{uuid.uuid4().hex[:8]}"

    def acquire(self, spec: EnvironmentSpec, stage_name: str) -> EnvironmentHandle:
        mounts = self._capability_mounts(spec, stage_name)
        for mount in spec.mounts:
            if not Path(mount.host_path).exists():
                raise ProvisionError(f"Mount source {mount.host_path} does not exist")
            mounts.append(mount)

        self._ensure_image(spec.image)

        entrypoint = spec.entrypoint_override or KEEPALIVE_ENTRYPOINT
        command = [
            self._docker,
            "run",
            "--detach",
            "--name",
            self._container_name(stage_name),
            "--workdir",
            spec.working_dir,
        ]
        for mount in mounts:
            suffix = ":ro" if mount.read_only else ""
            command += ["--volume", f"{mount.host_path}:{mount.container_path}{suffix}"]
        command += ["--entrypoint", entrypoint[0], spec.image, *entrypoint[1:]]

        try:
            result = run_command(command)
        except CommandError as e:
            raise ProvisionError(
                f"Could not start environment for stage '{stage_name}': {e.stderr.strip()}"
            ) from e

        handle = EnvironmentHandle(
            handle_id=result.stdout.strip(), stage_name=stage_name, spec=spec
        )
        with self._lock:
            self._open[handle.handle_id] = handle
        logger.info(
            "Acquired environment %s for stage '%s' (image=%s)",
            handle.handle_id[:12],
            stage_name,
            spec.image,
        )
        return handle

    def exec(
        self,
        handle: EnvironmentHandle,
        command: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        stdin: Optional[str] = None,
    ) -> ExecResult:
        with self._lock:
            if handle.handle_id not in self._open:
                raise ProvisionError(f"Environment {handle.handle_id[:12]} is not open")

        docker_command = [self._docker, "exec"]
        if stdin is not None:
            docker_command.append("--interactive")
        # Bare "-e NAME" makes the CLI copy the value from its own environment
        for name in sorted(env or {}):
            docker_command += ["--env", name]
        docker_command += [handle.handle_id, *command]

        logger.debug("Exec in %s: %s", handle.handle_id[:12], " ".join(command))
        result = run_command(docker_command, env=env, stdin=stdin, check=False)
        return ExecResult(
            command=tuple(command),
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    def release(self, handle: EnvironmentHandle) -> None:
        with self._lock:
            is_open = handle.handle_id in self._open
        if not is_open:
            logger.debug("Environment %s already released", handle.handle_id[:12])
            return

        result = run_command([self._docker, "rm", "--force", handle.handle_id], check=False)
        if result.returncode != 0 and "No such container" not in result.stderr:
            logger.error(
                "Failed to remove environment %s: %s",
                handle.handle_id[:12],
                result.stderr.strip(),
            )
            return
        with self._lock:
            self._open.pop(handle.handle_id, None)
        logger.info(
            "Released environment %s for stage '%s'",
            handle.handle_id[:12],
            handle.stage_name,
        )
