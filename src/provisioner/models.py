"""Data models for the environment provisioner module."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Capability(Enum):
    """Privileged resources a stage may ask its environment to expose."""

    CONTAINER_RUNTIME_SOCKET = "container_runtime_socket"


@dataclass(frozen=True)
class MountRequest:
    """A host path bind-mounted into the environment.

    Attributes:
        host_path: Path on the host.
        container_path: Path inside the environment.
        read_only: Mount read-only.
    """

    host_path: str
    container_path: str
    read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "host_path": self.host_path,
            "container_path": self.container_path,
            "read_only": self.read_only,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MountRequest":
        return cls(
            host_path=data["host_path"],
            container_path=data["container_path"],
            read_only=bool(data.get("read_only", False)),
        )


@dataclass(frozen=True)
class EnvironmentSpec:
    """Description of the isolated environment a stage runs in.

    Attributes:
        image: Execution image reference.
        mounts: Host paths to bind-mount.
        working_dir: Working directory inside the environment.
        entrypoint_override: Replaces the keep-alive entrypoint when set.
        capabilities: Privileged resources the stage needs.
    """

    image: str
    mounts: tuple[MountRequest, ...] = ()
    working_dir: str = "/workspace"
    entrypoint_override: Optional[tuple[str, ...]] = None
    capabilities: frozenset[Capability] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": self.image,
            "mounts": [m.to_dict() for m in self.mounts],
            "working_dir": self.working_dir,
            "entrypoint_override": (
                list(self.entrypoint_override) if self.entrypoint_override else None
            ),
            "capabilities": sorted(c.value for c in self.capabilities),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnvironmentSpec":
        entrypoint = data.get("entrypoint_override")
        return cls(
            image=data["image"],
            mounts=tuple(MountRequest.from_dict(m) for m in data.get("mounts", [])),
            working_dir=data.get("working_dir", "/workspace"),
            entrypoint_override=tuple(entrypoint) if entrypoint else None,
            capabilities=frozenset(
                Capability(c) for c in data.get("capabilities", [])
            ),
        )


@dataclass(frozen=True)
class EnvironmentHandle:
    """A live environment bound to exactly one stage attempt."""

    handle_id: str
    stage_name: str
    spec: EnvironmentSpec
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command run inside an environment."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
