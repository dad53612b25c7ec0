"""Data models for the registry publisher module."""

from dataclasses import dataclass, field
from typing import Any, Optional

from src.builder import Artifact


@dataclass(frozen=True)
class PublishAck:
    """Acknowledgement of a completed publish.

    Attributes:
        artifact: The artifact that was pushed.
        registry_url: Registry host.
        tags: Tags pushed, in order.
        digests: Manifest digest reported by the registry per tag.
    """

    artifact: Artifact
    registry_url: str
    tags: tuple[str, ...]
    digests: dict[str, str] = field(default_factory=dict)

    @property
    def repo_digest(self) -> Optional[str]:
        """Manifest digest shared by every pushed tag."""
        values = set(self.digests.values())
        return values.pop() if len(values) == 1 else None

    def reference_for(self, tag: str) -> str:
        return f"{self.artifact.repository}:{tag}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact": self.artifact.to_dict(),
            "registry_url": self.registry_url,
            "tags": list(self.tags),
            "digests": dict(self.digests),
        }
