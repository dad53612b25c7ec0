"""Data models for the artifact builder module."""

import re
from dataclasses import dataclass
from typing import Any

DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")


@dataclass(frozen=True)
class SourceRef:
    """The source revision a run builds.

    Attributes:
        repository_url: Source repository the push came from.
        branch: Branch that was pushed.
        commit: Commit SHA.
        context_path: Build context inside the build environment.
    """

    repository_url: str
    branch: str
    commit: str
    context_path: str = "/workspace"

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository_url": self.repository_url,
            "branch": self.branch,
            "commit": self.commit,
            "context_path": self.context_path,
        }


@dataclass(frozen=True)
class Artifact:
    """An immutable build output.

    Identity is the content digest. The tag is the run number and is
    only a human-friendly handle; "latest" is never part of identity.

    Attributes:
        repository: Image repository, e.g. "us-docker.pkg.dev/p/r/app".
        tag: Version tag (the run number).
        digest: Content digest, "sha256:<hex>".
        source_commit: Commit the artifact was built from.
    """

    repository: str
    tag: str
    digest: str
    source_commit: str = ""

    def __post_init__(self) -> None:
        if not DIGEST_PATTERN.match(self.digest):
            raise ValueError(f"Invalid artifact digest: {self.digest!r}")

    @property
    def reference(self) -> str:
        """Versioned reference, e.g. "repo:42"."""
        return f"{self.repository}:{self.tag}"

    @property
    def pinned_reference(self) -> str:
        """Digest-pinned reference, e.g. "repo@sha256:..."."""
        return f"{self.repository}@{self.digest}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository,
            "tag": self.tag,
            "digest": self.digest,
            "source_commit": self.source_commit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Artifact":
        return cls(
            repository=data["repository"],
            tag=str(data["tag"]),
            digest=data["digest"],
            source_commit=data.get("source_commit", ""),
        )
