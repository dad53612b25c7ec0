"""Data models for the trigger module."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class PushEvent:
    """A source-control push that may start a pipeline run.

    Attributes:
        repository_url: Repository that was pushed to.
        branch: Branch name, without the refs/heads/ prefix.
        commit: Head commit SHA after the push.
        received_at: When the event arrived.
    """

    repository_url: str
    branch: str
    commit: str
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_webhook(cls, payload: dict[str, Any]) -> "PushEvent":
        """Create from a push webhook payload (``ref``/``after``/``repository``)."""
        ref = payload.get("ref", "")
        branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
        repository = payload.get("repository") or {}
        return cls(
            repository_url=repository.get("clone_url") or repository.get("url", ""),
            branch=branch,
            commit=payload.get("after", ""),
        )
