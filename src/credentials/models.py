"""Data models for the credentials module."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Credential:
    """A named secret and the stages allowed to read it.

    Attributes:
        name: Secret name, as declared in a stage's secret scopes.
        value: Opaque secret value. Never shown in repr.
        scope: Stage names allowed to request the credential.
            Empty means any stage that declares it.
    """

    name: str
    value: str = field(repr=False)
    scope: frozenset[str] = frozenset()

    def allows(self, stage_name: str | None) -> bool:
        """Check whether the given stage may read this credential."""
        if not self.scope or stage_name is None:
            return True
        return stage_name in self.scope
