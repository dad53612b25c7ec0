"""Secret resolver interface and in-memory implementation."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .exceptions import AccessDeniedError, SecretNotFoundError
from .models import Credential


class SecretResolver(ABC):
    """Interface for fetching scoped credentials on demand.

    Implementations must never persist resolved values. The pipeline
    executor calls resolve() immediately before the stage that declared
    the scopes, never for the whole run up front.
    """

    @abstractmethod
    def resolve(
        self, scope_names: Iterable[str], stage_name: Optional[str] = None
    ) -> dict[str, str]:
        """Resolve the named secrets.

        Args:
            scope_names: Names of the secrets to fetch.
            stage_name: Stage requesting the secrets, for scope checks.

        Returns:
            Mapping of secret name to value.

        Raises:
            SecretNotFoundError: A secret does not exist.
            AccessDeniedError: The caller may not read a secret.
        """
        pass


class InMemorySecretResolver(SecretResolver):
    """Resolver backed by a fixed set of credentials.

    Enforces each credential's stage scope. Useful for tests and for
    local runs where secrets come from the environment.
    """

    def __init__(self, credentials: Optional[Iterable[Credential]] = None) -> None:
        self._credentials: dict[str, Credential] = {
            c.name: c for c in credentials or ()
        }
        self.resolve_calls: list[tuple[tuple[str, ...], Optional[str]]] = []

    def add(self, credential: Credential) -> None:
        """Register or replace a credential."""
        self._credentials[credential.name] = credential

    def resolve(
        self, scope_names: Iterable[str], stage_name: Optional[str] = None
    ) -> dict[str, str]:
        names = tuple(sorted(scope_names))
        self.resolve_calls.append((names, stage_name))
        resolved: dict[str, str] = {}
        for name in names:
            credential = self._credentials.get(name)
            if credential is None:
                raise SecretNotFoundError(name)
            if not credential.allows(stage_name):
                raise AccessDeniedError(name, stage_name)
            resolved[name] = credential.value
        return resolved
