"""Google Secret Manager implementation of the secret resolver."""

import base64
import binascii
import logging
import threading
from typing import Iterable, Optional

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from src.gcp_auth import GcpAuthenticator

from .exceptions import AccessDeniedError, SecretNotFoundError, SecretResolverError
from .resolver import SecretResolver

logger = logging.getLogger(__name__)


class SecretManagerResolver(SecretResolver):
    """Resolves secrets from Google Secret Manager.

    Every secret version stored there is encrypted at rest, which covers
    SecureString-class parameters. Values are decoded in memory and
    handed back to the caller only; nothing is cached.
    """

    def __init__(
        self,
        project_id: str,
        authenticator: Optional[GcpAuthenticator] = None,
        version: str = "latest",
    ):
        """Initialize the resolver.

        Args:
            project_id: Project that owns the secrets.
            authenticator: GcpAuthenticator for API access.
                Created automatically if not provided.
            version: Secret version to access. Defaults to "latest".
        """
        self._project_id = project_id
        self._authenticator = authenticator
        self._version = version
        self._local = threading.local()
        self._lock = threading.Lock()

    def _get_service(self) -> Resource:
        """Get this thread's Secret Manager API service."""
        service = getattr(self._local, "service", None)
        if service is None:
            with self._lock:
                if self._authenticator is None:
                    self._authenticator = GcpAuthenticator()
            service = self._authenticator.build_service("secretmanager", "v1")
            self._local.service = service
        return service

    def _version_name(self, name: str) -> str:
        return f"projects/{self._project_id}/secrets/{name}/versions/{self._version}"

    def _access(self, name: str) -> str:
        """Fetch and decode a single secret payload."""
        try:
            service = self._get_service()
            response = (
                service.projects()
                .secrets()
                .versions()
                .access(name=self._version_name(name))
                .execute()
            )
        except HttpError as e:
            status_code = e.resp.status
            logger.error(
                "Secret Manager API error for '%s' (status=%d)", name, status_code
            )
            if status_code == 404:
                raise SecretNotFoundError(name) from e
            if status_code in (401, 403):
                raise AccessDeniedError(name) from e
            raise SecretResolverError(
                f"Failed to access secret '{name}' (status={status_code})"
            ) from e

        data = response.get("payload", {}).get("data")
        if data is None:
            raise SecretResolverError(f"Secret '{name}' has no payload")
        try:
            return base64.b64decode(data).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SecretResolverError(f"Secret '{name}' payload is not valid text") from e

    def resolve(
        self, scope_names: Iterable[str], stage_name: Optional[str] = None
    ) -> dict[str, str]:
        resolved = {name: self._access(name) for name in sorted(set(scope_names))}
        logger.debug(
            "Resolved %d secrets for stage %s", len(resolved), stage_name or "-"
        )
        return resolved
