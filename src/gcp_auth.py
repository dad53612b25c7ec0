"""Google Cloud API authentication helper."""

import os
import threading
from pathlib import Path
from typing import Any, Optional

import google.auth
from google.auth.credentials import Credentials
from google.auth.exceptions import DefaultCredentialsError
from google.oauth2 import service_account
from googleapiclient.discovery import Resource, build

# Cloud Run and Secret Manager both accept the broad platform scope
DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
]


class GcpAuthError(Exception):
    """Raised when Google Cloud credentials cannot be loaded."""

    pass


class GcpAuthenticator:
    """Loads Google Cloud credentials and builds API services.

    Credentials come from, in order: an explicit service account info
    mapping, an explicit service account key file, the
    GOOGLE_APPLICATION_CREDENTIALS env var, then Application Default
    Credentials. Services from get_service() are built lazily and cached per
    API version. Service objects are not thread-safe; build_service()
    returns a fresh one with its own transport.
    """

    def __init__(
        self,
        credentials_path: Optional[Path] = None,
        scopes: Optional[list[str]] = None,
        credentials_info: Optional[dict[str, Any]] = None,
    ):
        """Initialize the authenticator.

        Args:
            credentials_path: Path to a service account key JSON file.
                Defaults to GOOGLE_APPLICATION_CREDENTIALS env var, or ADC.
            scopes: OAuth scopes to request. Defaults to cloud-platform.
            credentials_info: Parsed service account key. Takes precedence
                over any file path. Used for stage-scoped deploy keys.
        """
        if credentials_path:
            self._credentials_path: Optional[Path] = credentials_path
        elif os.environ.get("GOOGLE_APPLICATION_CREDENTIALS"):
            self._credentials_path = Path(os.environ["GOOGLE_APPLICATION_CREDENTIALS"])
        else:
            self._credentials_path = None

        self._scopes = scopes or DEFAULT_SCOPES
        self._credentials_info = credentials_info
        self._credentials: Optional[Credentials] = None
        self._project_id: Optional[str] = None
        self._services: dict[tuple[str, str], Resource] = {}
        self._lock = threading.Lock()

    def _load_credentials(self) -> Credentials:
        """Load credentials from the first available source.

        Raises:
            GcpAuthError: If no credentials can be found or parsed.
        """
        try:
            if self._credentials_info is not None:
                if not isinstance(self._credentials_info, dict):
                    raise GcpAuthError("Service account key must be a JSON object")
                creds = service_account.Credentials.from_service_account_info(
                    self._credentials_info, scopes=self._scopes
                )
                self._project_id = self._credentials_info.get("project_id")
                return creds

            if self._credentials_path is not None:
                if not self._credentials_path.exists():
                    raise GcpAuthError(
                        f"Service account key not found at {self._credentials_path}"
                    )
                creds = service_account.Credentials.from_service_account_file(
                    str(self._credentials_path), scopes=self._scopes
                )
                self._project_id = creds.project_id
                return creds

            creds, project_id = google.auth.default(scopes=self._scopes)
            self._project_id = project_id
            return creds
        except DefaultCredentialsError as e:
            raise GcpAuthError(f"No Google Cloud credentials available: {e}") from e
        except ValueError as e:
            raise GcpAuthError(f"Invalid service account key: {e}") from e

    def _get_credentials(self) -> Credentials:
        with self._lock:
            if self._credentials is None:
                self._credentials = self._load_credentials()
            return self._credentials

    def build_service(self, api: str, version: str) -> Resource:
        """Build a new, uncached discovery service for the given API.

        Args:
            api: API name, e.g. "run" or "secretmanager".
            version: API version, e.g. "v2".

        Returns:
            API service resource with its own HTTP transport
        """
        return build(api, version, credentials=self._get_credentials(), cache_discovery=False)

    def get_service(self, api: str, version: str) -> Resource:
        """Get or create a cached discovery service for the given API."""
        key = (api, version)
        credentials = self._get_credentials()
        with self._lock:
            if key not in self._services:
                self._services[key] = build(
                    api, version, credentials=credentials, cache_discovery=False
                )
            return self._services[key]

    @property
    def project_id(self) -> Optional[str]:
        """Project of the loaded credentials (after service creation)."""
        return self._project_id
