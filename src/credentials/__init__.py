"""Scoped credential resolution for pipeline stages.

Public API:
    - SecretResolver: Interface for fetching secrets on demand
    - InMemorySecretResolver: Resolver backed by fixed credentials
    - SecretManagerResolver: Google Secret Manager resolver
    - Credential: Named secret with a stage scope
    - SecretRedactor: Logging filter masking resolved values
    - SecretResolverError: Base exception for resolution failures
    - SecretNotFoundError: Secret does not exist
    - AccessDeniedError: Caller may not read a secret
"""

from .exceptions import AccessDeniedError, SecretNotFoundError, SecretResolverError
from .models import Credential
from .redaction import REDACTED, SecretRedactor, default_redactor
from .resolver import InMemorySecretResolver, SecretResolver
from .secret_manager import SecretManagerResolver

__all__ = [
    "SecretResolver",
    "InMemorySecretResolver",
    "SecretManagerResolver",
    "Credential",
    "SecretRedactor",
    "default_redactor",
    "REDACTED",
    "SecretResolverError",
    "SecretNotFoundError",
    "AccessDeniedError",
]
