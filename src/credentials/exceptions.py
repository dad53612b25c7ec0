"""Exceptions for the credentials module."""


class SecretResolverError(Exception):
    """Base exception for secret resolution failures."""

    pass


class SecretNotFoundError(SecretResolverError):
    """Raised when a requested secret does not exist in the store."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Secret '{name}' not found")


class AccessDeniedError(SecretResolverError):
    """Raised when the caller may not read a secret.

    Either the secret store refused access, or the credential's scope
    does not include the requesting stage.
    """

    def __init__(self, name: str, stage_name: str | None = None):
        self.name = name
        self.stage_name = stage_name
        requester = f" for stage '{stage_name}'" if stage_name else ""
        super().__init__(f"Access to secret '{name}' denied{requester}")
