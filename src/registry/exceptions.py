"""Exceptions for the registry publisher module."""


class PublishError(Exception):
    """Raised when an artifact cannot be pushed to the registry.

    Network publishes fail transiently, so the pipeline retries this
    error according to the stage's retry policy.

    Attributes:
        reason: "auth", "network", "missing_credentials" or "digest_mismatch".
    """

    def __init__(self, message: str, reason: str = "network"):
        super().__init__(message)
        self.reason = reason
