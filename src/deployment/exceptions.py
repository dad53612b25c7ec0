"""Exceptions for the deployment trigger module."""


class TriggerError(Exception):
    """Raised when a convergence request is rejected.

    Already published artifacts are never rolled back; re-triggering is
    the recovery path.

    Attributes:
        reason: "unauthorized", "not_found", "invalid", "aborted" or "api".
        status_code: HTTP status of the failed call, if any.
    """

    def __init__(self, message: str, reason: str = "api", status_code: int | None = None):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class TargetNotFoundError(TriggerError):
    """Raised when the deployment target does not exist."""

    def __init__(self, resource_name: str):
        self.resource_name = resource_name
        super().__init__(
            f"Deployment target '{resource_name}' not found",
            reason="not_found",
            status_code=404,
        )
