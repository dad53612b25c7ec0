"""Exceptions for the artifact builder module."""

from typing import Optional


class BuildError(Exception):
    """Raised when an artifact cannot be built.

    A broken build is not transient, so the pipeline never retries it.

    Attributes:
        exit_code: Exit code of the failed build command, if any.
        output: Tail of the build output for diagnosis.
    """

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
