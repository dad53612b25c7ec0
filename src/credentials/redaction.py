"""Log redaction for resolved secret values."""

import logging
import threading
from typing import Iterable

REDACTED = "***"


class SecretRedactor(logging.Filter):
    """Logging filter that masks registered secret values.

    Values are registered by the pipeline executor while a stage holds
    them and discarded when the stage releases its environment. The
    filter rewrites the fully formatted message so secrets passed as
    ``%s`` arguments are masked too.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._values: dict[str, int] = {}

    def register(self, values: Iterable[str]) -> None:
        """Start masking the given values."""
        with self._lock:
            for value in values:
                if value:
                    self._values[value] = self._values.get(value, 0) + 1

    def discard(self, values: Iterable[str]) -> None:
        """Stop masking values once their last holder has released them."""
        with self._lock:
            for value in values:
                count = self._values.get(value)
                if count is None:
                    continue
                if count <= 1:
                    del self._values[value]
                else:
                    self._values[value] = count - 1

    def redact(self, text: str) -> str:
        """Return text with every registered value replaced."""
        with self._lock:
            # Longest first so a value containing another is fully masked
            values = sorted(self._values, key=len, reverse=True)
        for value in values:
            if value in text:
                text = text.replace(value, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._values:
            return True
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        if record.exc_info and record.exc_info[1] is not None:
            exc_text = str(record.exc_info[1])
            if self.redact(exc_text) != exc_text:
                # Drop the traceback rather than print the secret
                record.exc_info = None
                record.exc_text = None
        return True


default_redactor = SecretRedactor()
