"""Registry publisher pushing artifacts under versioned and floating tags."""

from .exceptions import PublishError
from .models import PublishAck
from .publisher import LATEST_TAG, RegistryPublisher

__all__ = [
    "RegistryPublisher",
    "PublishAck",
    "PublishError",
    "LATEST_TAG",
]
