"""Artifact builder producing versioned, digest-identified images."""

from .artifact_builder import ArtifactBuilder
from .exceptions import BuildError
from .models import Artifact, SourceRef

__all__ = [
    "ArtifactBuilder",
    "Artifact",
    "SourceRef",
    "BuildError",
]
