"""Per-session document store for generated artifacts."""

from planforge.artifacts.store import (
    ArtifactContent,
    ArtifactDescriptor,
    ArtifactStore,
    strip_header,
)

__all__ = ["ArtifactContent", "ArtifactDescriptor", "ArtifactStore", "strip_header"]
