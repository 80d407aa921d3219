"""Packaging engine: zip bundles of a session's completed work."""

from planforge.packaging.engine import (
    PackageJanitor,
    PackagePreview,
    PackageRecord,
    PackagingEngine,
)

__all__ = ["PackageJanitor", "PackagePreview", "PackageRecord", "PackagingEngine"]
