"""Paid versioning of generated plans."""

from creditgate.remix.versions import (
    ArtifactVersion,
    RemixOption,
    RemixResult,
    RemixTier,
    RemixVersionManager,
    VersionComparison,
    VersionHistory,
)

__all__ = [
    "RemixVersionManager",
    "VersionHistory",
    "ArtifactVersion",
    "RemixOption",
    "RemixTier",
    "RemixResult",
    "VersionComparison",
]
