"""Append-only version history for secret records."""

from strongbox.history.engine import VersioningEngine
from strongbox.history.models import ChangeKind, SecretVersion, VersionDiff

__all__ = ["ChangeKind", "SecretVersion", "VersionDiff", "VersioningEngine"]
