"""Version snapshot and diff models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from strongbox.records.models import Environment, SecretKind, SecretRecord

# Compared field by field in a diff; the payload is handled separately.
DIFF_FIELDS = ("name", "description", "kind", "category", "environment", "tags", "expires_at")

REDACTED = "***"


class ChangeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"


class SecretVersion(BaseModel):
    """Immutable snapshot of a record at one version."""

    id: str
    record_id: str
    version: int = Field(ge=1)
    name: str
    description: str = ""
    kind: SecretKind
    category: str = ""
    environment: Environment = Environment.DEV
    tags: list[str] = Field(default_factory=list)
    sealed_payload: str = Field(exclude=True, repr=False)
    expires_at: datetime | None = None
    change_kind: ChangeKind
    change_reason: str = ""
    actor: str
    captured_at: datetime | None = None

    @classmethod
    def capture(
        cls,
        snapshot_id: str,
        record: SecretRecord,
        version: int,
        change_kind: ChangeKind,
        reason: str,
        actor: str,
        now: datetime,
    ) -> SecretVersion:
        return cls(
            id=snapshot_id,
            record_id=record.id,
            version=version,
            name=record.name,
            description=record.description,
            kind=record.kind,
            category=record.category,
            environment=record.environment,
            tags=list(record.tags),
            sealed_payload=record.sealed_payload,
            expires_at=record.expires_at,
            change_kind=change_kind,
            change_reason=reason,
            actor=actor,
            captured_at=now,
        )


class FieldChange(BaseModel):
    old: Any = None
    new: Any = None


class VersionDiff(BaseModel):
    record_id: str
    version1: int
    version2: int
    changes: dict[str, FieldChange] = Field(default_factory=dict)
    payload_changed: bool = False


def diff_versions(a: SecretVersion, b: SecretVersion, payload_changed: bool) -> VersionDiff:
    """Field-level differences. The payload only ever shows as ``***``."""
    changes: dict[str, FieldChange] = {}
    for name in DIFF_FIELDS:
        old, new = getattr(a, name), getattr(b, name)
        if old != new:
            changes[name] = FieldChange(old=old, new=new)
    if payload_changed:
        changes["payload"] = FieldChange(old=REDACTED, new=REDACTED)
    return VersionDiff(
        record_id=a.record_id,
        version1=a.version,
        version2=b.version,
        changes=changes,
        payload_changed=payload_changed,
    )
