"""
Access grant model and its state machine.

    pending  -> approved | rejected
    approved -> revoked | expired

``rejected``, ``revoked`` and ``expired`` are terminal. Transition functions
are pure: they return an updated copy or raise InvalidState.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field

from strongbox.errors import InvalidState

MIN_HOURS = 1
MAX_HOURS = 8760
REASON_MIN = 5
REASON_MAX = 500
NOTE_MAX = 500


class GrantStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    REVOKED = "revoked"


TRANSITIONS: dict[GrantStatus, frozenset[GrantStatus]] = {
    GrantStatus.PENDING: frozenset({GrantStatus.APPROVED, GrantStatus.REJECTED}),
    GrantStatus.APPROVED: frozenset({GrantStatus.REVOKED, GrantStatus.EXPIRED}),
}


class AccessGrant(BaseModel):
    id: str
    record_id: str
    applicant_id: str
    reason: str
    status: GrantStatus = GrantStatus.PENDING
    approver_id: str | None = None
    decided_at: datetime | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    note: str = ""
    reject_reason: str = ""
    access_count: int = 0
    last_accessed: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GrantFilter(BaseModel):
    status: GrantStatus | None = None
    applicant_id: str | None = None
    record_id: str | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


def _move(grant: AccessGrant, target: GrantStatus) -> None:
    if target not in TRANSITIONS.get(grant.status, frozenset()):
        raise InvalidState(f"Grant {grant.id} is {grant.status}, cannot become {target}")


def can_access(grant: AccessGrant, now: datetime) -> bool:
    return (
        grant.status == GrantStatus.APPROVED
        and grant.valid_from is not None
        and grant.valid_until is not None
        and grant.valid_from <= now < grant.valid_until
    )


def approve(grant: AccessGrant, approver_id: str, now: datetime, hours: int, note: str = "") -> AccessGrant:
    _move(grant, GrantStatus.APPROVED)
    return grant.model_copy(
        update={
            "status": GrantStatus.APPROVED,
            "approver_id": approver_id,
            "decided_at": now,
            "valid_from": now,
            "valid_until": now + timedelta(hours=hours),
            "note": note,
            "updated_at": now,
        }
    )


def reject(grant: AccessGrant, approver_id: str, now: datetime, reason: str) -> AccessGrant:
    _move(grant, GrantStatus.REJECTED)
    return grant.model_copy(
        update={
            "status": GrantStatus.REJECTED,
            "approver_id": approver_id,
            "decided_at": now,
            "reject_reason": reason,
            "updated_at": now,
        }
    )


def revoke(grant: AccessGrant, now: datetime, reason: str) -> AccessGrant:
    """Flip an approved grant to revoked. The validity window is kept as is."""
    _move(grant, GrantStatus.REVOKED)
    return grant.model_copy(
        update={"status": GrantStatus.REVOKED, "reject_reason": reason, "updated_at": now}
    )


def expire(grant: AccessGrant, now: datetime) -> AccessGrant:
    _move(grant, GrantStatus.EXPIRED)
    if grant.valid_until is None or now < grant.valid_until:
        raise InvalidState(f"Grant {grant.id} is still inside its validity window")
    return grant.model_copy(update={"status": GrantStatus.EXPIRED, "updated_at": now})
