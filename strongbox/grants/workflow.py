"""
Access grant workflow — request, decide, revoke, expire.

Each public operation runs its checks and state change in one transaction.
Notifications go out after commit; if any fail, ``NotificationError`` is
raised carrying the committed result.

Usage:
    wf = AccessGrantWorkflow(policy, notifier=DatabaseNotifier())
    grant = wf.request(applicant, record_id, "incident-42")
    wf.approve(manager, grant.id, valid_duration_hours=24)
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

import psycopg2.errors
from psycopg2.extras import RealDictCursor

from strongbox.context import Caller, utcnow
from strongbox.db.connection import get_connection
from strongbox.errors import Conflict, Forbidden, InvalidInput, NotFound, NotificationError
from strongbox.grants import dal
from strongbox.grants.models import (
    MAX_HOURS,
    MIN_HOURS,
    NOTE_MAX,
    REASON_MAX,
    REASON_MIN,
    AccessGrant,
    GrantFilter,
    approve,
    expire,
    reject,
    revoke,
)
from strongbox.notify import TemplateType, deliver
from strongbox.records import dal as records_dal
from strongbox.records.models import Page

logger = logging.getLogger(__name__)

RESOURCE = "access_request"
SYSTEM_ACTOR = "system"


def _check_reason(reason: str) -> str:
    reason = (reason or "").strip()
    if not REASON_MIN <= len(reason) <= REASON_MAX:
        raise InvalidInput(f"Reason must be {REASON_MIN}-{REASON_MAX} characters")
    return reason


class AccessGrantWorkflow:
    def __init__(
        self,
        policy,
        notifier=None,
        auditor=None,
        clock: Callable[[], datetime] = utcnow,
        connection_factory: Callable = get_connection,
    ) -> None:
        self._policy = policy
        self._notifier = notifier
        self._auditor = auditor
        self._clock = clock
        self._connect = connection_factory

    def _cursor(self, conn):
        return conn.cursor(cursor_factory=RealDictCursor)

    def _audit(self, actor: str, action: str, grant_id: str) -> None:
        if self._auditor is not None:
            self._auditor.log(actor, f"{RESOURCE}.{action}", RESOURCE, grant_id)

    def _finish(self, result: Any, messages: list[tuple[str, str, dict[str, Any]]]) -> Any:
        failures = deliver(self._notifier, messages)
        if failures:
            raise NotificationError(result, failures)
        return result

    def _is_approver(self, caller: Caller) -> bool:
        return self._policy.allows(caller, RESOURCE, "approve")

    def _secret_name(self, cur, record_id: str) -> str:
        record = records_dal.fetch_record(cur, record_id, include_deleted=True)
        return record.name if record else record_id

    # ─── Requests and decisions ──────────────────────────────────────────

    def request(self, caller: Caller, record_id: str, reason: str) -> AccessGrant:
        """Open a pending grant. Conflict if a pending or approved one exists."""
        self._policy.authorize(caller, "secret", "request")
        reason = _check_reason(reason)
        now = self._clock()
        grant = AccessGrant(
            id=str(uuid.uuid4()),
            record_id=record_id,
            applicant_id=caller.subject_id,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
        with self._connect() as conn:
            cur = self._cursor(conn)
            record = records_dal.fetch_record(cur, record_id)
            if record is None:
                raise NotFound(f"Secret {record_id} not found")
            dal.lock_pair(cur, record_id, caller.subject_id)
            existing = dal.find_blocking(cur, record_id, caller.subject_id)
            if existing is not None:
                raise Conflict(
                    f"{caller.subject_id} already has a {existing.status} grant "
                    f"{existing.id} for {record_id}"
                )
            try:
                dal.insert_grant(cur, grant)
            except psycopg2.errors.UniqueViolation as e:
                raise Conflict(f"{caller.subject_id} already has an open grant for {record_id}") from e

        logger.info("Grant %s requested by %s for %s", grant.id, caller.subject_id, record_id)
        self._audit(caller.subject_id, "create", grant.id)
        data = {
            "related_id": grant.id,
            "applicant_name": caller.name or caller.subject_id,
            "secret_name": record.name,
            "reason": reason,
        }
        approvers = [
            s
            for s in self._policy.subjects_with_permission(RESOURCE, "approve")
            if s != caller.subject_id
        ]
        return self._finish(
            grant, [(a, TemplateType.ACCESS_REQUEST_CREATED, data) for a in approvers]
        )

    def approve(
        self,
        caller: Caller,
        grant_id: str,
        valid_duration_hours: int,
        note: str | None = "",
    ) -> AccessGrant:
        self._policy.authorize(caller, RESOURCE, "approve")
        note = (note or "").strip()
        if (
            isinstance(valid_duration_hours, bool)
            or not isinstance(valid_duration_hours, int)
            or not MIN_HOURS <= valid_duration_hours <= MAX_HOURS
        ):
            raise InvalidInput(f"Duration must be {MIN_HOURS}-{MAX_HOURS} whole hours")
        if len(note) > NOTE_MAX:
            raise InvalidInput(f"Note must be at most {NOTE_MAX} characters")

        with self._connect() as conn:
            cur = self._cursor(conn)
            grant = dal.fetch_grant(cur, grant_id, for_update=True)
            if grant is None:
                raise NotFound(f"Grant {grant_id} not found")
            updated = approve(grant, caller.subject_id, self._clock(), valid_duration_hours, note)
            dal.update_grant(cur, updated)
            name = self._secret_name(cur, updated.record_id)

        logger.info(
            "Grant %s approved by %s for %dh", grant_id, caller.subject_id, valid_duration_hours
        )
        self._audit(caller.subject_id, "approve", grant_id)
        data = {
            "related_id": grant_id,
            "secret_name": name,
            "approver_name": caller.name or caller.subject_id,
            "valid_until": updated.valid_until.isoformat(),
        }
        return self._finish(
            updated, [(updated.applicant_id, TemplateType.ACCESS_REQUEST_APPROVED, data)]
        )

    def reject(self, caller: Caller, grant_id: str, reason: str) -> AccessGrant:
        self._policy.authorize(caller, RESOURCE, "reject")
        reason = _check_reason(reason)
        with self._connect() as conn:
            cur = self._cursor(conn)
            grant = dal.fetch_grant(cur, grant_id, for_update=True)
            if grant is None:
                raise NotFound(f"Grant {grant_id} not found")
            updated = reject(grant, caller.subject_id, self._clock(), reason)
            dal.update_grant(cur, updated)
            name = self._secret_name(cur, updated.record_id)

        logger.info("Grant %s rejected by %s", grant_id, caller.subject_id)
        self._audit(caller.subject_id, "reject", grant_id)
        data = {"related_id": grant_id, "secret_name": name, "reject_reason": reason}
        return self._finish(
            updated, [(updated.applicant_id, TemplateType.ACCESS_REQUEST_REJECTED, data)]
        )

    def revoke(self, caller: Caller, grant_id: str, reason: str) -> AccessGrant:
        """Revoke an approved grant. Applicants may revoke their own."""
        self._policy.authorize(caller, RESOURCE, "cancel")
        reason = _check_reason(reason)
        with self._connect() as conn:
            cur = self._cursor(conn)
            grant = dal.fetch_grant(cur, grant_id, for_update=True)
            if grant is None:
                raise NotFound(f"Grant {grant_id} not found")
            if grant.applicant_id != caller.subject_id and not self._is_approver(caller):
                raise Forbidden(f"{caller.subject_id} may not revoke grant {grant_id}")
            updated = revoke(grant, self._clock(), reason)
            dal.update_grant(cur, updated)
            name = self._secret_name(cur, updated.record_id)

        logger.info("Grant %s revoked by %s", grant_id, caller.subject_id)
        self._audit(caller.subject_id, "revoke", grant_id)
        messages = []
        if updated.applicant_id != caller.subject_id:
            data = {"related_id": grant_id, "secret_name": name, "reject_reason": reason}
            messages.append((updated.applicant_id, TemplateType.ACCESS_REQUEST_REVOKED, data))
        return self._finish(updated, messages)

    # ─── Queries ─────────────────────────────────────────────────────────

    def get(self, caller: Caller, grant_id: str) -> AccessGrant:
        self._policy.authorize(caller, RESOURCE, "read")
        with self._connect() as conn:
            grant = dal.fetch_grant(self._cursor(conn), grant_id)
        if grant is None:
            raise NotFound(f"Grant {grant_id} not found")
        if grant.applicant_id != caller.subject_id and not self._is_approver(caller):
            raise Forbidden(f"{caller.subject_id} may not view grant {grant_id}")
        return grant

    def list(self, caller: Caller, flt: GrantFilter | None = None) -> Page[AccessGrant]:
        """Filtered grants. Non-approvers only ever see their own."""
        self._policy.authorize(caller, RESOURCE, "read")
        flt = flt or GrantFilter()
        if not self._is_approver(caller):
            flt = flt.model_copy(update={"applicant_id": caller.subject_id})
        with self._connect() as conn:
            items, total = dal.query_grants(self._cursor(conn), flt)
        return Page[AccessGrant](items=items, total=total, page=flt.page, page_size=flt.page_size)

    # ─── Access checks ───────────────────────────────────────────────────

    def check_access(self, record_id: str, applicant_id: str) -> AccessGrant | None:
        """The applicant's currently valid grant for the record, counting this access."""
        with self._connect() as conn:
            grants = dal.record_access(self._cursor(conn), applicant_id, [record_id], self._clock())
        if not grants:
            return None
        self._audit(applicant_id, "access", grants[0].id)
        return grants[0]

    def record_access(self, applicant_id: str, record_ids: list[str]) -> set[str]:
        """Record ids the applicant may read now; each access is counted."""
        if not record_ids:
            return set()
        with self._connect() as conn:
            grants = dal.record_access(self._cursor(conn), applicant_id, record_ids, self._clock())
        return {g.record_id for g in grants}

    def valid_record_ids(self, applicant_id: str, record_ids: list[str] | None = None) -> set[str]:
        with self._connect() as conn:
            return dal.valid_record_ids(self._cursor(conn), applicant_id, self._clock(), record_ids)

    # ─── Sweep ───────────────────────────────────────────────────────────

    def expire_due(self, stop_event: threading.Event | None = None) -> int:
        """Flip approved grants past ``valid_until`` to expired. Returns the count."""
        now = self._clock()
        expired: list[tuple[AccessGrant, str]] = []
        with self._connect() as conn:
            cur = self._cursor(conn)
            for grant in dal.lock_due_for_expiry(cur, now):
                if stop_event is not None and stop_event.is_set():
                    logger.info("Grant expiry sweep stopped early")
                    break
                updated = expire(grant, now)
                dal.update_grant(cur, updated)
                expired.append((updated, self._secret_name(cur, updated.record_id)))

        for grant, _ in expired:
            self._audit(SYSTEM_ACTOR, "expire", grant.id)
        deliver(
            self._notifier,
            [
                (
                    grant.applicant_id,
                    TemplateType.ACCESS_REQUEST_EXPIRED,
                    {"related_id": grant.id, "secret_name": name},
                )
                for grant, name in expired
            ],
        )
        if expired:
            logger.info("Expired %d access grant(s)", len(expired))
        return len(expired)
