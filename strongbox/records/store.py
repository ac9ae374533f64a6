"""
Secret record store — the live records and the only place payloads are
sealed or opened for callers.

Reads need the ``secret:read`` policy and, for the payload, ownership or a
currently valid access grant. Writes need only the matching policy rule;
each bumps the version by one and appends the matching snapshot in the
same transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from psycopg2.extras import RealDictCursor

from strongbox.context import Caller, utcnow
from strongbox.db.connection import get_connection
from strongbox.errors import Forbidden, InvalidInput, NotFound
from strongbox.history.models import ChangeKind
from strongbox.records import dal
from strongbox.records.models import (
    Page,
    RecordFilter,
    SecretChanges,
    SecretDraft,
    SecretRecord,
    SecretView,
    dump_payload,
    load_payload,
)

logger = logging.getLogger(__name__)

RESOURCE = "secret"

# Fields of SecretChanges that may not be cleared to None
_REQUIRED = ("name", "description", "category", "environment", "tags", "payload")


class SecretRecordStore:
    def __init__(
        self,
        encryption,
        policy,
        grants,
        versions,
        auditor=None,
        clock: Callable[[], datetime] = utcnow,
        connection_factory: Callable = get_connection,
    ) -> None:
        self._encryption = encryption
        self._policy = policy
        self._grants = grants
        self._versions = versions
        self._auditor = auditor
        self._clock = clock
        self._connect = connection_factory

    def _audit(self, actor: str, action: str, record_id: str | None) -> None:
        if self._auditor is not None:
            self._auditor.log(actor, f"{RESOURCE}.{action}", RESOURCE, record_id)

    def _view(self, record: SecretRecord, has_access: bool) -> SecretView:
        payload = load_payload(self._encryption.open(record.sealed_payload)) if has_access else None
        return SecretView(**record.model_dump(), has_access=has_access, payload=payload)

    def _lock(self, cur, record_id: str) -> SecretRecord:
        record = dal.fetch_record(cur, record_id, for_update=True)
        if record is None:
            raise NotFound(f"Secret {record_id} not found")
        return record

    # ─── Writes ──────────────────────────────────────────────────────────

    def create(self, caller: Caller, draft: SecretDraft) -> SecretView:
        self._policy.authorize(caller, RESOURCE, "create")
        sealed = self._encryption.seal(dump_payload(draft.payload))
        now = self._clock()
        record = SecretRecord(
            id=str(uuid.uuid4()),
            name=draft.name,
            description=draft.description,
            kind=draft.kind,
            category=draft.category,
            environment=draft.environment,
            tags=draft.tags,
            sealed_payload=sealed,
            expires_at=draft.expires_at,
            version=1,
            created_by=caller.subject_id,
            updated_by=caller.subject_id,
            created_at=now,
            updated_at=now,
        )
        with self._connect() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            dal.insert_record(cur, record)
            self._versions.snapshot(cur, record, ChangeKind.CREATED, "created", caller.subject_id)

        logger.info("Created secret %s (%s) for %s", record.id, record.kind, caller.subject_id)
        self._audit(caller.subject_id, "create", record.id)
        return SecretView(**record.model_dump(), has_access=True, payload=draft.payload)

    def update(self, caller: Caller, record_id: str, changes: SecretChanges) -> SecretView:
        self._policy.authorize(caller, RESOURCE, "update")
        fields = {
            name: getattr(changes, name)
            for name in changes.model_fields_set - {"reason"}
            if name not in _REQUIRED or getattr(changes, name) is not None
        }
        if not fields:
            raise InvalidInput("Nothing to update")
        payload = fields.pop("payload", None)
        if payload is not None:
            fields["sealed_payload"] = self._encryption.seal(dump_payload(payload))

        with self._connect() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            record = self._lock(cur, record_id)
            if payload is not None and payload.kind != record.kind:
                raise InvalidInput(f"Payload kind {payload.kind} does not match secret kind {record.kind}")
            updated = record.model_copy(
                update={
                    **fields,
                    "version": record.version + 1,
                    "updated_by": caller.subject_id,
                    "updated_at": self._clock(),
                }
            )
            dal.update_record(cur, updated)
            self._versions.snapshot(cur, updated, ChangeKind.UPDATED, changes.reason, caller.subject_id)

        logger.info("Updated secret %s to v%d", record_id, updated.version)
        self._audit(caller.subject_id, "update", record_id)
        return self._view(updated, has_access=True)

    def delete(self, caller: Caller, record_id: str, reason: str = "") -> None:
        """Soft delete. The record keeps its history and can be restored."""
        self._policy.authorize(caller, RESOURCE, "delete")
        now = self._clock()
        with self._connect() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            record = self._lock(cur, record_id)
            deleted = record.model_copy(
                update={
                    "version": record.version + 1,
                    "updated_by": caller.subject_id,
                    "updated_at": now,
                    "deleted_at": now,
                }
            )
            dal.update_record(cur, deleted)
            self._versions.snapshot(cur, deleted, ChangeKind.DELETED, reason, caller.subject_id)

        logger.info("Deleted secret %s at v%d", record_id, deleted.version)
        self._audit(caller.subject_id, "delete", record_id)

    # ─── Reads ───────────────────────────────────────────────────────────

    def get(self, caller: Caller, record_id: str) -> SecretView:
        """The record with its payload. Forbidden, without data, for others
        who hold no valid grant."""
        self._policy.authorize(caller, RESOURCE, "read")
        with self._connect() as conn:
            record = dal.fetch_record(conn.cursor(cursor_factory=RealDictCursor), record_id)
        if record is None:
            raise NotFound(f"Secret {record_id} not found")
        if not record.is_owner(caller.subject_id):
            grant = self._grants.check_access(record_id, caller.subject_id)
            if grant is None:
                raise Forbidden(f"{caller.subject_id} has no valid grant for {record_id}")
        self._audit(caller.subject_id, "read", record_id)
        return self._view(record, has_access=True)

    def list(self, caller: Caller, flt: RecordFilter | None = None) -> Page[SecretView]:
        """Filtered records; payloads only on items the caller may read."""
        self._policy.authorize(caller, RESOURCE, "read")
        flt = flt or RecordFilter()
        with self._connect() as conn:
            records, total = dal.query_records(conn.cursor(cursor_factory=RealDictCursor), flt)
        foreign = [r.id for r in records if not r.is_owner(caller.subject_id)]
        granted = self._grants.record_access(caller.subject_id, foreign) if foreign else set()
        items = [
            self._view(r, has_access=r.is_owner(caller.subject_id) or r.id in granted)
            for r in records
        ]
        self._audit(caller.subject_id, "list", None)
        return Page[SecretView](items=items, total=total, page=flt.page, page_size=flt.page_size)

    def list_accessible(self, caller: Caller, flt: RecordFilter | None = None) -> Page[SecretView]:
        """Records the caller holds a currently valid grant for (metadata only)."""
        self._policy.authorize(caller, RESOURCE, "read")
        flt = flt or RecordFilter()
        ids = sorted(self._grants.valid_record_ids(caller.subject_id))
        self._audit(caller.subject_id, "list_accessible", None)
        if not ids:
            return Page[SecretView](items=[], total=0, page=flt.page, page_size=flt.page_size)
        with self._connect() as conn:
            records, total = dal.query_records(
                conn.cursor(cursor_factory=RealDictCursor), flt, ids=ids
            )
        items = [SecretView(**r.model_dump(), has_access=True) for r in records]
        return Page[SecretView](items=items, total=total, page=flt.page, page_size=flt.page_size)
