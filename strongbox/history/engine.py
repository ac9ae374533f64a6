"""
Versioning engine — append-only snapshots, history, diff and restore.

``snapshot`` runs on the caller's cursor so the record write it accompanies
and the new version row commit together. Version numbers come from
``MAX(version) + 1`` read while the record row is locked.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from psycopg2.extras import RealDictCursor

from strongbox.context import Caller, utcnow
from strongbox.db.connection import get_connection
from strongbox.errors import Forbidden, NotFound
from strongbox.history import dal
from strongbox.history.models import ChangeKind, SecretVersion, VersionDiff, diff_versions
from strongbox.records import dal as records_dal
from strongbox.records.models import SecretRecord

logger = logging.getLogger(__name__)


class VersioningEngine:
    def __init__(
        self,
        policy,
        encryption,
        grants=None,
        auditor=None,
        clock: Callable[[], datetime] = utcnow,
        connection_factory: Callable = get_connection,
    ) -> None:
        self._policy = policy
        self._encryption = encryption
        self._grants = grants
        self._auditor = auditor
        self._clock = clock
        self._connect = connection_factory

    def snapshot(
        self,
        cur,
        record: SecretRecord,
        change_kind: ChangeKind,
        reason: str,
        actor: str,
    ) -> SecretVersion:
        """Append ``record``'s current state at the next version number."""
        version = dal.max_version(cur, record.id) + 1
        snap = SecretVersion.capture(
            str(uuid.uuid4()), record, version, change_kind, reason, actor, self._clock()
        )
        dal.insert_version(cur, snap)
        logger.debug("Snapshot %s v%d (%s)", record.id, version, change_kind)
        return snap

    def _readable(self, caller: Caller, record_id: str) -> SecretRecord:
        """Owner or holder of a valid grant; deleted records keep their history."""
        self._policy.authorize(caller, "secret", "read")
        with self._connect() as conn:
            record = records_dal.fetch_record(
                conn.cursor(cursor_factory=RealDictCursor), record_id, include_deleted=True
            )
        if record is None:
            raise NotFound(f"Secret {record_id} not found")
        if record.is_owner(caller.subject_id):
            return record
        if self._grants is not None and record_id in self._grants.valid_record_ids(
            caller.subject_id, [record_id]
        ):
            return record
        raise Forbidden(f"{caller.subject_id} may not view history of {record_id}")

    def history(self, caller: Caller, record_id: str) -> list[SecretVersion]:
        """All snapshots, newest first."""
        self._readable(caller, record_id)
        with self._connect() as conn:
            return dal.fetch_versions(conn.cursor(cursor_factory=RealDictCursor), record_id)

    def history_at(self, caller: Caller, record_id: str, version: int) -> SecretVersion:
        self._readable(caller, record_id)
        with self._connect() as conn:
            snap = dal.fetch_version(conn.cursor(cursor_factory=RealDictCursor), record_id, version)
        if snap is None:
            raise NotFound(f"Secret {record_id} has no version {version}")
        return snap

    def diff(self, caller: Caller, record_id: str, v1: int, v2: int) -> VersionDiff:
        self._readable(caller, record_id)
        with self._connect() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            a = dal.fetch_version(cur, record_id, v1)
            b = dal.fetch_version(cur, record_id, v2)
        for number, snap in ((v1, a), (v2, b)):
            if snap is None:
                raise NotFound(f"Secret {record_id} has no version {number}")
        changed = a.sealed_payload != b.sealed_payload and (
            self._encryption.open(a.sealed_payload) != self._encryption.open(b.sealed_payload)
        )
        return diff_versions(a, b, changed)

    def restore(self, caller: Caller, record_id: str, version: int, reason: str = "") -> SecretRecord:
        """Roll the live record back to ``version``.

        The pre-restore state is snapshotted first, then the record takes the
        old snapshot's field values at the new version number. A soft-deleted
        record comes back to life.
        """
        self._policy.authorize(caller, "secret", "update")
        now = self._clock()
        with self._connect() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            record = records_dal.fetch_record(cur, record_id, for_update=True, include_deleted=True)
            if record is None:
                raise NotFound(f"Secret {record_id} not found")
            if not record.is_owner(caller.subject_id):
                raise Forbidden(f"Only the owner may restore {record_id}")
            target = dal.fetch_version(cur, record_id, version)
            if target is None:
                raise NotFound(f"Secret {record_id} has no version {version}")

            pre = self.snapshot(
                cur,
                record,
                ChangeKind.RESTORED,
                reason or f"before restore to v{version}",
                caller.subject_id,
            )
            restored = record.model_copy(
                update={
                    "name": target.name,
                    "description": target.description,
                    "kind": target.kind,
                    "category": target.category,
                    "environment": target.environment,
                    "tags": list(target.tags),
                    "sealed_payload": target.sealed_payload,
                    "expires_at": target.expires_at,
                    "version": pre.version,
                    "updated_by": caller.subject_id,
                    "updated_at": now,
                    "deleted_at": None,
                }
            )
            records_dal.update_record(cur, restored)

        logger.info("Restored %s to v%d as v%d", record_id, version, restored.version)
        if self._auditor is not None:
            self._auditor.log(caller.subject_id, "secret.restore", "secret", record_id)
        return restored
