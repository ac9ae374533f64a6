"""
Grants DAL — SQL for ``access_grants``.

Functions take an open ``RealDictCursor``; the workflow owns the transaction.
"""

from __future__ import annotations

from datetime import datetime

from strongbox.grants.models import AccessGrant, GrantFilter, GrantStatus

_COLUMNS = """
    id, record_id, applicant_id, reason, status, approver_id, decided_at,
    valid_from, valid_until, note, reject_reason, access_count, last_accessed,
    created_at, updated_at
"""


def grant_from_row(row: dict) -> AccessGrant:
    return AccessGrant.model_validate(dict(row))


def lock_pair(cur, record_id: str, applicant_id: str) -> None:
    """Serialise requests for one (record, applicant) until commit."""
    cur.execute(
        "SELECT pg_advisory_xact_lock(hashtext(%s))",
        (f"access_grant:{record_id}:{applicant_id}",),
    )


def find_blocking(cur, record_id: str, applicant_id: str) -> AccessGrant | None:
    """A pending grant, or any approved grant whether or not its window has passed."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM access_grants
        WHERE record_id = %s AND applicant_id = %s AND status IN ('pending', 'approved')
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (record_id, applicant_id),
    )
    row = cur.fetchone()
    return grant_from_row(row) if row else None


def insert_grant(cur, grant: AccessGrant) -> None:
    cur.execute(
        """
        INSERT INTO access_grants
            (id, record_id, applicant_id, reason, status, created_at, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (
            grant.id,
            grant.record_id,
            grant.applicant_id,
            grant.reason,
            str(grant.status),
            grant.created_at,
            grant.updated_at,
        ),
    )


def fetch_grant(cur, grant_id: str, *, for_update: bool = False) -> AccessGrant | None:
    sql = f"SELECT {_COLUMNS} FROM access_grants WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"
    cur.execute(sql, (grant_id,))
    row = cur.fetchone()
    return grant_from_row(row) if row else None


def update_grant(cur, grant: AccessGrant) -> None:
    cur.execute(
        """
        UPDATE access_grants
        SET status = %s, approver_id = %s, decided_at = %s, valid_from = %s,
            valid_until = %s, note = %s, reject_reason = %s, updated_at = %s
        WHERE id = %s
        """,
        (
            str(grant.status),
            grant.approver_id,
            grant.decided_at,
            grant.valid_from,
            grant.valid_until,
            grant.note,
            grant.reject_reason,
            grant.updated_at,
            grant.id,
        ),
    )


def query_grants(cur, flt: GrantFilter) -> tuple[list[AccessGrant], int]:
    clauses: list[str] = []
    params: list = []
    if flt.status:
        clauses.append("status = %s")
        params.append(str(flt.status))
    if flt.applicant_id:
        clauses.append("applicant_id = %s")
        params.append(flt.applicant_id)
    if flt.record_id:
        clauses.append("record_id = %s")
        params.append(flt.record_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    cur.execute(f"SELECT COUNT(*) AS n FROM access_grants {where}", params)
    total = cur.fetchone()["n"]
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM access_grants {where}
        ORDER BY created_at DESC, id DESC
        LIMIT %s OFFSET %s
        """,
        [*params, flt.page_size, (flt.page - 1) * flt.page_size],
    )
    return [grant_from_row(r) for r in cur.fetchall()], total


def record_access(cur, applicant_id: str, record_ids: list[str], now: datetime) -> list[AccessGrant]:
    """Bump the counter on every currently valid grant and return them."""
    cur.execute(
        f"""
        UPDATE access_grants
        SET access_count = access_count + 1, last_accessed = %s
        WHERE applicant_id = %s AND record_id = ANY(%s)
          AND status = %s AND valid_from <= %s AND valid_until > %s
        RETURNING {_COLUMNS}
        """,
        (now, applicant_id, record_ids, str(GrantStatus.APPROVED), now, now),
    )
    return [grant_from_row(r) for r in cur.fetchall()]


def valid_record_ids(cur, applicant_id: str, now: datetime, record_ids: list[str] | None = None) -> set[str]:
    sql = """
        SELECT DISTINCT record_id FROM access_grants
        WHERE applicant_id = %s AND status = %s AND valid_from <= %s AND valid_until > %s
    """
    params: list = [applicant_id, str(GrantStatus.APPROVED), now, now]
    if record_ids is not None:
        sql += " AND record_id = ANY(%s)"
        params.append(record_ids)
    cur.execute(sql, params)
    return {r["record_id"] for r in cur.fetchall()}


def lock_due_for_expiry(cur, now: datetime) -> list[AccessGrant]:
    """Approved grants whose window has passed, skipping rows locked elsewhere."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM access_grants
        WHERE status = %s AND valid_until <= %s
        ORDER BY valid_until
        FOR UPDATE SKIP LOCKED
        """,
        (str(GrantStatus.APPROVED), now),
    )
    return [grant_from_row(r) for r in cur.fetchall()]
