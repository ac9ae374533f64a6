"""
Records DAL — SQL for ``secret_records``.

Every function takes an open ``RealDictCursor`` so the caller controls the
transaction: a record write and its version snapshot share one commit.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extras import Json

from strongbox.records.models import RecordFilter, SecretRecord

_COLUMNS = """
    id, name, description, kind, category, environment, tags, sealed_payload,
    expires_at, version, created_by, updated_by, created_at, updated_at, deleted_at
"""


def record_from_row(row: dict) -> SecretRecord:
    return SecretRecord.model_validate(dict(row))


def insert_record(cur, rec: SecretRecord) -> None:
    cur.execute(
        """
        INSERT INTO secret_records
            (id, name, description, kind, category, environment, tags, sealed_payload,
             expires_at, version, created_by, updated_by, created_at, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            rec.id,
            rec.name,
            rec.description,
            str(rec.kind),
            rec.category,
            str(rec.environment),
            Json(rec.tags),
            rec.sealed_payload,
            rec.expires_at,
            rec.version,
            rec.created_by,
            rec.updated_by,
            rec.created_at,
            rec.updated_at,
        ),
    )


def fetch_record(
    cur,
    record_id: str,
    *,
    for_update: bool = False,
    include_deleted: bool = False,
) -> SecretRecord | None:
    sql = f"SELECT {_COLUMNS} FROM secret_records WHERE id = %s"
    if not include_deleted:
        sql += " AND deleted_at IS NULL"
    if for_update:
        sql += " FOR UPDATE"
    cur.execute(sql, (record_id,))
    row = cur.fetchone()
    return record_from_row(row) if row else None


def update_record(cur, rec: SecretRecord) -> None:
    """Write every mutable field, the version counter and the tombstone."""
    cur.execute(
        """
        UPDATE secret_records
        SET name = %s, description = %s, kind = %s, category = %s, environment = %s,
            tags = %s, sealed_payload = %s, expires_at = %s, version = %s,
            updated_by = %s, updated_at = %s, deleted_at = %s
        WHERE id = %s
        """,
        (
            rec.name,
            rec.description,
            str(rec.kind),
            rec.category,
            str(rec.environment),
            Json(rec.tags),
            rec.sealed_payload,
            rec.expires_at,
            rec.version,
            rec.updated_by,
            rec.updated_at,
            rec.deleted_at,
            rec.id,
        ),
    )


def query_records(
    cur,
    flt: RecordFilter,
    *,
    ids: list[str] | None = None,
) -> tuple[list[SecretRecord], int]:
    """Filtered, paginated live records, newest first. Returns (page, total)."""
    clauses = ["deleted_at IS NULL"]
    params: list = []
    if ids is not None:
        clauses.append("id = ANY(%s)")
        params.append(ids)
    if flt.kind:
        clauses.append("kind = %s")
        params.append(str(flt.kind))
    if flt.category:
        clauses.append("category = %s")
        params.append(flt.category)
    if flt.environment:
        clauses.append("environment = %s")
        params.append(str(flt.environment))
    if flt.tag:
        clauses.append("tags ? %s")
        params.append(flt.tag)
    if flt.search:
        clauses.append("(name ILIKE %s OR description ILIKE %s)")
        pattern = f"%{flt.search}%"
        params.extend([pattern, pattern])
    where = " AND ".join(clauses)

    cur.execute(f"SELECT COUNT(*) AS n FROM secret_records WHERE {where}", params)
    total = cur.fetchone()["n"]

    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM secret_records
        WHERE {where}
        ORDER BY created_at DESC, id DESC
        LIMIT %s OFFSET %s
        """,
        [*params, flt.page_size, (flt.page - 1) * flt.page_size],
    )
    return [record_from_row(r) for r in cur.fetchall()], total


def fetch_expiring(cur, now: datetime, until: datetime) -> list[SecretRecord]:
    """Live records with ``now < expires_at <= until``."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM secret_records
        WHERE deleted_at IS NULL AND expires_at > %s AND expires_at <= %s
        ORDER BY expires_at
        """,
        (now, until),
    )
    return [record_from_row(r) for r in cur.fetchall()]


def fetch_expired(cur, now: datetime) -> list[SecretRecord]:
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM secret_records
        WHERE deleted_at IS NULL AND expires_at <= %s
        ORDER BY expires_at
        """,
        (now,),
    )
    return [record_from_row(r) for r in cur.fetchall()]
