"""
History DAL — append-only SQL for ``secret_versions``.

No function here updates or deletes a snapshot row.
"""

from __future__ import annotations

from psycopg2.extras import Json

from strongbox.history.models import SecretVersion

_COLUMNS = """
    id, record_id, version, name, description, kind, category, environment, tags,
    sealed_payload, expires_at, change_kind, change_reason, actor, captured_at
"""


def version_from_row(row: dict) -> SecretVersion:
    return SecretVersion.model_validate(dict(row))


def max_version(cur, record_id: str) -> int:
    cur.execute(
        "SELECT COALESCE(MAX(version), 0) AS v FROM secret_versions WHERE record_id = %s",
        (record_id,),
    )
    return cur.fetchone()["v"]


def insert_version(cur, snap: SecretVersion) -> None:
    cur.execute(
        """
        INSERT INTO secret_versions
            (id, record_id, version, name, description, kind, category, environment, tags,
             sealed_payload, expires_at, change_kind, change_reason, actor, captured_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            snap.id,
            snap.record_id,
            snap.version,
            snap.name,
            snap.description,
            str(snap.kind),
            snap.category,
            str(snap.environment),
            Json(snap.tags),
            snap.sealed_payload,
            snap.expires_at,
            str(snap.change_kind),
            snap.change_reason,
            snap.actor,
            snap.captured_at,
        ),
    )


def fetch_versions(cur, record_id: str) -> list[SecretVersion]:
    cur.execute(
        f"SELECT {_COLUMNS} FROM secret_versions WHERE record_id = %s ORDER BY version DESC",
        (record_id,),
    )
    return [version_from_row(r) for r in cur.fetchall()]


def fetch_version(cur, record_id: str, version: int) -> SecretVersion | None:
    cur.execute(
        f"SELECT {_COLUMNS} FROM secret_versions WHERE record_id = %s AND version = %s",
        (record_id, version),
    )
    row = cur.fetchone()
    return version_from_row(row) if row else None
