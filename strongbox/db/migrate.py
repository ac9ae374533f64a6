"""
Schema migrations for ``strongbox/migrations/NNN_name.sql``.

Each file runs in its own transaction together with its row in
``schema_migrations``. A session advisory lock keeps two processes from
migrating the same database at once; checksums flag files edited after
they were applied.

Usage:
    python -m strongbox.db.migrate status
    python -m strongbox.db.migrate apply [VERSION] [--dry-run]
"""

from __future__ import annotations

import argparse
import hashlib
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path

from psycopg2.extras import RealDictCursor

from strongbox.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"

# 001_core.sql, 002b_hotfix.sql
_NAME_RE = re.compile(r"^(\d+[a-z]?)_[\w-]+\.sql$")

_LOCK_KEY = 0x5742  # pg_advisory_lock key shared by every migrator

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version     TEXT PRIMARY KEY,
        filename    TEXT NOT NULL,
        checksum    TEXT NOT NULL,
        applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


def discover(migrations_dir: Path | None = None) -> list[Migration]:
    """Migration files in version order. Other files are ignored."""
    found = []
    for path in sorted((migrations_dir or MIGRATIONS_DIR).glob("*.sql")):
        m = _NAME_RE.match(path.name)
        if m:
            found.append(Migration(m.group(1), path))
    return found


def _applied(cur) -> dict[str, dict]:
    cur.execute("SELECT version, filename, checksum, applied_at FROM schema_migrations")
    return {row["version"]: dict(row) for row in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[dict]:
    """One row per file: version, filename, status (applied/pending/DRIFT), applied_at."""
    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(_CREATE_TABLE)
        applied = _applied(cur)

    rows = []
    for mig in discover(migrations_dir):
        row = applied.get(mig.version)
        if row is None:
            state = "pending"
        elif row["checksum"] != mig.checksum:
            state = "DRIFT"
        else:
            state = "applied"
        rows.append(
            {
                "version": mig.version,
                "filename": mig.path.name,
                "status": state,
                "applied_at": row["applied_at"] if row else None,
            }
        )
    return rows


def apply(
    version: str | None = None,
    dry_run: bool = False,
    migrations_dir: Path | None = None,
) -> list[str]:
    """Apply pending migrations (or only ``version``). Returns the versions applied."""
    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(_CREATE_TABLE)
        conn.commit()
        cur.execute("SELECT pg_advisory_lock(%s)", (_LOCK_KEY,))
        try:
            applied = _applied(cur)
            pending = [
                mig
                for mig in discover(migrations_dir)
                if mig.version not in applied and version in (None, mig.version)
            ]
            if not pending:
                print("Nothing to apply.")
                return []

            done: list[str] = []
            for mig in pending:
                if dry_run:
                    print(f"[dry-run] Would apply {mig.path.name}")
                    done.append(mig.version)
                    continue
                try:
                    cur.execute(mig.path.read_text())
                    cur.execute(
                        "INSERT INTO schema_migrations (version, filename, checksum) VALUES (%s, %s, %s)",
                        (mig.version, mig.path.name, mig.checksum),
                    )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    logger.error("Migration %s failed, rolled back", mig.path.name)
                    raise
                logger.info("Applied migration %s", mig.path.name)
                print(f"Applied {mig.path.name}")
                done.append(mig.version)
            return done
        finally:
            cur.execute("SELECT pg_advisory_unlock(%s)", (_LOCK_KEY,))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="strongbox.db.migrate")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("status", help="Show applied, pending and drifted files")
    apply_parser = sub.add_parser("apply", help="Apply pending files")
    apply_parser.add_argument("version", nargs="?")
    apply_parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    if args.command == "apply":
        apply(version=args.version, dry_run=args.dry_run)
        return 0

    rows = status()
    if not rows:
        print("No migration files found.")
    for r in rows:
        at = str(r["applied_at"])[:19] if r["applied_at"] else ""
        print(f"{r['version']:<8} {r['filename']:<35} {r['status']:<8} {at}")
    return 1 if any(r["status"] == "DRIFT" for r in rows) else 0


if __name__ == "__main__":
    sys.exit(main())
