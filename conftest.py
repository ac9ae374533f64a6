"""
Root-level shared test fixtures.

Inherited by the unit tests under tests/ and the package-level test suites.
"""

from __future__ import annotations

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from strongbox.config import reset_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove STRONGBOX_* env vars that leak between tests."""
    for key in [
        "STRONGBOX_DB_HOST",
        "STRONGBOX_DB_PORT",
        "STRONGBOX_DB_NAME",
        "STRONGBOX_DB_USER",
        "STRONGBOX_DB_PASSWORD",
        "STRONGBOX_DB_POOL_MIN",
        "STRONGBOX_DB_POOL_MAX",
        "STRONGBOX_DB_CONNECT_TIMEOUT",
        "STRONGBOX_DB_STATEMENT_TIMEOUT_MS",
        "STRONGBOX_ENCRYPTION_KEY",
        "STRONGBOX_KEY_FILE",
        "STRONGBOX_HOME",
        "STRONGBOX_SUPER_ROLE",
        "STRONGBOX_VAULT_ENABLED",
        "STRONGBOX_VAULT_ADDRESS",
        "STRONGBOX_VAULT_TOKEN",
        "STRONGBOX_VAULT_TLS_INSECURE",
        "STRONGBOX_VAULT_CA_CERT",
        "STRONGBOX_VAULT_KEY_NAME",
        "STRONGBOX_VAULT_MOUNT_PATH",
        "STRONGBOX_GRANT_SWEEP_SECONDS",
        "STRONGBOX_SECRET_SWEEP_SECONDS",
        "STRONGBOX_EXPIRY_WARNING_DAYS",
    ]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fake_db():
    """(connection_factory, conn, cursor) backed by MagicMock."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value = cursor

    @contextmanager
    def factory():
        yield conn

    return factory, conn, cursor


class MemoryStore:
    """Dict-backed stand-in for the records and history DAL modules."""

    def __init__(self):
        self.records = {}
        self.versions = {}

    # records dal

    def insert_record(self, cur, rec):
        self.records[rec.id] = rec

    def fetch_record(self, cur, record_id, *, for_update=False, include_deleted=False):
        rec = self.records.get(record_id)
        if rec is None or (rec.deleted_at is not None and not include_deleted):
            return None
        return rec

    def update_record(self, cur, rec):
        self.records[rec.id] = rec

    def query_records(self, cur, flt, *, ids=None):
        live = [
            r
            for r in self.records.values()
            if r.deleted_at is None and (ids is None or r.id in ids)
        ]
        return live, len(live)

    # history dal

    def max_version(self, cur, record_id):
        return max((v.version for v in self.versions.get(record_id, [])), default=0)

    def insert_version(self, cur, snap):
        self.versions.setdefault(snap.record_id, []).append(snap)

    def fetch_versions(self, cur, record_id):
        return sorted(self.versions.get(record_id, []), key=lambda v: v.version, reverse=True)

    def fetch_version(self, cur, record_id, version):
        for snap in self.versions.get(record_id, []):
            if snap.version == version:
                return snap
        return None


@pytest.fixture
def memory_store():
    """Patch the records and history DAL modules with one MemoryStore."""
    store = MemoryStore()
    with (
        patch("strongbox.records.store.dal", store),
        patch("strongbox.history.engine.dal", store),
        patch("strongbox.history.engine.records_dal", store),
    ):
        yield store
