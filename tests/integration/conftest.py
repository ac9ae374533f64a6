"""
Integration fixtures.

Uses a dedicated test database (strongbox_test) to avoid touching real data.
Migrations are applied once per session and tables are truncated between
tests. Every test here is skipped when PostgreSQL is not reachable.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

import pytest

# Point all DB connections to the test database BEFORE importing anything
os.environ["STRONGBOX_DB_NAME"] = os.environ.get("STRONGBOX_TEST_DB_NAME", "strongbox_test")

from strongbox.config import reset_config

reset_config()

from strongbox.audit.logger import LoggingAuditor
from strongbox.db import migrate
from strongbox.db.connection import close_pool, get_connection
from strongbox.encryption import EncryptionService, LocalCipher
from strongbox.grants.workflow import AccessGrantWorkflow
from strongbox.history.engine import VersioningEngine
from strongbox.notify import LoggingNotifier
from strongbox.policy.dal import PostgresPolicyStore
from strongbox.policy.engine import PolicyEngine
from strongbox.records.store import SecretRecordStore
from strongbox.sweeps import SweepRunner

TABLES = [
    "access_grants",
    "secret_versions",
    "secret_records",
    "policy_rules",
    "audit_log",
    "notifications",
]

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="session", autouse=True)
def schema():
    """Apply migrations once per test session."""
    try:
        migrate.apply()
    except ConnectionError as e:
        pytest.skip(f"PostgreSQL test database unavailable: {e}")
    yield
    close_pool()


@pytest.fixture(autouse=True)
def clean_tables():
    """Truncate all tables after each test."""
    yield
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(f"TRUNCATE {', '.join(TABLES)} CASCADE")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault(clock):
    """Fully wired components over the test database."""
    encryption = EncryptionService(LocalCipher(os.urandom(32)))
    auditor = LoggingAuditor()
    policy = PolicyEngine(PostgresPolicyStore(), auditor=auditor)
    policy.load()
    notifier = LoggingNotifier(clock=clock)
    grants = AccessGrantWorkflow(policy, notifier=notifier, auditor=auditor, clock=clock)
    versions = VersioningEngine(policy, encryption, grants=grants, auditor=auditor, clock=clock)
    records = SecretRecordStore(encryption, policy, grants, versions, auditor=auditor, clock=clock)
    sweeps = SweepRunner(grants, policy, notifier=notifier, clock=clock)
    return {
        "policy": policy,
        "grants": grants,
        "versions": versions,
        "records": records,
        "sweeps": sweeps,
        "notifier": notifier,
    }
