"""
Process wiring — builds every component once and hands them to each other.

Usage:
    rt = Runtime.from_config()
    rt.start()                       # background sweeps
    view = rt.records.get(caller, record_id)
    rt.close()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from strongbox.audit.logger import DatabaseAuditor
from strongbox.config import Config, get_config
from strongbox.db.connection import close_pool
from strongbox.encryption.service import EncryptionService
from strongbox.grants.workflow import AccessGrantWorkflow
from strongbox.history.engine import VersioningEngine
from strongbox.notify import DatabaseNotifier
from strongbox.policy.dal import PostgresPolicyStore
from strongbox.policy.engine import PolicyEngine
from strongbox.records.store import SecretRecordStore
from strongbox.sweeps import SweepRunner

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: Config
    encryption: EncryptionService
    policy: PolicyEngine
    grants: AccessGrantWorkflow
    versions: VersioningEngine
    records: SecretRecordStore
    sweeps: SweepRunner
    notifier: Any = None
    auditor: Any = None

    @classmethod
    def from_config(
        cls,
        cfg: Config | None = None,
        *,
        notifier: Any = None,
        auditor: Any = None,
    ) -> Runtime:
        cfg = cfg or get_config()
        notifier = notifier or DatabaseNotifier(retention_days=cfg.sweeps.notification_retention_days)
        auditor = auditor or DatabaseAuditor()

        encryption = EncryptionService.from_config(cfg)
        policy = PolicyEngine(
            PostgresPolicyStore(), super_role=cfg.security.super_role, auditor=auditor
        )
        policy.load()
        grants = AccessGrantWorkflow(policy, notifier=notifier, auditor=auditor)
        versions = VersioningEngine(policy, encryption, grants=grants, auditor=auditor)
        records = SecretRecordStore(encryption, policy, grants, versions, auditor=auditor)
        sweeps = SweepRunner(grants, policy, notifier=notifier, cfg=cfg.sweeps)
        logger.info("Strongbox runtime ready (%s)", encryption.describe()["active"])
        return cls(
            config=cfg,
            encryption=encryption,
            policy=policy,
            grants=grants,
            versions=versions,
            records=records,
            sweeps=sweeps,
            notifier=notifier,
            auditor=auditor,
        )

    def start(self) -> None:
        self.sweeps.start()

    def close(self) -> None:
        """Stop sweeps before the pool goes away, then flush audit rows."""
        self.sweeps.stop()
        if self.auditor is not None and hasattr(self.auditor, "close"):
            self.auditor.close()
        close_pool()
