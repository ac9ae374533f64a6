"""
Background sweeps — APScheduler interval jobs sharing one stop signal.

Jobs:
  - grants          flip approved grants past valid_until to expired (hourly)
  - secrets         warn owners about secrets expiring soon, and security
                    managers about expired ones, at most once per 24h each
  - notifications   delete notifications past retention (daily)

max_instances=1 keeps a slow run from overlapping the next one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from psycopg2.extras import RealDictCursor

from strongbox.config import SweepConfig
from strongbox.context import utcnow
from strongbox.db.connection import get_connection
from strongbox.notify import TemplateType, deliver
from strongbox.records import dal as records_dal

logger = logging.getLogger(__name__)

DEDUPE_WINDOW = timedelta(hours=24)
EXPIRED_RECIPIENT_ROLES = ("sec_mgr",)


def _hours_left(expires_at: datetime, now: datetime) -> str:
    return f"{max(0, int((expires_at - now).total_seconds() // 3600))}h"


class SweepRunner:
    def __init__(
        self,
        grants,
        policy,
        notifier=None,
        cfg: SweepConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        connection_factory: Callable = get_connection,
    ) -> None:
        self._grants = grants
        self._policy = policy
        self._notifier = notifier
        self._cfg = cfg or SweepConfig()
        self._clock = clock
        self._connect = connection_factory
        self.stop_event = threading.Event()
        self.scheduler = BackgroundScheduler(timezone="UTC")

    # ─── Jobs ────────────────────────────────────────────────────────────

    def sweep_grants(self) -> int:
        return self._grants.expire_due(self.stop_event)

    def sweep_secret_expiry(self) -> tuple[int, int]:
        """Returns (expiring warnings sent, expired alerts sent)."""
        if self._notifier is None:
            return 0, 0
        now = self._clock()
        with self._connect() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            expiring = records_dal.fetch_expiring(
                cur, now, now + timedelta(days=self._cfg.expiry_warning_days)
            )
            expired = records_dal.fetch_expired(cur, now)

        since = now - DEDUPE_WINDOW
        warned = 0
        for rec in expiring:
            if self.stop_event.is_set():
                break
            try:
                if self._notifier.sent_since(TemplateType.SECRET_EXPIRING, rec.id, since):
                    continue
                data = {
                    "related_id": rec.id,
                    "secret_name": rec.name,
                    "expires_in": _hours_left(rec.expires_at, now),
                }
                if not deliver(self._notifier, [(rec.created_by, TemplateType.SECRET_EXPIRING, data)]):
                    warned += 1
            except Exception as e:
                logger.error("Expiry warning for secret %s failed: %s", rec.id, e)

        managers = sorted(
            {
                subject
                for role in (self._policy.super_role, *EXPIRED_RECIPIENT_ROLES)
                for subject in self._policy.subjects_of(role)
            }
        )
        alerted = 0
        for rec in expired:
            if self.stop_event.is_set():
                break
            try:
                if self._notifier.sent_since(TemplateType.SECRET_EXPIRED, rec.id, since):
                    continue
                data = {"related_id": rec.id, "secret_name": rec.name}
                failures = deliver(
                    self._notifier, [(m, TemplateType.SECRET_EXPIRED, data) for m in managers]
                )
                if managers and len(failures) < len(managers):
                    alerted += 1
            except Exception as e:
                logger.error("Expired alert for secret %s failed: %s", rec.id, e)

        logger.info(
            "Secret expiry sweep: %d expiring (%d warned), %d expired (%d alerted)",
            len(expiring),
            warned,
            len(expired),
            alerted,
        )
        return warned, alerted

    def cleanup_notifications(self) -> int:
        if self._notifier is None:
            return 0
        removed = self._notifier.cleanup_expired(self._clock())
        logger.info("Notification cleanup removed %d row(s)", removed)
        return removed

    # ─── Scheduling ──────────────────────────────────────────────────────

    def _run(self, name: str, job: Callable[[], object]) -> None:
        if self.stop_event.is_set():
            return
        try:
            job()
        except Exception as e:
            logger.error("Sweep %s failed: %s", name, e)

    def start(self) -> None:
        jobs = [
            ("grants", self.sweep_grants, self._cfg.grant_expiry_interval),
            ("secrets", self.sweep_secret_expiry, self._cfg.secret_expiry_interval),
            ("notifications", self.cleanup_notifications, self._cfg.notification_cleanup_interval),
        ]
        for name, job, seconds in jobs:
            self.scheduler.add_job(
                self._run,
                trigger=IntervalTrigger(seconds=seconds),
                args=[name, job],
                id=f"sweep:{name}",
                name=f"sweep:{name}",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )
            logger.info("Registered sweep %s every %ds", name, seconds)
        self.stop_event.clear()
        self.scheduler.start()

    def stop(self) -> None:
        """Signal running sweeps to stop and wait for them to return."""
        self.stop_event.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        logger.info("Sweeps stopped")
