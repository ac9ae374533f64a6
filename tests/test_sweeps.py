"""Tests for strongbox.sweeps — jobs with patched DAL, scheduler wiring."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from strongbox.config import SweepConfig
from strongbox.notify import TemplateType
from strongbox.policy.engine import PolicyEngine
from strongbox.records.models import SecretKind, SecretRecord
from strongbox.sweeps import SweepRunner

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _record(rid: str, expires_at: datetime) -> SecretRecord:
    return SecretRecord(
        id=rid,
        name=f"secret-{rid}",
        kind=SecretKind.TOKEN,
        sealed_payload="aes:x",
        expires_at=expires_at,
        created_by="olga",
        updated_by="olga",
    )


@pytest.fixture
def policy():
    engine = PolicyEngine()
    engine.load()
    engine.assign_role("root", "super_admin")
    engine.assign_role("mgr", "sec_mgr")
    engine.assign_role("dave", "dev")
    return engine


@pytest.fixture
def records_dal():
    with patch("strongbox.sweeps.records_dal") as m:
        m.fetch_expiring.return_value = []
        m.fetch_expired.return_value = []
        yield m


@pytest.fixture
def notifier():
    n = MagicMock()
    n.sent_since.return_value = False
    return n


@pytest.fixture
def runner(policy, notifier, fake_db, records_dal):
    factory, _, _ = fake_db
    return SweepRunner(
        MagicMock(), policy, notifier=notifier, clock=lambda: T0, connection_factory=factory
    )


class TestSecretExpiry:
    def test_warns_owner(self, runner, notifier, records_dal):
        records_dal.fetch_expiring.return_value = [_record("r1", T0 + timedelta(hours=50))]
        assert runner.sweep_secret_expiry() == (1, 0)
        recipient, template, data = notifier.notify.call_args.args
        assert recipient == "olga"
        assert template == TemplateType.SECRET_EXPIRING
        assert data["expires_in"] == "50h"
        _, now, until = records_dal.fetch_expiring.call_args.args
        assert until - now == timedelta(days=7)

    def test_expired_alerts_managers(self, runner, notifier, records_dal):
        records_dal.fetch_expired.return_value = [_record("r1", T0 - timedelta(hours=1))]
        assert runner.sweep_secret_expiry() == (0, 1)
        recipients = [c.args[0] for c in notifier.notify.call_args_list]
        assert recipients == ["mgr", "root"]

    def test_dedupe_within_24h(self, runner, notifier, records_dal):
        records_dal.fetch_expiring.return_value = [_record("r1", T0 + timedelta(days=1))]
        records_dal.fetch_expired.return_value = [_record("r2", T0 - timedelta(days=1))]
        notifier.sent_since.return_value = True
        assert runner.sweep_secret_expiry() == (0, 0)
        notifier.notify.assert_not_called()
        since = notifier.sent_since.call_args.args[2]
        assert since == T0 - timedelta(hours=24)

    def test_one_failure_does_not_stop_others(self, runner, notifier, records_dal):
        records_dal.fetch_expiring.return_value = [
            _record("r1", T0 + timedelta(days=1)),
            _record("r2", T0 + timedelta(days=2)),
        ]
        notifier.notify.side_effect = [RuntimeError("down"), None]
        assert runner.sweep_secret_expiry() == (1, 0)

    def test_no_notifier(self, policy, records_dal):
        runner = SweepRunner(MagicMock(), policy)
        assert runner.sweep_secret_expiry() == (0, 0)
        records_dal.fetch_expiring.assert_not_called()

    def test_stop_event(self, runner, notifier, records_dal):
        records_dal.fetch_expiring.return_value = [_record("r1", T0 + timedelta(days=1))]
        runner.stop_event.set()
        assert runner.sweep_secret_expiry() == (0, 0)
        notifier.notify.assert_not_called()


class TestOtherJobs:
    def test_sweep_grants_passes_stop_event(self, runner):
        runner._grants.expire_due.return_value = 2
        assert runner.sweep_grants() == 2
        runner._grants.expire_due.assert_called_once_with(runner.stop_event)

    def test_cleanup_notifications(self, runner, notifier):
        notifier.cleanup_expired.return_value = 4
        assert runner.cleanup_notifications() == 4
        notifier.cleanup_expired.assert_called_once_with(T0)

    def test_run_swallows_job_errors(self, runner):
        job = MagicMock(side_effect=RuntimeError("boom"))
        runner._run("grants", job)
        job.assert_called_once()

    def test_run_skips_after_stop(self, runner):
        job = MagicMock()
        runner.stop_event.set()
        runner._run("grants", job)
        job.assert_not_called()


class TestScheduling:
    def test_start_registers_jobs(self, runner):
        runner._cfg = SweepConfig(grant_expiry_interval=60)
        runner.scheduler = MagicMock()
        runner.scheduler.running = True
        runner.start()

        ids = [c.kwargs["id"] for c in runner.scheduler.add_job.call_args_list]
        assert ids == ["sweep:grants", "sweep:secrets", "sweep:notifications"]
        first = runner.scheduler.add_job.call_args_list[0].kwargs
        assert first["max_instances"] == 1
        assert first["coalesce"] is True
        assert first["trigger"].interval == timedelta(seconds=60)
        runner.scheduler.start.assert_called_once()

        runner.stop()
        assert runner.stop_event.is_set()
        runner.scheduler.shutdown.assert_called_once_with(wait=True)
