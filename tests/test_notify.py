"""Tests for strongbox.notify."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

from strongbox.notify import (
    TEMPLATES,
    DatabaseNotifier,
    LoggingNotifier,
    TemplateType,
    deliver,
    render,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class TestRender:
    def test_every_type_has_a_template(self):
        assert set(TEMPLATES) == set(TemplateType)

    def test_fills_fields(self):
        title, content, priority = render(
            TemplateType.ACCESS_REQUEST_CREATED,
            {"applicant_name": "Alice", "secret_name": "prod-db", "reason": "incident-42"},
        )
        assert title == "New access request"
        assert content == "Alice requested access to prod-db: incident-42"
        assert priority == "normal"

    def test_missing_fields_render_empty(self):
        _, content, _ = render("access_request_expired", {})
        assert content == "Your access to  has expired"

    def test_expired_secret_is_urgent(self):
        assert render(TemplateType.SECRET_EXPIRED, {})[2] == "urgent"


class TestDeliver:
    def test_no_notifier(self):
        assert deliver(None, [("alice", TemplateType.SECRET_EXPIRED, {})]) == []

    def test_collects_failures(self):
        notifier = MagicMock()
        err = RuntimeError("down")
        notifier.notify.side_effect = [None, err, None]
        failures = deliver(
            notifier,
            [(r, TemplateType.SECRET_EXPIRED, {}) for r in ("a", "b", "c")],
        )
        assert failures == [("b", err)]
        assert notifier.notify.call_count == 3


class TestDatabaseNotifier:
    def test_notify_inserts_row(self, fake_db):
        factory, _, cursor = fake_db
        notifier = DatabaseNotifier(retention_days=7, connection_factory=factory, clock=lambda: T0)
        notifier.notify("alice", TemplateType.SECRET_EXPIRING, {"related_id": "r1", "secret_name": "db"})

        params = cursor.execute.call_args.args[1]
        assert params[0] == "alice"
        assert params[1] == "secret_expiring"
        assert params[2] == "Secret expiring soon"
        assert params[4] == "high"
        assert params[5] == "r1"
        assert params[7] == T0
        assert params[8] == T0 + timedelta(days=7)

    def test_sent_since(self, fake_db):
        factory, _, cursor = fake_db
        notifier = DatabaseNotifier(connection_factory=factory)
        cursor.fetchone.return_value = (1,)
        assert notifier.sent_since(TemplateType.SECRET_EXPIRED, "r1", T0)
        cursor.fetchone.return_value = None
        assert not notifier.sent_since(TemplateType.SECRET_EXPIRED, "r1", T0)

    def test_cleanup_expired(self, fake_db):
        factory, _, cursor = fake_db
        cursor.rowcount = 3
        notifier = DatabaseNotifier(connection_factory=factory, clock=lambda: T0)
        assert notifier.cleanup_expired() == 3
        assert cursor.execute.call_args.args[1] == (T0,)


class TestLoggingNotifier:
    def test_remembers_sent(self):
        notifier = LoggingNotifier(clock=lambda: T0)
        notifier.notify("alice", TemplateType.SECRET_EXPIRING, {"related_id": "r1"})
        assert notifier.sent_since(TemplateType.SECRET_EXPIRING, "r1", T0 - timedelta(hours=1))
        assert not notifier.sent_since(TemplateType.SECRET_EXPIRING, "r1", T0)
        assert not notifier.sent_since(TemplateType.SECRET_EXPIRED, "r1", T0 - timedelta(hours=1))
