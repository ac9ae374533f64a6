"""
Notification adapters.

The vault core only depends on ``Notifier.notify(recipient, template_type,
data)``. Delivery channels (chat, email, push) live outside this package and
read the ``notifications`` table written by ``DatabaseNotifier``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Protocol

from psycopg2.extras import Json

from strongbox.context import utcnow
from strongbox.db.connection import get_connection

logger = logging.getLogger(__name__)


class TemplateType(StrEnum):
    ACCESS_REQUEST_CREATED = "access_request_created"
    ACCESS_REQUEST_APPROVED = "access_request_approved"
    ACCESS_REQUEST_REJECTED = "access_request_rejected"
    ACCESS_REQUEST_EXPIRED = "access_request_expired"
    ACCESS_REQUEST_REVOKED = "access_request_revoked"
    SECRET_EXPIRING = "secret_expiring"
    SECRET_EXPIRED = "secret_expired"


# type -> (title, content, priority)
TEMPLATES: dict[TemplateType, tuple[str, str, str]] = {
    TemplateType.ACCESS_REQUEST_CREATED: (
        "New access request",
        "{applicant_name} requested access to {secret_name}: {reason}",
        "normal",
    ),
    TemplateType.ACCESS_REQUEST_APPROVED: (
        "Access request approved",
        "Your access to {secret_name} was approved by {approver_name}, valid until {valid_until}",
        "normal",
    ),
    TemplateType.ACCESS_REQUEST_REJECTED: (
        "Access request rejected",
        "Your access request for {secret_name} was rejected: {reject_reason}",
        "normal",
    ),
    TemplateType.ACCESS_REQUEST_EXPIRED: (
        "Access expired",
        "Your access to {secret_name} has expired",
        "low",
    ),
    TemplateType.ACCESS_REQUEST_REVOKED: (
        "Access revoked",
        "Your access to {secret_name} was revoked: {reject_reason}",
        "high",
    ),
    TemplateType.SECRET_EXPIRING: (
        "Secret expiring soon",
        "{secret_name} expires in {expires_in}, rotate it soon",
        "high",
    ),
    TemplateType.SECRET_EXPIRED: (
        "Secret expired",
        "{secret_name} has expired, rotate it now",
        "urgent",
    ),
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(template_type: TemplateType | str, data: dict[str, Any]) -> tuple[str, str, str]:
    """Return (title, content, priority). Missing fields render empty."""
    title, content, priority = TEMPLATES[TemplateType(template_type)]
    return title, content.format_map(_Blank(data)), priority


def deliver(
    notifier: Notifier | None,
    messages: Iterable[tuple[str, str, dict[str, Any]]],
) -> list[tuple[str, Exception]]:
    """Send every message; return the (recipient, error) pairs that failed."""
    failures: list[tuple[str, Exception]] = []
    if notifier is None:
        return failures
    for recipient, template_type, data in messages:
        try:
            notifier.notify(recipient, template_type, data)
        except Exception as e:
            logger.error("Notification %s to %s failed: %s", template_type, recipient, e)
            failures.append((recipient, e))
    return failures


class Notifier(Protocol):
    def notify(self, recipient: str, template_type: str, data: dict[str, Any]) -> None: ...

    def sent_since(self, template_type: str, related_id: str, since: datetime) -> bool: ...

    def cleanup_expired(self, now: datetime | None = None) -> int: ...


class DatabaseNotifier:
    """Queue notifications as rows in ``notifications``."""

    def __init__(
        self,
        retention_days: int = 30,
        connection_factory: Callable = get_connection,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.retention = timedelta(days=retention_days)
        self._connect = connection_factory
        self._clock = clock

    def notify(self, recipient: str, template_type: str, data: dict[str, Any]) -> None:
        title, content, priority = render(template_type, data)
        now = self._clock()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO notifications
                    (recipient_id, template_type, title, content, priority,
                     related_id, data, created_at, expires_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    recipient,
                    str(template_type),
                    title,
                    content,
                    priority,
                    data.get("related_id"),
                    Json(data),
                    now,
                    now + self.retention,
                ),
            )
        logger.debug("Queued %s notification for %s", template_type, recipient)

    def sent_since(self, template_type: str, related_id: str, since: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT 1 FROM notifications
                WHERE template_type = %s AND related_id = %s AND created_at > %s
                LIMIT 1
                """,
                (str(template_type), related_id, since),
            )
            return cur.fetchone() is not None

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete notifications past their retention. Returns the row count."""
        now = now or self._clock()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "DELETE FROM notifications WHERE expires_at IS NOT NULL AND expires_at < %s",
                (now,),
            )
            return cur.rowcount


class LoggingNotifier:
    """Notifier that writes to the process log only."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._sent: dict[tuple[str, str], datetime] = {}

    def notify(self, recipient: str, template_type: str, data: dict[str, Any]) -> None:
        title, content, priority = render(template_type, data)
        related = data.get("related_id")
        if related:
            with self._lock:
                self._sent[(str(template_type), related)] = self._clock()
        logger.info("notify %s [%s] %s: %s", recipient, priority, title, content)

    def sent_since(self, template_type: str, related_id: str, since: datetime) -> bool:
        with self._lock:
            last = self._sent.get((str(template_type), related_id))
        return last is not None and last > since

    def cleanup_expired(self, now: datetime | None = None) -> int:
        return 0
