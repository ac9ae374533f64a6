"""
Policy DAL — durable rule, inheritance and assignment rows in ``policy_rules``.

Row layout (``ptype``, ``v0``, ``v1``, ``v2``):
    p  role:<role>   <resource>     <action>   permission rule
    g  role:<child>  role:<parent>  ''         role inheritance
    g  <subject>     role:<role>    ''         role assignment
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from strongbox.db.connection import get_connection

logger = logging.getLogger(__name__)

ROLE_PREFIX = "role:"


def _role(name: str) -> str:
    return ROLE_PREFIX + name


def _strip(value: str) -> str:
    return value[len(ROLE_PREFIX):] if value.startswith(ROLE_PREFIX) else value


@dataclass
class PolicySnapshot:
    rules: list[tuple[str, str, str]] = field(default_factory=list)
    inheritance: list[tuple[str, str]] = field(default_factory=list)
    assignments: list[tuple[str, str]] = field(default_factory=list)


class PostgresPolicyStore:
    """Persists the policy graph. Every method is one transaction."""

    def __init__(self, connection_factory: Callable = get_connection) -> None:
        self._connect = connection_factory

    def load(self) -> PolicySnapshot:
        snap = PolicySnapshot()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT ptype, v0, v1, v2 FROM policy_rules ORDER BY id")
            for ptype, v0, v1, v2 in cur.fetchall():
                if ptype == "p":
                    snap.rules.append((_strip(v0), v1, v2))
                elif v0.startswith(ROLE_PREFIX):
                    snap.inheritance.append((_strip(v0), _strip(v1)))
                else:
                    snap.assignments.append((v0, _strip(v1)))
        return snap

    def seed(
        self,
        rules: Iterable[tuple[str, str, str]],
        inheritance: Iterable[tuple[str, str]],
    ) -> None:
        with self._connect() as conn:
            cur = conn.cursor()
            for role, resource, action in rules:
                self._insert(cur, "p", _role(role), resource, action)
            for child, parent in inheritance:
                self._insert(cur, "g", _role(child), _role(parent))

    def add_rule(self, role: str, resource: str, action: str) -> None:
        with self._connect() as conn:
            self._insert(conn.cursor(), "p", _role(role), resource, action)

    def remove_rule(self, role: str, resource: str, action: str) -> None:
        with self._connect() as conn:
            self._delete(conn.cursor(), "p", _role(role), resource, action)

    def replace_rules(self, role: str, rules: Iterable[tuple[str, str]]) -> None:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM policy_rules WHERE ptype = 'p' AND v0 = %s", (_role(role),))
            for resource, action in rules:
                self._insert(cur, "p", _role(role), resource, action)

    def add_inheritance(self, child: str, parent: str) -> None:
        with self._connect() as conn:
            self._insert(conn.cursor(), "g", _role(child), _role(parent))

    def remove_inheritance(self, child: str, parent: str) -> None:
        with self._connect() as conn:
            self._delete(conn.cursor(), "g", _role(child), _role(parent))

    def assign(self, subject: str, role: str) -> None:
        with self._connect() as conn:
            self._insert(conn.cursor(), "g", subject, _role(role))

    def unassign(self, subject: str, role: str) -> None:
        with self._connect() as conn:
            self._delete(conn.cursor(), "g", subject, _role(role))

    @staticmethod
    def _insert(cur, ptype: str, v0: str, v1: str, v2: str = "") -> None:
        cur.execute(
            """
            INSERT INTO policy_rules (ptype, v0, v1, v2)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (ptype, v0, v1, v2) DO NOTHING
            """,
            (ptype, v0, v1, v2),
        )

    @staticmethod
    def _delete(cur, ptype: str, v0: str, v1: str, v2: str = "") -> None:
        cur.execute(
            "DELETE FROM policy_rules WHERE ptype = %s AND v0 = %s AND v1 = %s AND v2 = %s",
            (ptype, v0, v1, v2),
        )
