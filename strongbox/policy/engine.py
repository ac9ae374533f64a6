"""
Role-based policy engine with role inheritance.

One engine instance per process holds the authoritative in-memory graph
behind a read/write lock. Writes go to the durable store first and only then
change memory, so a failed write leaves the graph untouched.

Usage:
    engine = PolicyEngine(PostgresPolicyStore())
    engine.load()                                  # seeds defaults on empty table
    engine.check("dev", "secret", "read")          # True
    engine.add_inheritance("oncall", "dev")
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager

from strongbox.context import Caller
from strongbox.errors import Conflict, Forbidden, InvalidInput, NotFound, PolicyCycle
from strongbox.policy.dal import PolicySnapshot
from strongbox.policy.defaults import (
    CATALOGUE,
    DEFAULT_INHERITANCE,
    DEFAULT_RULES,
    MENUS,
    SUPER_ROLE,
)
from strongbox.policy.models import MenuItem, PolicyRule

logger = logging.getLogger(__name__)

WILDCARD = "*"
SYSTEM_ACTOR = "system"


class RWLock:
    """Many concurrent readers, one exclusive writer."""

    def __init__(self):
        self._read_ready = threading.Condition(threading.Lock())
        self._readers = 0

    def r_acquire(self):
        with self._read_ready:
            self._readers += 1

    def r_release(self):
        with self._read_ready:
            self._readers -= 1
            if self._readers == 0:
                self._read_ready.notify_all()

    def w_acquire(self):
        self._read_ready.acquire()
        while self._readers > 0:
            self._read_ready.wait()

    def w_release(self):
        self._read_ready.release()

    @contextmanager
    def reading(self) -> Iterator[None]:
        self.r_acquire()
        try:
            yield
        finally:
            self.r_release()

    @contextmanager
    def writing(self) -> Iterator[None]:
        self.w_acquire()
        try:
            yield
        finally:
            self.w_release()


def _matches(pattern: str, value: str) -> bool:
    return pattern == WILDCARD or pattern == value


def _require(**fields: str) -> None:
    for name, value in fields.items():
        if not value or not value.strip():
            raise InvalidInput(f"{name} must not be empty")


class PolicyEngine:
    def __init__(self, store=None, super_role: str = SUPER_ROLE, auditor=None) -> None:
        self._store = store
        self._auditor = auditor
        self.super_role = super_role
        self._lock = RWLock()
        self._rules: dict[str, set[tuple[str, str]]] = {}
        self._parents: dict[str, set[str]] = {}
        self._assignments: dict[str, set[str]] = {}

    def _audit(self, actor: str, action: str, target: str) -> None:
        if self._auditor is not None:
            self._auditor.log(actor, f"policy.{action}", "policy", target)

    # ─── Loading ─────────────────────────────────────────────────────────

    def load(self) -> None:
        """Read durable state, seeding the default rule set if none exists."""
        snap = self._store.load() if self._store is not None else PolicySnapshot()
        if not snap.rules:
            logger.info(
                "Policy table empty, seeding %d rules and %d inheritance edges",
                len(DEFAULT_RULES),
                len(DEFAULT_INHERITANCE),
            )
            if self._store is not None:
                self._store.seed(DEFAULT_RULES, DEFAULT_INHERITANCE)
            snap.rules = list(DEFAULT_RULES)
            snap.inheritance = list(dict.fromkeys(snap.inheritance + DEFAULT_INHERITANCE))
        self._replace(snap)

    def reload(self) -> None:
        """Re-read durable state without seeding."""
        snap = self._store.load() if self._store is not None else PolicySnapshot()
        self._replace(snap)

    def _replace(self, snap: PolicySnapshot) -> None:
        rules: dict[str, set[tuple[str, str]]] = {}
        for role, resource, action in snap.rules:
            rules.setdefault(role, set()).add((resource, action))
        parents: dict[str, set[str]] = {}
        for child, parent in snap.inheritance:
            parents.setdefault(child, set()).add(parent)
        assignments: dict[str, set[str]] = {}
        for subject, role in snap.assignments:
            assignments.setdefault(subject, set()).add(role)
        with self._lock.writing():
            self._rules = rules
            self._parents = parents
            self._assignments = assignments
        logger.info(
            "Policy loaded: %d rules, %d inheritance edges, %d assignments",
            len(snap.rules),
            len(snap.inheritance),
            len(snap.assignments),
        )

    # ─── Evaluation ──────────────────────────────────────────────────────

    def _closure(self, role: str) -> list[str]:
        """``role`` followed by every ancestor, nearest first. Caller holds a lock."""
        seen = {role}
        order = [role]
        queue = deque([role])
        while queue:
            current = queue.popleft()
            for parent in sorted(self._parents.get(current, ())):
                if parent not in seen:
                    seen.add(parent)
                    order.append(parent)
                    queue.append(parent)
        return order

    def check(self, role: str, resource: str, action: str) -> bool:
        if role == self.super_role:
            return True
        with self._lock.reading():
            for r in self._closure(role):
                for res, act in self._rules.get(r, ()):
                    if _matches(res, resource) and _matches(act, action):
                        return True
        return False

    def batch_check(self, role: str, pairs: Iterable[tuple[str, str]]) -> dict[str, bool]:
        return {f"{res}:{act}": self.check(role, res, act) for res, act in pairs}

    def permission_matrix(self, role: str) -> dict[str, bool]:
        """Every catalogued ``resource:action`` with its decision for ``role``."""
        return self.batch_check(
            role, [(res, act) for res, actions in CATALOGUE.items() for act in actions]
        )

    def menus(self, role: str) -> list[MenuItem]:
        return [
            MenuItem(path=path, title=title, icon=icon, order=order)
            for path, title, icon, order, res, act in MENUS
            if self.check(role, res, act)
        ]

    def roles_for(self, caller: Caller) -> list[str]:
        """The caller's session role plus roles assigned to its subject."""
        with self._lock.reading():
            assigned = self._assignments.get(caller.subject_id, set())
        return [caller.role] + sorted(assigned - {caller.role})

    def allows(self, caller: Caller, resource: str, action: str) -> bool:
        return any(self.check(role, resource, action) for role in self.roles_for(caller))

    def authorize(self, caller: Caller, resource: str, action: str) -> None:
        """Raise Forbidden unless the caller may perform ``action`` on ``resource``."""
        if not self.allows(caller, resource, action):
            logger.info(
                "Denied %s (%s) %s:%s", caller.subject_id, caller.role, resource, action
            )
            raise Forbidden(f"Role {caller.role} may not {action} {resource}")

    def subjects_with_permission(self, resource: str, action: str) -> list[str]:
        """Subjects holding any assigned role that passes ``check``."""
        with self._lock.reading():
            assignments = {s: set(roles) for s, roles in self._assignments.items()}
        return sorted(
            subject
            for subject, roles in assignments.items()
            if any(self.check(role, resource, action) for role in roles)
        )

    # ─── Rules ───────────────────────────────────────────────────────────

    def list_rules(self, role: str | None = None) -> list[PolicyRule]:
        with self._lock.reading():
            items = [
                (r, res, act)
                for r, pairs in self._rules.items()
                if role is None or r == role
                for res, act in pairs
            ]
        return [PolicyRule(role=r, resource=res, action=act) for r, res, act in sorted(items)]

    def add_rule(
        self, role: str, resource: str, action: str, *, actor: str = SYSTEM_ACTOR
    ) -> PolicyRule:
        _require(role=role, resource=resource, action=action)
        with self._lock.writing():
            if (resource, action) in self._rules.get(role, ()):
                raise Conflict(f"Rule already exists: {role} {resource}:{action}")
            if self._store is not None:
                self._store.add_rule(role, resource, action)
            self._rules.setdefault(role, set()).add((resource, action))
        logger.info("Added rule %s %s:%s", role, resource, action)
        self._audit(actor, "rule.add", f"{role} {resource}:{action}")
        return PolicyRule(role=role, resource=resource, action=action)

    def remove_rule(
        self, role: str, resource: str, action: str, *, actor: str = SYSTEM_ACTOR
    ) -> None:
        with self._lock.writing():
            if (resource, action) not in self._rules.get(role, ()):
                raise NotFound(f"No rule {role} {resource}:{action}")
            if self._store is not None:
                self._store.remove_rule(role, resource, action)
            self._rules[role].discard((resource, action))
            if not self._rules[role]:
                del self._rules[role]
        logger.info("Removed rule %s %s:%s", role, resource, action)
        self._audit(actor, "rule.remove", f"{role} {resource}:{action}")

    def update_role_permissions(
        self,
        role: str,
        permissions: Mapping[str, Iterable[str]],
        *,
        actor: str = SYSTEM_ACTOR,
    ) -> None:
        """Replace all direct rules of ``role`` with ``{resource: [actions]}``."""
        _require(role=role)
        pairs = {(res, act) for res, actions in permissions.items() for act in actions}
        for res, act in pairs:
            _require(resource=res, action=act)
        with self._lock.writing():
            if self._store is not None:
                self._store.replace_rules(role, sorted(pairs))
            if pairs:
                self._rules[role] = pairs
            else:
                self._rules.pop(role, None)
        logger.info("Replaced rules for %s (%d rules)", role, len(pairs))
        self._audit(actor, "role.update", role)

    def permissions_of(self, role: str) -> list[PolicyRule]:
        """Direct and inherited rules, one per (resource, action).

        Direct rules win over inherited ones; among ancestors the nearest
        wins. ``role`` on each returned rule names the role that grants it.
        """
        result: dict[tuple[str, str], PolicyRule] = {}
        with self._lock.reading():
            for r in self._closure(role):
                for res, act in sorted(self._rules.get(r, ())):
                    if (res, act) not in result:
                        result[(res, act)] = PolicyRule(role=r, resource=res, action=act)
        return list(result.values())

    # ─── Inheritance ─────────────────────────────────────────────────────

    def add_inheritance(self, child: str, parent: str, *, actor: str = SYSTEM_ACTOR) -> None:
        """Let ``child`` acquire every rule of ``parent``."""
        _require(child=child, parent=parent)
        with self._lock.writing():
            if parent in self._parents.get(child, ()):
                raise Conflict(f"{child} already inherits from {parent}")
            if child == parent or child in self._closure(parent):
                raise PolicyCycle(f"{child} -> {parent} would create an inheritance cycle")
            if self._store is not None:
                self._store.add_inheritance(child, parent)
            self._parents.setdefault(child, set()).add(parent)
        logger.info("Added inheritance %s -> %s", child, parent)
        self._audit(actor, "inheritance.add", f"{child}->{parent}")

    def remove_inheritance(self, child: str, parent: str, *, actor: str = SYSTEM_ACTOR) -> None:
        with self._lock.writing():
            if parent not in self._parents.get(child, ()):
                raise NotFound(f"{child} does not inherit from {parent}")
            if self._store is not None:
                self._store.remove_inheritance(child, parent)
            self._parents[child].discard(parent)
            if not self._parents[child]:
                del self._parents[child]
        logger.info("Removed inheritance %s -> %s", child, parent)
        self._audit(actor, "inheritance.remove", f"{child}->{parent}")

    def parents_of(self, role: str) -> list[str]:
        with self._lock.reading():
            return sorted(self._parents.get(role, ()))

    # ─── Assignments ─────────────────────────────────────────────────────

    def assign_role(self, subject: str, role: str, *, actor: str = SYSTEM_ACTOR) -> None:
        _require(subject=subject, role=role)
        with self._lock.writing():
            if role in self._assignments.get(subject, ()):
                raise Conflict(f"{subject} already has role {role}")
            if self._store is not None:
                self._store.assign(subject, role)
            self._assignments.setdefault(subject, set()).add(role)
        logger.info("Assigned role %s to %s", role, subject)
        self._audit(actor, "role.assign", f"{subject}:{role}")

    def unassign_role(self, subject: str, role: str, *, actor: str = SYSTEM_ACTOR) -> None:
        with self._lock.writing():
            if role not in self._assignments.get(subject, ()):
                raise NotFound(f"{subject} does not have role {role}")
            if self._store is not None:
                self._store.unassign(subject, role)
            self._assignments[subject].discard(role)
            if not self._assignments[subject]:
                del self._assignments[subject]
        logger.info("Unassigned role %s from %s", role, subject)
        self._audit(actor, "role.unassign", f"{subject}:{role}")

    def roles_of(self, subject: str) -> list[str]:
        with self._lock.reading():
            return sorted(self._assignments.get(subject, ()))

    def subjects_of(self, role: str) -> list[str]:
        with self._lock.reading():
            return sorted(s for s, roles in self._assignments.items() if role in roles)
