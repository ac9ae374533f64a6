"""Policy data models."""

from __future__ import annotations

from pydantic import BaseModel


class PolicyRule(BaseModel):
    """A (role, resource, action) permission. ``*`` matches anything."""

    role: str
    resource: str
    action: str

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


class MenuItem(BaseModel):
    path: str
    title: str
    icon: str
    order: int
