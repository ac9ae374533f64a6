"""Caller identity handed in by the authentication layer, and the clock."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Caller:
    """Who is calling and under which role."""

    subject_id: str
    role: str
    name: str = ""
