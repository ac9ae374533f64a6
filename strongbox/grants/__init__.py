"""Approval-gated, time-windowed access grants."""

from strongbox.grants.models import AccessGrant, GrantFilter, GrantStatus, can_access
from strongbox.grants.workflow import AccessGrantWorkflow

__all__ = ["AccessGrant", "AccessGrantWorkflow", "GrantFilter", "GrantStatus", "can_access"]
