"""Role-based policy engine."""

from strongbox.policy.dal import PolicySnapshot, PostgresPolicyStore
from strongbox.policy.engine import PolicyEngine
from strongbox.policy.models import MenuItem, PolicyRule

__all__ = ["MenuItem", "PolicyEngine", "PolicyRule", "PolicySnapshot", "PostgresPolicyStore"]
