"""
Error taxonomy shared by every Strongbox component.

Only the encryption backend fallback recovers locally; everything else is
raised to the immediate caller unchanged.
"""

from __future__ import annotations

from typing import Any


class VaultError(Exception):
    """Base class for all Strongbox errors."""


class ConfigError(VaultError):
    """Invalid or missing configuration."""


class EncryptionBackendUnavailable(VaultError):
    """The remote transit backend cannot be used right now."""


class DecryptionFailure(VaultError):
    """Ciphertext is corrupt, was sealed with another key, or was tampered with."""


class InvalidInput(VaultError):
    """An argument is outside its allowed bounds."""


class InvalidState(VaultError):
    """A state transition was attempted from a state that does not allow it."""


class Conflict(VaultError):
    """The operation would duplicate something that must be unique."""


class PolicyCycle(Conflict):
    """A role inheritance edge would close a cycle."""


class NotFound(VaultError):
    """A record, version, grant or rule does not exist."""


class Forbidden(VaultError):
    """The caller may not perform the operation or read the data."""


class NotificationError(VaultError):
    """The operation committed but one or more notifications failed.

    ``result`` holds the committed return value so callers keep the core
    effect; ``failures`` lists ``(recipient, error)`` pairs.
    """

    def __init__(self, result: Any, failures: list[tuple[str, Exception]]) -> None:
        self.result = result
        self.failures = failures
        recipients = ", ".join(r for r, _ in failures)
        super().__init__(f"{len(failures)} notification(s) failed: {recipients}")
