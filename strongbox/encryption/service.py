"""
Encryption service: one seal/open contract over the transit and local backends.

``seal`` prefers transit and falls back to the local cipher on any transit
failure. ``open`` routes by the marker on the sealed value only, so values
stay readable whatever the current transit configuration is.
"""

from __future__ import annotations

import logging
from typing import Any

from strongbox.config import Config, get_config
from strongbox.encryption.local import LocalCipher, load_key
from strongbox.encryption.transit import VAULT_PREFIX, TransitBackend
from strongbox.errors import DecryptionFailure, EncryptionBackendUnavailable

logger = logging.getLogger(__name__)


class EncryptionService:
    def __init__(self, local: LocalCipher, transit: TransitBackend | None = None) -> None:
        self.local = local
        self.transit = transit

    @classmethod
    def from_config(cls, cfg: Config | None = None) -> EncryptionService:
        cfg = cfg or get_config()
        local = LocalCipher(load_key(cfg.security))
        transit = TransitBackend(cfg.transit) if cfg.transit.enabled else None
        return cls(local, transit)

    def seal(self, plaintext: bytes) -> str:
        if self.transit is not None and self.transit.enabled:
            try:
                return self.transit.seal(plaintext)
            except EncryptionBackendUnavailable as e:
                logger.warning("Transit seal failed, falling back to local cipher: %s", e)
        return self.local.seal(plaintext)

    def open(self, sealed: str) -> bytes:
        if sealed.startswith(VAULT_PREFIX):
            if self.transit is None:
                raise DecryptionFailure("Value was sealed by the transit backend, which is not configured")
            return self.transit.open(sealed)
        return self.local.open(sealed)

    def describe(self) -> dict[str, Any]:
        """Backend status for operators. Contains no key material."""
        info: dict[str, Any] = {"local": "ready", "transit": "disabled"}
        if self.transit is not None and self.transit.enabled:
            if self.transit.available:
                info["transit"] = "ready"
            else:
                info["transit"] = "unavailable"
                info["transit_error"] = self.transit.error
        info["active"] = "transit" if info["transit"] == "ready" else "local"
        return info
