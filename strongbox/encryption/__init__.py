"""Envelope encryption with transit-first, local-fallback sealing."""

from strongbox.encryption.local import LOCAL_PREFIX, LocalCipher, init_master_key, load_key
from strongbox.encryption.service import EncryptionService
from strongbox.encryption.transit import VAULT_PREFIX, TransitBackend

__all__ = [
    "LOCAL_PREFIX",
    "VAULT_PREFIX",
    "EncryptionService",
    "LocalCipher",
    "TransitBackend",
    "init_master_key",
    "load_key",
]
