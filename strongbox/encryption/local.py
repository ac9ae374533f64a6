"""
Local AES-256-GCM backend.

Sealed values look like ``aes:<base64(nonce || ciphertext || tag)>``. Each
call draws a fresh 12-byte nonce. Values without any marker are legacy local
ciphertexts and are opened the same way.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import stat
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from strongbox.config import SecurityConfig
from strongbox.errors import ConfigError, DecryptionFailure

logger = logging.getLogger(__name__)

LOCAL_PREFIX = "aes:"
KEY_SIZE = 32
NONCE_SIZE = 12
_TAG_SIZE = 16


class LocalCipher:
    """Authenticated symmetric cipher keyed by a 32-byte secret."""

    name = "local"

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ConfigError(f"Local encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    def seal(self, plaintext: bytes) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, plaintext, None)
        return LOCAL_PREFIX + base64.b64encode(nonce + ciphertext).decode("ascii")

    def open(self, sealed: str) -> bytes:
        """Decrypt an ``aes:`` value or a legacy unprefixed value."""
        body = sealed[len(LOCAL_PREFIX):] if sealed.startswith(LOCAL_PREFIX) else sealed
        try:
            data = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailure("Sealed value is not valid base64") from e
        if len(data) < NONCE_SIZE + _TAG_SIZE:
            raise DecryptionFailure("Sealed value too short")
        try:
            return self._aead.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise DecryptionFailure("Authentication failed: wrong key or tampered value") from e


def init_master_key(key_path: Path | str) -> Path:
    """Generate a new key file (chmod 600). Idempotent, skips if it exists."""
    key_path = Path(key_path)
    if key_path.exists():
        return key_path
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_bytes(secrets.token_bytes(KEY_SIZE))
    key_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    return key_path


def load_key(cfg: SecurityConfig) -> bytes:
    """Resolve the local key: ``STRONGBOX_ENCRYPTION_KEY`` wins over the key file."""
    if cfg.encryption_key:
        try:
            key = base64.b64decode(cfg.encryption_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError("STRONGBOX_ENCRYPTION_KEY is not valid base64") from e
    else:
        if not cfg.key_file.exists():
            raise ConfigError(
                f"Local encryption key not found at {cfg.key_file}. "
                "Run 'strongbox gen-key' or set STRONGBOX_ENCRYPTION_KEY."
            )
        key = cfg.key_file.read_bytes()
    if len(key) != KEY_SIZE:
        raise ConfigError(f"Local encryption key must be {KEY_SIZE} bytes, got {len(key)}")
    return key
