"""
Remote transit backend on a HashiCorp Vault ``transit`` secrets engine.

The client is built and health-checked once, lazily, on first use. A failed
initialisation marks the backend unavailable for the life of this object;
callers fall back to the local cipher.
"""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Callable
from typing import Any

import hvac
import hvac.exceptions

from strongbox.config import TransitConfig
from strongbox.errors import DecryptionFailure, EncryptionBackendUnavailable

logger = logging.getLogger(__name__)

VAULT_PREFIX = "vault:"
KEY_TYPE = "aes256-gcm96"


def build_client(cfg: TransitConfig) -> hvac.Client:
    return hvac.Client(
        url=cfg.address,
        token=cfg.token or None,
        namespace=cfg.namespace or None,
        verify=cfg.verify,
        cert=cfg.cert,
        timeout=cfg.timeout_seconds,
    )


class TransitBackend:
    """Encrypt/decrypt through Vault transit with a key Vault never reveals."""

    name = "transit"

    def __init__(
        self,
        cfg: TransitConfig,
        client_factory: Callable[[TransitConfig], Any] | None = None,
    ) -> None:
        self._cfg = cfg
        self._client_factory = client_factory or build_client
        self._lock = threading.Lock()
        self._initialized = False
        self._client: Any = None
        self._error = ""

    @property
    def enabled(self) -> bool:
        return self._cfg.enabled

    @property
    def available(self) -> bool:
        """True when the backend is enabled and initialised successfully."""
        if not self._cfg.enabled:
            return False
        self._ensure_initialized()
        return self._client is not None

    @property
    def error(self) -> str:
        return self._error

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            try:
                self._client = self._connect()
                logger.info(
                    "Transit backend ready: %s (mount=%s, key=%s)",
                    self._cfg.address,
                    self._cfg.mount_path,
                    self._cfg.key_name,
                )
            except Exception as e:
                self._client = None
                self._error = str(e)
                logger.warning("Transit backend unavailable, using local cipher: %s", e)
            self._initialized = True

    def _connect(self) -> Any:
        cfg = self._cfg
        client = self._client_factory(cfg)

        if not client.sys.is_initialized():
            raise EncryptionBackendUnavailable("Vault is not initialized")
        if client.sys.is_sealed():
            raise EncryptionBackendUnavailable("Vault is sealed")

        mounts = client.sys.list_mounted_secrets_engines()
        mounts = mounts.get("data", mounts)
        if f"{cfg.mount_path.strip('/')}/" not in mounts:
            raise EncryptionBackendUnavailable(f"Transit engine not mounted at {cfg.mount_path}")

        try:
            client.secrets.transit.read_key(name=cfg.key_name, mount_point=cfg.mount_path)
        except hvac.exceptions.InvalidPath:
            logger.info("Creating transit key %s (%s)", cfg.key_name, KEY_TYPE)
            client.secrets.transit.create_key(
                name=cfg.key_name,
                key_type=KEY_TYPE,
                mount_point=cfg.mount_path,
            )
        return client

    def _require_client(self) -> Any:
        if not self._cfg.enabled:
            raise EncryptionBackendUnavailable("Transit backend is disabled")
        self._ensure_initialized()
        if self._client is None:
            raise EncryptionBackendUnavailable(self._error or "Transit backend unavailable")
        return self._client

    def seal(self, plaintext: bytes) -> str:
        client = self._require_client()
        try:
            resp = client.secrets.transit.encrypt_data(
                name=self._cfg.key_name,
                plaintext=base64.b64encode(plaintext).decode("ascii"),
                mount_point=self._cfg.mount_path,
            )
            return VAULT_PREFIX + resp["data"]["ciphertext"]
        except Exception as e:
            raise EncryptionBackendUnavailable(f"Transit encrypt failed: {e}") from e

    def open(self, sealed: str) -> bytes:
        """Decrypt a ``vault:`` value. Any failure is a DecryptionFailure."""
        try:
            client = self._require_client()
        except EncryptionBackendUnavailable as e:
            raise DecryptionFailure(f"Cannot open transit-sealed value: {e}") from e
        body = sealed[len(VAULT_PREFIX):] if sealed.startswith(VAULT_PREFIX) else sealed
        try:
            resp = client.secrets.transit.decrypt_data(
                name=self._cfg.key_name,
                ciphertext=body,
                mount_point=self._cfg.mount_path,
            )
            return base64.b64decode(resp["data"]["plaintext"])
        except Exception as e:
            raise DecryptionFailure(f"Transit decrypt failed: {e}") from e
