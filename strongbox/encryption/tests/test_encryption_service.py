"""Tests for transit sealing and backend routing — uses a mocked hvac client."""

import base64
import secrets
from unittest.mock import MagicMock

import hvac.exceptions
import pytest
import requests

from strongbox.config import TransitConfig
from strongbox.encryption.local import LOCAL_PREFIX, LocalCipher
from strongbox.encryption.service import EncryptionService
from strongbox.encryption.transit import KEY_TYPE, VAULT_PREFIX, TransitBackend
from strongbox.errors import DecryptionFailure, EncryptionBackendUnavailable

TRANSIT_CFG = TransitConfig(enabled=True, token="t", key_name="sb", mount_path="transit")


def _fake_client():
    """hvac.Client stand-in whose transit engine base64-wraps plaintext."""
    client = MagicMock()
    client.sys.is_initialized.return_value = True
    client.sys.is_sealed.return_value = False
    client.sys.list_mounted_secrets_engines.return_value = {"data": {"transit/": {}, "secret/": {}}}

    def encrypt_data(name, plaintext, mount_point):
        return {"data": {"ciphertext": "vault:v1:" + plaintext}}

    def decrypt_data(name, ciphertext, mount_point):
        return {"data": {"plaintext": ciphertext[len("vault:v1:"):]}}

    client.secrets.transit.encrypt_data.side_effect = encrypt_data
    client.secrets.transit.decrypt_data.side_effect = decrypt_data
    return client


@pytest.fixture
def local():
    return LocalCipher(secrets.token_bytes(32))


class TestTransitBackend:
    def test_roundtrip(self):
        client = _fake_client()
        backend = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: client)
        sealed = backend.seal(b"payload")
        assert sealed.startswith(VAULT_PREFIX)
        assert backend.open(sealed) == b"payload"
        client.secrets.transit.encrypt_data.assert_called_once_with(
            name="sb",
            plaintext=base64.b64encode(b"payload").decode(),
            mount_point="transit",
        )

    def test_initialized_once(self):
        client = _fake_client()
        factory = MagicMock(return_value=client)
        backend = TransitBackend(TRANSIT_CFG, client_factory=factory)
        backend.seal(b"a")
        backend.seal(b"b")
        assert backend.available
        factory.assert_called_once()
        client.sys.is_sealed.assert_called_once()

    def test_creates_missing_key(self):
        client = _fake_client()
        client.secrets.transit.read_key.side_effect = hvac.exceptions.InvalidPath("no key")
        backend = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: client)
        assert backend.available
        client.secrets.transit.create_key.assert_called_once_with(
            name="sb", key_type=KEY_TYPE, mount_point="transit"
        )

    def test_sealed_vault_is_unavailable(self):
        client = _fake_client()
        client.sys.is_sealed.return_value = True
        backend = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: client)
        assert not backend.available
        assert "sealed" in backend.error
        with pytest.raises(EncryptionBackendUnavailable):
            backend.seal(b"x")

    def test_missing_mount_is_unavailable(self):
        client = _fake_client()
        client.sys.list_mounted_secrets_engines.return_value = {"secret/": {}}
        backend = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: client)
        assert not backend.available
        assert "not mounted" in backend.error

    def test_unreachable_is_unavailable_and_permanent(self):
        factory = MagicMock(side_effect=requests.exceptions.ConnectionError("refused"))
        backend = TransitBackend(TRANSIT_CFG, client_factory=factory)
        assert not backend.available
        assert not backend.available
        factory.assert_called_once()

    def test_disabled_never_connects(self):
        factory = MagicMock()
        backend = TransitBackend(TransitConfig(enabled=False), client_factory=factory)
        assert not backend.available
        with pytest.raises(EncryptionBackendUnavailable, match="disabled"):
            backend.seal(b"x")
        factory.assert_not_called()

    def test_decrypt_error_is_decryption_failure(self):
        client = _fake_client()
        client.secrets.transit.decrypt_data.side_effect = hvac.exceptions.InvalidRequest("bad ciphertext")
        backend = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: client)
        with pytest.raises(DecryptionFailure):
            backend.open("vault:vault:v1:garbage")


class TestEncryptionService:
    def test_local_only(self, local):
        svc = EncryptionService(local)
        sealed = svc.seal(b"secret")
        assert sealed.startswith(LOCAL_PREFIX)
        assert svc.open(sealed) == b"secret"

    def test_prefers_transit(self, local):
        transit = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: _fake_client())
        svc = EncryptionService(local, transit)
        sealed = svc.seal(b"secret")
        assert sealed.startswith(VAULT_PREFIX)
        assert svc.open(sealed) == b"secret"

    def test_falls_back_when_transit_unavailable(self, local):
        factory = MagicMock(side_effect=requests.exceptions.Timeout("slow"))
        svc = EncryptionService(local, TransitBackend(TRANSIT_CFG, client_factory=factory))
        sealed = svc.seal(b"secret")
        assert sealed.startswith(LOCAL_PREFIX)
        assert svc.open(sealed) == b"secret"

    def test_falls_back_when_encrypt_call_fails(self, local):
        client = _fake_client()
        client.secrets.transit.encrypt_data.side_effect = requests.exceptions.ConnectionError("reset")
        svc = EncryptionService(local, TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: client))
        assert svc.seal(b"secret").startswith(LOCAL_PREFIX)

    def test_local_value_opens_after_transit_appears(self, local):
        sealed = EncryptionService(local).seal(b"old")
        transit = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: _fake_client())
        assert EncryptionService(local, transit).open(sealed) == b"old"

    def test_transit_value_needs_transit(self, local):
        transit = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: _fake_client())
        sealed = EncryptionService(local, transit).seal(b"remote")
        with pytest.raises(DecryptionFailure, match="not configured"):
            EncryptionService(local).open(sealed)

    def test_transit_value_with_dead_transit(self, local):
        transit = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: _fake_client())
        sealed = EncryptionService(local, transit).seal(b"remote")
        dead = TransitBackend(
            TRANSIT_CFG,
            client_factory=MagicMock(side_effect=requests.exceptions.ConnectionError("down")),
        )
        with pytest.raises(DecryptionFailure):
            EncryptionService(local, dead).open(sealed)

    def test_describe(self, local):
        assert EncryptionService(local).describe() == {
            "local": "ready",
            "transit": "disabled",
            "active": "local",
        }
        transit = TransitBackend(TRANSIT_CFG, client_factory=lambda cfg: _fake_client())
        info = EncryptionService(local, transit).describe()
        assert info["transit"] == "ready"
        assert info["active"] == "transit"
