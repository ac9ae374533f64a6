"""
Centralized configuration for Strongbox.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from strongbox.config import get_config
    cfg = get_config()
    print(cfg.db.name)              # "strongbox"
    print(cfg.transit.enabled)      # False unless STRONGBOX_VAULT_ENABLED=true
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "strongbox"
    user: str = "strongbox"
    password: str = ""
    pool_min: int = 2
    pool_max: int = 20
    connect_timeout: int = 5
    statement_timeout_ms: int = 0  # 0 = server default

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        if self.connect_timeout:
            d["connect_timeout"] = self.connect_timeout
        if self.statement_timeout_ms:
            d["options"] = f"-c statement_timeout={self.statement_timeout_ms}"
        return d


@dataclass(frozen=True)
class TransitConfig:
    """Remote transit-encryption backend (HashiCorp Vault transit engine)."""

    enabled: bool = False
    address: str = "http://127.0.0.1:8200"
    token: str = ""
    key_name: str = "strongbox"
    mount_path: str = "transit"
    namespace: str = ""
    tls_insecure: bool = False  # skip certificate verification, non-production only
    ca_cert: str = ""
    client_cert: str = ""
    client_key: str = ""
    timeout_seconds: float = 3.0

    @property
    def verify(self) -> bool | str:
        """Value for the HTTP client's ``verify`` argument."""
        if self.tls_insecure:
            return False
        if self.ca_cert:
            return self.ca_cert
        return True

    @property
    def cert(self) -> tuple[str, str] | None:
        if self.client_cert and self.client_key:
            return (self.client_cert, self.client_key)
        return None


@dataclass(frozen=True)
class SecurityConfig:
    """Local cipher key and role settings."""

    # base64 of a 32-byte key; when empty the key is read from key_file
    encryption_key: str = ""
    key_file: Path = field(default_factory=lambda: Path.home() / ".strongbox" / ".vault-key")
    super_role: str = "super_admin"


@dataclass(frozen=True)
class SweepConfig:
    """Background sweep intervals and windows."""

    grant_expiry_interval: int = 3600
    secret_expiry_interval: int = 6 * 3600
    notification_cleanup_interval: int = 24 * 3600
    expiry_warning_days: int = 7
    notification_retention_days: int = 30


@dataclass(frozen=True)
class Config:
    """Top-level Strongbox configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    transit: TransitConfig = field(default_factory=TransitConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    sweeps: SweepConfig = field(default_factory=SweepConfig)


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    db = DatabaseConfig(
        host=os.environ.get("STRONGBOX_DB_HOST", ""),
        port=int(os.environ.get("STRONGBOX_DB_PORT", "5432")),
        name=os.environ.get("STRONGBOX_DB_NAME", "strongbox"),
        user=os.environ.get("STRONGBOX_DB_USER", os.environ.get("USER", "strongbox")),
        password=os.environ.get("STRONGBOX_DB_PASSWORD", ""),
        pool_min=int(os.environ.get("STRONGBOX_DB_POOL_MIN", "2")),
        pool_max=int(os.environ.get("STRONGBOX_DB_POOL_MAX", "20")),
        connect_timeout=int(os.environ.get("STRONGBOX_DB_CONNECT_TIMEOUT", "5")),
        statement_timeout_ms=int(os.environ.get("STRONGBOX_DB_STATEMENT_TIMEOUT_MS", "0")),
    )

    transit = TransitConfig(
        enabled=_env_bool("STRONGBOX_VAULT_ENABLED"),
        address=os.environ.get("STRONGBOX_VAULT_ADDRESS", "http://127.0.0.1:8200"),
        token=os.environ.get("STRONGBOX_VAULT_TOKEN", ""),
        key_name=os.environ.get("STRONGBOX_VAULT_KEY_NAME", "strongbox"),
        mount_path=os.environ.get("STRONGBOX_VAULT_MOUNT_PATH", "transit"),
        namespace=os.environ.get("STRONGBOX_VAULT_NAMESPACE", ""),
        tls_insecure=_env_bool("STRONGBOX_VAULT_TLS_INSECURE"),
        ca_cert=os.environ.get("STRONGBOX_VAULT_CA_CERT", ""),
        client_cert=os.environ.get("STRONGBOX_VAULT_CLIENT_CERT", ""),
        client_key=os.environ.get("STRONGBOX_VAULT_CLIENT_KEY", ""),
        timeout_seconds=float(os.environ.get("STRONGBOX_VAULT_TIMEOUT", "3")),
    )

    home = Path(os.environ.get("STRONGBOX_HOME", Path.home() / ".strongbox"))
    security = SecurityConfig(
        encryption_key=os.environ.get("STRONGBOX_ENCRYPTION_KEY", ""),
        key_file=Path(os.environ.get("STRONGBOX_KEY_FILE", home / ".vault-key")),
        super_role=os.environ.get("STRONGBOX_SUPER_ROLE", "super_admin"),
    )

    sweeps = SweepConfig(
        grant_expiry_interval=int(os.environ.get("STRONGBOX_GRANT_SWEEP_SECONDS", "3600")),
        secret_expiry_interval=int(os.environ.get("STRONGBOX_SECRET_SWEEP_SECONDS", "21600")),
        notification_cleanup_interval=int(
            os.environ.get("STRONGBOX_NOTIFICATION_SWEEP_SECONDS", "86400")
        ),
        expiry_warning_days=int(os.environ.get("STRONGBOX_EXPIRY_WARNING_DAYS", "7")),
        notification_retention_days=int(
            os.environ.get("STRONGBOX_NOTIFICATION_RETENTION_DAYS", "30")
        ),
    )

    return Config(db=db, transit=transit, security=security, sweeps=sweeps)


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
