"""
Secret record models.

The decrypted payload is a tagged union keyed by ``kind``. Sealed payloads
are excluded from serialisation so they never leave the store by accident.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

T = TypeVar("T")


class SecretKind(StrEnum):
    PASSWORD = "password"
    API_KEY = "api_key"
    ACCESS_KEY = "access_key"
    SSH_KEY = "ssh_key"
    CERTIFICATE = "certificate"
    TOKEN = "token"
    CUSTOM = "custom"


class Environment(StrEnum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"
    TEST = "test"


# ─── Payload variants ────────────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: str = ""


class PasswordPayload(_Payload):
    kind: Literal["password"] = "password"
    username: str = ""
    password: str
    address: str = ""


class ApiKeyPayload(_Payload):
    kind: Literal["api_key"] = "api_key"
    api_key: str
    api_secret: str = ""
    endpoint: str = ""


class AccessKeyPayload(_Payload):
    kind: Literal["access_key"] = "access_key"
    access_key: str
    secret_key: str
    region: str = ""


class SshKeyPayload(_Payload):
    kind: Literal["ssh_key"] = "ssh_key"
    private_key: str
    public_key: str = ""
    passphrase: str = ""


class CertificatePayload(_Payload):
    kind: Literal["certificate"] = "certificate"
    certificate: str
    private_key: str = ""
    chain: str = ""
    passphrase: str = ""


class TokenPayload(_Payload):
    kind: Literal["token"] = "token"
    token: str
    token_type: str = ""
    refresh_token: str = ""


class CustomPayload(_Payload):
    kind: Literal["custom"] = "custom"
    custom_data: list[dict[str, str]] = Field(default_factory=list)


Payload = Annotated[
    Union[
        PasswordPayload,
        ApiKeyPayload,
        AccessKeyPayload,
        SshKeyPayload,
        CertificatePayload,
        TokenPayload,
        CustomPayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[Payload] = TypeAdapter(Payload)


def dump_payload(payload: Payload) -> bytes:
    return payload.model_dump_json().encode("utf-8")


def load_payload(raw: bytes) -> Payload:
    return _payload_adapter.validate_json(raw)


# ─── Records ─────────────────────────────────────────────────────────────


def _clean_tags(tags: list[str]) -> list[str]:
    return sorted({t.strip() for t in tags if t and t.strip()})


class SecretDraft(BaseModel):
    """Input for creating a secret."""

    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    kind: SecretKind
    category: str = Field(default="", max_length=100)
    environment: Environment = Environment.DEV
    tags: list[str] = Field(default_factory=list)
    payload: Payload
    expires_at: datetime | None = None

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str]) -> list[str]:
        return _clean_tags(v)

    @model_validator(mode="after")
    def payload_matches_kind(self) -> SecretDraft:
        if self.payload.kind != self.kind:
            raise ValueError(f"payload kind {self.payload.kind} does not match secret kind {self.kind}")
        return self


class SecretChanges(BaseModel):
    """Partial update. Only fields explicitly set are applied.

    Setting ``expires_at`` to ``None`` clears the expiry.
    """

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    category: str | None = Field(default=None, max_length=100)
    environment: Environment | None = None
    tags: list[str] | None = None
    payload: Payload | None = None
    expires_at: datetime | None = None
    reason: str = Field(default="", max_length=500)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else _clean_tags(v)


class SecretMeta(BaseModel):
    """Record metadata, safe to show to anyone allowed to list secrets."""

    id: str
    name: str
    description: str = ""
    kind: SecretKind
    category: str = ""
    environment: Environment = Environment.DEV
    tags: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None  # None = never
    version: int = Field(default=1, ge=1)
    created_by: str
    updated_by: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    def is_owner(self, subject_id: str) -> bool:
        return self.created_by == subject_id


class SecretRecord(SecretMeta):
    """The live record as stored. ``sealed_payload`` is never serialised."""

    sealed_payload: str = Field(exclude=True, repr=False)


class SecretView(SecretMeta):
    """What callers get back. ``payload`` is only present with ``has_access``."""

    has_access: bool = False
    payload: Payload | None = None


class RecordFilter(BaseModel):
    kind: SecretKind | None = None
    category: str | None = None
    environment: Environment | None = None
    search: str | None = None
    tag: str | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
