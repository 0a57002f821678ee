"""
Secure store models — entry descriptors and decrypted secrets.

An entry is what the store knows about a secret without decrypting it:
id, timestamps, and a metadata map whose ``kind`` tag says what the
payload is (``mac.entitlements``, ``mac.provisioningProfile``, ...).
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packforge.core.models.packaging import as_utc, lookup

KIND_KEY = "kind"


class SecureStoreEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    normalize_utc = field_validator("created_at", "expires_at")(as_utc)

    @property
    def kind(self) -> str | None:
        return lookup(self.metadata, KIND_KEY)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))


class SecureStoreSecret(BaseModel):
    """An entry together with its decrypted payload."""

    model_config = ConfigDict(frozen=True)

    entry: SecureStoreEntry
    payload: bytes


class SecureStorePutOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    expires_at: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    normalize_utc = field_validator("expires_at")(as_utc)
