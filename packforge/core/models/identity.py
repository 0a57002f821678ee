"""
Identity models — principals, tokens, and acquisition requests.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packforge.core.models.packaging import as_utc, lookup


class IdentityPrincipal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str = ""
    email: str | None = None
    roles: tuple[str, ...] = ()
    claims: dict[str, str] = Field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        folded = role.casefold()
        return any(r.casefold() == folded for r in self.roles)


class IdentityToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: datetime
    scopes: tuple[str, ...] = ()

    normalize_utc = field_validator("expires_at")(as_utc)

    def remaining(self, now: datetime | None = None) -> timedelta:
        return self.expires_at - (now or datetime.now(UTC))

    def covers(self, scopes: tuple[str, ...] | list[str]) -> bool:
        """Whether every requested scope was granted (ignoring case)."""
        granted = {s.casefold() for s in self.scopes}
        return all(s.casefold() in granted for s in scopes)


class IdentityResult(BaseModel):
    """An acquired identity: who, plus optional tokens."""

    model_config = ConfigDict(frozen=True)

    principal: IdentityPrincipal
    access_token: IdentityToken | None = None
    refresh_token: IdentityToken | None = None

    @property
    def roles(self) -> tuple[str, ...]:
        return self.principal.roles


class IdentityRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str = "local"
    scopes: tuple[str, ...] = ("packaging.run",)
    require_mfa: bool = False
    parameters: dict[str, str] = Field(default_factory=dict)

    def param(self, key: str) -> str | None:
        return lookup(self.parameters, key)
