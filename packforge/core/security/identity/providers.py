"""
Identity providers — local service account and directory-based SSO.

    local     service account, no tokens, no roles
    azuread   tenant-scoped directory login (aliases: entra, entra-id)
    okta      domain-scoped directory login

Directory providers share one flow:

    1. build cache key  identity.<provider>.<realm>.<username>  (lowercased)
    2. reuse the cached identity if its access token has more than
       one minute left and covers every requested scope
    3. otherwise enforce MFA (an ``mfaCode`` parameter is required
       when the request demands MFA), issue tokens, cache the result
"""

from __future__ import annotations

import getpass
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Callable

from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.identity import (
    IdentityPrincipal,
    IdentityRequest,
    IdentityResult,
    IdentityToken,
)
from packforge.core.security.identity.cache import SecureIdentityCache

logger = logging.getLogger(__name__)

# Cached tokens closer than this to expiry are not reused
MIN_REMAINING = timedelta(minutes=1)


class IdentityError(Exception):
    """Raised when an identity cannot be acquired."""


class IdentityProvider(ABC):
    @abstractmethod
    def can_handle(self, provider_key: str) -> bool:
        ...

    @abstractmethod
    def acquire(
        self,
        request: IdentityRequest,
        cancel_token: CancellationToken | None = None,
    ) -> IdentityResult:
        ...


class LocalIdentityProvider(IdentityProvider):
    """The packaging service account; used when no other provider matches."""

    def can_handle(self, provider_key: str) -> bool:
        return provider_key.strip().lower() in ("local", "")

    def acquire(self, request, cancel_token=None) -> IdentityResult:
        principal = IdentityPrincipal(
            id="service-account",
            display_name="PackagingTools Service",
            claims={"provider": "local"},
        )
        return IdentityResult(principal=principal)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _split(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.replace(";", ",").split(",") if p.strip())


class DirectoryIdentityProvider(IdentityProvider):
    """Shared cache/MFA/token flow for directory-backed SSO providers."""

    key: str = ""
    aliases: tuple[str, ...] = ()
    realm_param: str = ""
    default_realm: str = ""
    default_roles: tuple[str, ...] = ()
    access_lifetime: timedelta = timedelta(hours=1)
    refresh_lifetime: timedelta = timedelta(days=30)
    passthrough_claims: tuple[str, ...] = ()

    def __init__(
        self,
        cache: SecureIdentityCache,
        clock: Callable[[], datetime] | None = None,
    ):
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(UTC))

    def can_handle(self, provider_key: str) -> bool:
        return provider_key.strip().lower() in (self.key, *self.aliases)

    def acquire(self, request, cancel_token=None) -> IdentityResult:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        realm = self._param(request, self.realm_param, self.default_realm)
        username = self._param(request, "username", _current_user())
        cache_key = f"identity.{self.key}.{realm}.{username}".lower()

        cached = self._cache.try_get(cache_key)
        if cached is not None and self._reusable(cached, request):
            logger.debug("Reusing cached %s identity for %s", self.key, username)
            return cached

        mfa_code = request.param("mfaCode")
        if request.require_mfa and not mfa_code:
            raise IdentityError(
                f"{self.key}: multi-factor authentication is required but no MFA code was supplied."
            )

        now = self._clock()
        prefix = self.key if self.key != "azuread" else "aad"
        access = IdentityToken(
            value=f"{prefix}-access-{uuid.uuid4().hex}",
            expires_at=now + self.access_lifetime,
            scopes=request.scopes,
        )
        refresh = IdentityToken(
            value=f"{prefix}-refresh-{uuid.uuid4().hex}",
            expires_at=now + self.refresh_lifetime,
        )

        claims = {
            "provider": self.key,
            self.realm_param: realm,
            "username": username,
            "mfa": "true" if request.require_mfa else "false",
        }
        for name in self.passthrough_claims:
            value = request.param(name)
            if value:
                claims[name] = value

        roles_param = request.param("roles")
        roles = _split(roles_param) if roles_param else ()
        principal = IdentityPrincipal(
            id=f"{prefix}:{realm}:{username}",
            display_name=self._param(request, "displayName", username),
            email=self._param(request, "email", f"{username}@{realm}"),
            roles=roles or self.default_roles,
            claims=claims,
        )

        result = IdentityResult(principal=principal, access_token=access, refresh_token=refresh)
        self._cache.set(cache_key, result)
        logger.info("Acquired %s identity for %s", self.key, username)
        return result

    def _reusable(self, cached: IdentityResult, request: IdentityRequest) -> bool:
        token = cached.access_token
        if token is None:
            return False
        if token.remaining(self._clock()) <= MIN_REMAINING:
            return False
        return token.covers(request.scopes)

    @staticmethod
    def _param(request: IdentityRequest, key: str, fallback: str) -> str:
        value = request.param(key)
        return value.strip() if value and value.strip() else fallback


class AzureAdIdentityProvider(DirectoryIdentityProvider):
    key = "azuread"
    aliases = ("entra", "entra-id")
    realm_param = "tenantId"
    default_realm = "common"
    default_roles = ("ReleaseEngineer",)
    access_lifetime = timedelta(hours=1)
    refresh_lifetime = timedelta(days=30)
    passthrough_claims = ("clientId",)


class OktaIdentityProvider(DirectoryIdentityProvider):
    key = "okta"
    realm_param = "domain"
    default_realm = "example.okta.com"
    default_roles = ("Developer",)
    access_lifetime = timedelta(minutes=50)
    refresh_lifetime = timedelta(days=15)
    passthrough_claims = ("organization",)
