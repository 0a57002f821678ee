"""
Identity service — route acquisition to the right provider.

Routing picks the first registered provider that handles the request's
provider key and falls back to the local service account. The
``IdentityContext`` carries whichever identity the caller acquired to
the policy gate for the rest of the run.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.identity import IdentityRequest, IdentityResult
from packforge.core.models.packaging import PackagingProject, PackagingRequest, is_true
from packforge.core.security.identity.providers import IdentityProvider, LocalIdentityProvider

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("packaging.run",)

_RESERVED = ("provider", "scopes", "requiremfa")


class IdentityService:
    def __init__(self, providers: Iterable[IdentityProvider] = ()):
        self._providers = list(providers)
        self._fallback = next(
            (p for p in self._providers if p.can_handle("local")), LocalIdentityProvider()
        )

    def acquire(
        self,
        request: IdentityRequest,
        cancel_token: CancellationToken | None = None,
    ) -> IdentityResult:
        provider = next(
            (p for p in self._providers if p.can_handle(request.provider)), self._fallback
        )
        logger.debug("Identity provider for '%s': %s", request.provider, type(provider).__name__)
        return provider.acquire(request, cancel_token)


class IdentityContext:
    """Holds the identity in effect for the current run."""

    def __init__(self, identity: IdentityResult | None = None):
        self._identity = identity
        self._lock = threading.Lock()

    @property
    def identity(self) -> IdentityResult | None:
        return self._identity

    def set(self, identity: IdentityResult | None) -> None:
        with self._lock:
            self._identity = identity

    def clear(self) -> None:
        self.set(None)


def build_identity_request(project: PackagingProject, request: PackagingRequest) -> IdentityRequest:
    """Derive an identity request from project and request settings.

    ``identity.provider``, ``identity.scopes`` and ``identity.requireMfa``
    resolve request properties first, then project metadata, then platform
    properties. Every other ``identity.<name>`` key becomes a parameter,
    with later layers (metadata, platform, request) overriding earlier ones.
    """
    platform = project.platform(request.platform)

    def setting(key: str) -> str | None:
        value = request.prop(key)
        if value is None:
            value = project.meta(key)
        if value is None and platform is not None:
            value = platform.prop(key)
        return value

    provider = setting("identity.provider") or "local"
    raw_scopes = setting("identity.scopes")
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    if raw_scopes and raw_scopes.strip():
        parts = raw_scopes.replace(",", " ").replace(";", " ").split()
        scopes = tuple(parts) or DEFAULT_SCOPES

    parameters: dict[str, str] = {}
    layers = [project.metadata, platform.properties if platform else {}, request.properties]
    for layer in layers:
        for key, value in layer.items():
            if not key.lower().startswith("identity."):
                continue
            name = key[len("identity."):]
            if name.lower() not in _RESERVED:
                parameters[name] = value

    return IdentityRequest(
        provider=provider.strip(),
        scopes=scopes,
        require_mfa=is_true(setting("identity.requireMfa")),
        parameters=parameters,
    )
