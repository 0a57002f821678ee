"""Identity acquisition — providers, cache, and routing service."""

from packforge.core.security.identity.cache import SecureIdentityCache
from packforge.core.security.identity.providers import (
    AzureAdIdentityProvider,
    IdentityError,
    IdentityProvider,
    LocalIdentityProvider,
    OktaIdentityProvider,
)
from packforge.core.security.identity.service import (
    IdentityContext,
    IdentityService,
    build_identity_request,
)

__all__ = [
    "AzureAdIdentityProvider",
    "IdentityContext",
    "IdentityError",
    "IdentityProvider",
    "IdentityService",
    "LocalIdentityProvider",
    "OktaIdentityProvider",
    "SecureIdentityCache",
    "build_identity_request",
]
