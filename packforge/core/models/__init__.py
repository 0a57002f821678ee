"""
Domain models — Pydantic types for packaging runs.

All models are re-exported here for convenient access:

    from packforge.core.models import PackagingProject, PackagingRequest, PackagingResult
"""

from packforge.core.models.identity import (
    IdentityPrincipal,
    IdentityRequest,
    IdentityResult,
    IdentityToken,
)
from packforge.core.models.packaging import (
    IssueSeverity,
    PackagingArtifact,
    PackagingIssue,
    PackagingPlatform,
    PackagingProject,
    PackagingRequest,
    PackagingResult,
    PlatformConfiguration,
)
from packforge.core.models.policy import PolicyEvaluationResult
from packforge.core.models.secure import (
    SecureStoreEntry,
    SecureStorePutOptions,
    SecureStoreSecret,
)
from packforge.core.models.signing import MacSigningMaterialResult

__all__ = [
    # identity.py
    "IdentityPrincipal",
    "IdentityRequest",
    "IdentityResult",
    "IdentityToken",
    # packaging.py
    "IssueSeverity",
    "PackagingArtifact",
    "PackagingIssue",
    "PackagingPlatform",
    "PackagingProject",
    "PackagingRequest",
    "PackagingResult",
    "PlatformConfiguration",
    # policy.py
    "PolicyEvaluationResult",
    # secure.py
    "SecureStoreEntry",
    "SecureStorePutOptions",
    "SecureStoreSecret",
    # signing.py
    "MacSigningMaterialResult",
]
