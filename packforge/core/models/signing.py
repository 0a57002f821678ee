"""
Signing material result — what ``prepare`` hands to format providers.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from packforge.core.models.packaging import PackagingIssue


class MacSigningMaterialResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    entitlements_path: str | None = None
    provisioning_profile_path: str | None = None
    issues: tuple[PackagingIssue, ...] = ()
