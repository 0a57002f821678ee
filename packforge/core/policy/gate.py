"""
Policy gate — decide whether a packaging run may proceed.

Policy is read from project metadata on every evaluation; nothing is
cached between calls, so evaluating the same inputs twice gives the
same verdict and the same issue codes.

Rules are independent. Every failing rule contributes its issue and
any failure blocks the run, so one evaluation reports every violation:

    signing     policy.signing.required / policy.signing.timestamp_missing
    approval    policy.approval.missing_token
    retention   policy.retention.exceeds_limit
    identity    policy.identity.required / policy.identity.missing_roles

Settings used by the rules resolve in three tiers: request properties,
then project metadata, then the platform configuration's properties.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from packforge.core.models.identity import IdentityResult
from packforge.core.models.packaging import (
    PackagingIssue,
    PackagingPlatform,
    PackagingProject,
    PackagingRequest,
    is_true,
    lookup,
)
from packforge.core.models.policy import PolicyEvaluationResult

logger = logging.getLogger(__name__)

# ── Platform key tables ────────────────────────────────────────

SIGNING_KEYS: dict[PackagingPlatform, tuple[str, ...]] = {
    PackagingPlatform.WINDOWS: (
        "windows.signing.certificatePath",
        "windows.signing.certificateThumbprint",
        "windows.signing.azureKeyVaultCertificate",
    ),
    PackagingPlatform.MACOS: ("mac.signing.identity",),
    PackagingPlatform.LINUX: ("linux.signing.keyId", "linux.signing.gpgKeyPath"),
}

TIMESTAMP_KEYS: dict[PackagingPlatform, tuple[str, ...]] = {
    PackagingPlatform.WINDOWS: ("windows.signing.timestampUrl",),
    PackagingPlatform.MACOS: (
        "mac.notarization.required",
        "mac.notarization.profile",
        "mac.notarytool.profile",
    ),
    PackagingPlatform.LINUX: ("linux.signing.timestampService",),
}


@dataclass(frozen=True)
class PolicyConfiguration:
    """Policy switches read from project metadata."""

    require_signing: bool = False
    require_timestamp: bool = False
    require_approval: bool = False
    approval_property: str = "policy.approvalToken"
    max_retention_days: int | None = None
    retention_metadata_key: str = "retention.days"
    require_identity: bool = False
    required_roles: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> PolicyConfiguration:
        def text(key: str, default: str) -> str:
            value = lookup(metadata, key)
            return value.strip() if value and value.strip() else default

        max_days: int | None = None
        raw_days = lookup(metadata, "policy.retention.maxDays")
        if raw_days is not None:
            try:
                parsed = int(raw_days.strip())
            except ValueError:
                logger.warning("Ignoring non-numeric policy.retention.maxDays: %r", raw_days)
            else:
                max_days = parsed if parsed > 0 else None

        raw_roles = lookup(metadata, "policy.identity.requiredRoles") or ""
        roles = tuple(r.strip() for r in raw_roles.replace(";", ",").split(",") if r.strip())

        return cls(
            require_signing=is_true(lookup(metadata, "policy.signing.required")),
            require_timestamp=is_true(lookup(metadata, "policy.signing.timestampRequired")),
            require_approval=is_true(lookup(metadata, "policy.approval.required")),
            approval_property=text("policy.approval.tokenProperty", "policy.approvalToken"),
            max_retention_days=max_days,
            retention_metadata_key=text("policy.retention.metadataKey", "retention.days"),
            require_identity=is_true(lookup(metadata, "policy.identity.required")),
            required_roles=roles,
        )


class PolicyGate:
    """Evaluates organizational policy for one run."""

    def evaluate(
        self,
        project: PackagingProject,
        request: PackagingRequest,
        identity: IdentityResult | None = None,
    ) -> PolicyEvaluationResult:
        config = PolicyConfiguration.from_metadata(project.metadata)
        settings = _Settings(project, request)

        issues: list[PackagingIssue] = []
        issues += self._signing(config, settings, request.platform)
        issues += self._approval(config, settings)
        issues += self._retention(config, settings)
        issues += self._identity(config, identity)

        if not issues:
            return PolicyEvaluationResult.allowed()

        logger.info(
            "Policy blocked %s/%s: %s",
            project.id, request.platform.value, ", ".join(i.code for i in issues),
        )
        return PolicyEvaluationResult.block(issues)

    # ── Rules ──────────────────────────────────────────────────

    def _signing(self, config, settings, platform) -> list[PackagingIssue]:
        if not config.require_signing:
            return []
        if not settings.has_any(SIGNING_KEYS.get(platform, ())):
            return [PackagingIssue.error(
                "policy.signing.required",
                "Signing is required by policy but no signing material was configured for this run.",
            )]
        if config.require_timestamp and not settings.has_any(TIMESTAMP_KEYS.get(platform, ())):
            return [PackagingIssue.error(
                "policy.signing.timestamp_missing",
                "Timestamping is required by policy but no timestamp configuration was provided.",
            )]
        return []

    def _approval(self, config, settings) -> list[PackagingIssue]:
        if not config.require_approval:
            return []
        token = settings.get(config.approval_property)
        if token is None or not token.strip():
            return [PackagingIssue.error(
                "policy.approval.missing_token",
                f"Packaging requires an approval token ('{config.approval_property}') "
                "but none was supplied.",
            )]
        return []

    def _retention(self, config, settings) -> list[PackagingIssue]:
        if config.max_retention_days is None:
            return []
        raw = settings.get(config.retention_metadata_key)
        if raw is None:
            return []
        try:
            requested = int(raw.strip())
        except ValueError:
            return []
        if requested > config.max_retention_days:
            return [PackagingIssue.error(
                "policy.retention.exceeds_limit",
                f"Retention of {requested} days exceeds the policy maximum of "
                f"{config.max_retention_days} days.",
            )]
        return []

    def _identity(self, config, identity: IdentityResult | None) -> list[PackagingIssue]:
        if not config.require_identity and not config.required_roles:
            return []
        if identity is None:
            return [PackagingIssue.error(
                "policy.identity.required",
                "Authenticated identity is required by policy but none was provided.",
            )]

        missing = [r for r in config.required_roles if not identity.principal.has_role(r)]
        if missing:
            return [PackagingIssue.error(
                "policy.identity.missing_roles",
                f"Identity is missing required roles: {', '.join(missing)}.",
            )]
        return []


class _Settings:
    """Three-tier setting lookup for one project/request pair."""

    def __init__(self, project: PackagingProject, request: PackagingRequest):
        platform = project.platform(request.platform)
        self._tiers = [
            request.properties,
            project.metadata,
            platform.properties if platform else {},
        ]

    def get(self, key: str) -> str | None:
        for tier in self._tiers:
            value = lookup(tier, key)
            if value is not None:
                return value
        return None

    def has_any(self, keys: tuple[str, ...]) -> bool:
        return any((v := self.get(k)) is not None and v.strip() for k in keys)
