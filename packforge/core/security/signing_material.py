"""
Signing material service — macOS entitlements and provisioning profiles.

Material lives in the secure store, tagged by ``kind``:

    mac.entitlements          → materialized as <workdir>/signing/<id>.plist
    mac.provisioningProfile   → materialized as <workdir>/signing/<id>.mobileprovision

A project points at material through metadata (request properties may
override):

    mac.signing.entitlementsEntryId          secure store entry id
    mac.signing.provisioningProfileEntryId   secure store entry id
    mac.signing.entitlements                 legacy: plain file path
    mac.signing.provisioningProfile          legacy: plain file path

Expiry evaluation for store entries:

    expires_at <= now            → <prefix>.expired       (error, still materialized)
    expires within 21 days       → <prefix>.rotation_due  (warning)
    otherwise                    → nothing

A kind mismatch (entitlements used as a profile, or vice versa) is a
hard error and the payload is not written.
"""

from __future__ import annotations

import logging
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable, Mapping

from packforge.adapters.base import PackageFormatContext
from packforge.core.models.packaging import PackagingIssue
from packforge.core.models.secure import (
    KIND_KEY,
    SecureStoreEntry,
    SecureStorePutOptions,
)
from packforge.core.models.signing import MacSigningMaterialResult
from packforge.core.observability.telemetry import NullTelemetry, TelemetryChannel
from packforge.core.security.secure_store import SecureStore, SecureStoreError, sanitize_id

logger = logging.getLogger(__name__)

ENTITLEMENTS_ENTRY_KEY = "mac.signing.entitlementsEntryId"
PROVISIONING_ENTRY_KEY = "mac.signing.provisioningProfileEntryId"
ENTITLEMENTS_PATH_KEY = "mac.signing.entitlements"
PROVISIONING_PATH_KEY = "mac.signing.provisioningProfile"

ENTITLEMENTS_KIND = "mac.entitlements"
PROVISIONING_KIND = "mac.provisioningProfile"

ROTATION_WINDOW = timedelta(days=21)

SIGNING_DIR = "signing"


class MacSigningMaterialService:
    def __init__(
        self,
        store: SecureStore,
        telemetry: TelemetryChannel | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._telemetry = telemetry or NullTelemetry()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ── Storing ────────────────────────────────────────────────

    def store_entitlements(
        self,
        entry_id: str,
        payload: bytes,
        expires_at: datetime | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> SecureStoreEntry:
        return self._put(entry_id, payload, ENTITLEMENTS_KIND, expires_at, metadata)

    def store_provisioning_profile(
        self,
        entry_id: str,
        payload: bytes,
        expires_at: datetime | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> SecureStoreEntry:
        return self._put(entry_id, payload, PROVISIONING_KIND, expires_at, metadata)

    def _put(self, entry_id, payload, kind, expires_at, metadata) -> SecureStoreEntry:
        merged = {**dict(metadata or {}), KIND_KEY: kind}
        options = SecureStorePutOptions(expires_at=expires_at, metadata=merged)
        return self._store.put(entry_id, payload, options)

    # ── Preparing ──────────────────────────────────────────────

    def prepare(self, context: PackageFormatContext) -> MacSigningMaterialResult:
        """Materialize configured signing material into the run's working directory."""
        issues: list[PackagingIssue] = []
        signing_dir = Path(context.working_directory) / SIGNING_DIR

        entitlements_path = self._resolve(
            context,
            entry_key=ENTITLEMENTS_ENTRY_KEY,
            path_key=ENTITLEMENTS_PATH_KEY,
            kind=ENTITLEMENTS_KIND,
            extension=".plist",
            legacy_name="entitlements.plist",
            prefix="mac.entitlements",
            signing_dir=signing_dir,
            issues=issues,
        )
        profile_path = self._resolve(
            context,
            entry_key=PROVISIONING_ENTRY_KEY,
            path_key=PROVISIONING_PATH_KEY,
            kind=PROVISIONING_KIND,
            extension=".mobileprovision",
            legacy_name="embedded.provisionprofile",
            prefix="mac.provisioning",
            signing_dir=signing_dir,
            issues=issues,
        )

        return MacSigningMaterialResult(
            success=not any(i.is_error for i in issues),
            entitlements_path=str(entitlements_path) if entitlements_path else None,
            provisioning_profile_path=str(profile_path) if profile_path else None,
            issues=tuple(issues),
        )

    def _resolve(
        self,
        context: PackageFormatContext,
        *,
        entry_key: str,
        path_key: str,
        kind: str,
        extension: str,
        legacy_name: str,
        prefix: str,
        signing_dir: Path,
        issues: list[PackagingIssue],
    ) -> Path | None:
        entry_id = _setting(context, entry_key)
        if entry_id and entry_id.strip():
            return self._materialize(entry_id.strip(), kind, extension, prefix, signing_dir, issues)

        legacy_path = _setting(context, path_key)
        if legacy_path:
            return _copy_existing(legacy_path, signing_dir / legacy_name, f"{prefix}.missing", issues)
        return None

    def _materialize(
        self,
        entry_id: str,
        kind: str,
        extension: str,
        prefix: str,
        signing_dir: Path,
        issues: list[PackagingIssue],
    ) -> Path | None:
        try:
            secret = self._store.try_get(entry_id)
        except SecureStoreError as e:
            issues.append(PackagingIssue.error(
                f"{prefix}.unreadable",
                f"Signing material entry '{entry_id}' could not be read: {e}",
            ))
            return None

        if secret is None:
            issues.append(PackagingIssue.error(
                f"{prefix}.not_found",
                f"Signing material entry '{entry_id}' was not found in secure storage.",
            ))
            return None

        actual = secret.entry.kind
        if actual is None or actual.casefold() != kind.casefold():
            issues.append(PackagingIssue.error(
                f"{prefix}.wrong_type",
                f"Signing material entry '{entry_id}' is of kind '{actual or 'unknown'}' "
                f"but '{kind}' was required.",
            ))
            return None

        issues.extend(self._evaluate_expiration(prefix, secret.entry))

        signing_dir.mkdir(parents=True, exist_ok=True)
        target = signing_dir / f"{sanitize_id(entry_id)}{extension}"
        target.write_bytes(secret.payload)

        self._telemetry.track_event(
            "mac.signing.material.materialized",
            {"entryId": entry_id, "kind": kind, "path": str(target)},
        )
        logger.debug("Materialized signing material %s (%s) to %s", entry_id, kind, target)
        return target

    def _evaluate_expiration(self, prefix: str, entry: SecureStoreEntry) -> list[PackagingIssue]:
        if entry.expires_at is None:
            return []

        remaining = entry.expires_at - self._clock()
        if remaining <= timedelta(0):
            return [PackagingIssue.error(
                f"{prefix}.expired",
                f"Signing material entry '{entry.id}' expired on {entry.expires_at.isoformat()}. "
                "Update it to continue shipping builds.",
            )]
        if remaining <= ROTATION_WINDOW:
            return [PackagingIssue.warning(
                f"{prefix}.rotation_due",
                f"Signing material entry '{entry.id}' expires in {remaining.days} day(s) "
                f"({entry.expires_at:%Y-%m-%d}). Refresh it to avoid build interruptions.",
            )]
        return []


def _setting(context: PackageFormatContext, key: str) -> str | None:
    value = context.request.prop(key)
    if value is None:
        value = context.project.meta(key)
    return value


def _copy_existing(
    configured: str, destination: Path, code: str, issues: list[PackagingIssue]
) -> Path | None:
    source = Path(configured)
    if not source.is_file():
        issues.append(PackagingIssue.error(
            code, f"Configured signing material '{configured}' could not be located."
        ))
        return None
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    return destination
