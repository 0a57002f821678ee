"""Linux sandbox capture — records AppArmor/SELinux/Flatpak settings per artifact."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from packforge.adapters.base import PackageFormatContext
from packforge.adapters.stages.base import SecondaryStage
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import PackagingIssue, PackagingRequest, PackagingResult

logger = logging.getLogger(__name__)

SANDBOX_KEYS = {
    "apparmorProfile": "linux.sandbox.apparmorProfile",
    "selinuxContext": "linux.sandbox.selinuxContext",
    "flatpakPermissions": "linux.sandbox.flatpakPermissions",
    "postInstallScript": "linux.sandbox.postInstallScript",
}


class LinuxSandboxStage(SecondaryStage):
    name = "sandbox"

    def enabled(self, request: PackagingRequest) -> bool:
        return request.property_flag("linux.sandbox.enabled")

    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        settings = {
            field: value
            for field, key in SANDBOX_KEYS.items()
            if (value := context.request.prop(key)) and value.strip()
        }
        if not settings:
            return [PackagingIssue.warning(
                "linux.sandbox.missing_configuration",
                "Sandboxing enabled but no AppArmor, SELinux, Flatpak permissions, "
                "or post-install script were provided.",
            )]

        issues: list[PackagingIssue] = []
        for artifact in result.artifacts:
            cancel_token.raise_if_cancelled()
            stem = Path(artifact.path).stem or artifact.format
            target = context.output_directory / "_Audit" / "sandbox" / stem / "profile.json"
            profile = {"artifactPath": artifact.path, "format": artifact.format}
            profile.update({field: settings.get(field) for field in SANDBOX_KEYS})
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(json.dumps(profile, indent=2), encoding="utf-8")
            except OSError as e:
                logger.warning("Failed to capture sandbox profile for %s: %s", artifact.path, e)
                issues.append(PackagingIssue.warning(
                    "linux.sandbox.capture_failed",
                    f"Failed to capture sandbox configuration for '{artifact.path}': {e}",
                ))
            else:
                logger.debug("Sandbox profile written: %s", target)
        return issues
