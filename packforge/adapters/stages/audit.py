"""macOS audit capture — notarization logs and stapling receipts."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from packforge.adapters.base import PackageFormatContext
from packforge.adapters.stages.base import SecondaryStage
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import (
    PackagingArtifact,
    PackagingIssue,
    PackagingRequest,
    PackagingResult,
)

logger = logging.getLogger(__name__)


class MacAuditStage(SecondaryStage):
    name = "audit"

    def enabled(self, request: PackagingRequest) -> bool:
        return request.property_flag("mac.audit.enabled")

    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        issues: list[PackagingIssue] = []
        for artifact in result.artifacts:
            cancel_token.raise_if_cancelled()
            try:
                self._capture(context, artifact)
            except OSError as e:
                logger.warning("Failed to capture audit artifact for %s: %s", artifact.path, e)
                issues.append(PackagingIssue.warning(
                    "mac.audit.capture_failed",
                    f"Unable to capture audit artifact for '{artifact.path}': {e}",
                ))
        return issues

    def _capture(self, context: PackageFormatContext, artifact: PackagingArtifact) -> None:
        audit_dir = context.output_directory / "_Audit" / (Path(artifact.path).stem or "artifact")

        log_path = artifact.meta("notarizationLog")
        if log_path and Path(log_path).is_file():
            target = audit_dir / "notarization"
            target.mkdir(parents=True, exist_ok=True)
            shutil.copy2(log_path, target / Path(log_path).name)

        if (artifact.meta("stapled") or "").lower() == "true":
            audit_dir.mkdir(parents=True, exist_ok=True)
            receipt = {"format": artifact.format, "path": artifact.path, "metadata": dict(artifact.metadata)}
            (audit_dir / "receipt.json").write_text(json.dumps(receipt, indent=2), encoding="utf-8")
