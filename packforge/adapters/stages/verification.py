"""
macOS verification stage — Gatekeeper and signature checks per artifact.

Turned on by ``mac.verify.enabled``. Each provider artifact is checked
with the tools that apply to its format:

    app    spctl --assess --type execute
    pkg    spctl --assess --type install, then pkgutil --check-signature
    dmg    hdiutil verify

Other formats are skipped. Tools run through the pipeline's process
runner, so on a remote build agent they run there too. A failing tool
is an error issue whose message points at the diagnostics log.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta

from packforge.adapters.base import PackageFormatContext
from packforge.adapters.process.diagnostics import write_process_log
from packforge.adapters.process.runner import ProcessRequest, ProcessRunner
from packforge.adapters.stages.base import SecondaryStage
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import (
    PackagingArtifact,
    PackagingIssue,
    PackagingRequest,
    PackagingResult,
)
from packforge.core.observability.telemetry import NullTelemetry, TelemetryChannel

logger = logging.getLogger(__name__)


class MacVerificationStage(SecondaryStage):
    name = "verify"

    def __init__(self, runner: ProcessRunner, telemetry: TelemetryChannel | None = None):
        self._runner = runner
        self._telemetry = telemetry or NullTelemetry()

    def enabled(self, request: PackagingRequest) -> bool:
        return request.property_flag("mac.verify.enabled")

    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        issues: list[PackagingIssue] = []
        for artifact in result.artifacts:
            cancel_token.raise_if_cancelled()
            issues.extend(self.verify(context, artifact, cancel_token))
        return issues

    def verify(
        self,
        context: PackageFormatContext,
        artifact: PackagingArtifact,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        """Run every check for one artifact; all checks run even after a failure."""
        fmt = artifact.format.lower()
        issues: list[PackagingIssue] = []

        if fmt == "app":
            self._spctl(context, artifact.path, "execute", issues, cancel_token)
        elif fmt == "pkg":
            self._spctl(context, artifact.path, "install", issues, cancel_token)
            self._check(
                context, "pkgutil", ["--check-signature", artifact.path],
                "mac.verify.pkg_signature_failed", "pkgutil signature check failed.",
                issues, cancel_token,
            )
        elif fmt == "dmg":
            self._check(
                context, "hdiutil", ["verify", artifact.path],
                "mac.verify.hdiutil_failed", "Disk image verification failed.",
                issues, cancel_token,
            )
        else:
            logger.debug("No verification for format '%s'", artifact.format)

        return issues

    def _spctl(
        self,
        context: PackageFormatContext,
        path: str,
        assessment: str,
        issues: list[PackagingIssue],
        token: CancellationToken,
    ) -> None:
        args = ["--assess", "--type", assessment, "--ignore-cache", "--no-cache", path]
        self._check(
            context, "spctl", args,
            f"mac.verify.spctl_failed.{assessment}", "Gatekeeper assessment failed.",
            issues, token,
        )

    def _check(
        self,
        context: PackageFormatContext,
        tool: str,
        args: list[str],
        code: str,
        headline: str,
        issues: list[PackagingIssue],
        token: CancellationToken,
    ) -> bool:
        request = ProcessRequest.of(tool, args, working_directory=context.working_directory)
        started = time.monotonic()
        result = self._runner.execute(request, token)
        self._telemetry.track_dependency(
            f"mac.verify.{tool}",
            timedelta(seconds=time.monotonic() - started),
            result.success,
            {
                "project": context.project.name,
                "arguments": " ".join(args),
                "exitCode": str(result.exit_code),
            },
        )
        if result.success:
            return True

        logger.warning("%s %s exited with %d", tool, args[0], result.exit_code)
        parts = [headline]
        if result.stderr.strip():
            parts.append(result.stderr.strip())
        component = headline.rstrip(".").replace(" ", "-").lower()
        log_path = write_process_log(context.output_directory, component, request, result)
        if log_path is not None:
            parts.append(f"See '{log_path}' for details.")
        issues.append(PackagingIssue.error(code, " ".join(parts)))
        return False
