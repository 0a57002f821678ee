"""
Security stage — SBOM generation and vulnerability scanning per artifact.

    security.sbom.enabled       turn on SBOM generation
    security.sbom.format        generator name (default: first registered)
    security.vuln.enabled       turn on vulnerability scanning
    security.vuln.providers     scanner name(s), first one wins
    security.vuln.provider      single scanner name

An unknown generator or scanner name is a warning and the default one
is used instead. Findings map to issue severity by advisory severity:
CRITICAL is an error, HIGH and MEDIUM are warnings, anything else info.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable

from packforge import __version__
from packforge.adapters.base import PackageFormatContext
from packforge.adapters.stages.base import SecondaryStage
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import (
    IssueSeverity,
    PackagingArtifact,
    PackagingIssue,
    PackagingRequest,
    PackagingResult,
)

logger = logging.getLogger(__name__)


# ── SBOM ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class SbomResult:
    path: str | None = None
    issue: PackagingIssue | None = None


class SbomGenerator(ABC):
    name: str = ""
    aliases: tuple[str, ...] = ()

    @abstractmethod
    def generate(self, context: PackageFormatContext, artifact: PackagingArtifact) -> SbomResult:
        """Write an SBOM for the artifact. Failures are returned, not raised."""


class CycloneDxSbomGenerator(SbomGenerator):
    name = "cyclonedx"
    aliases = ("cyclonedx-json",)

    def generate(self, context: PackageFormatContext, artifact: PackagingArtifact) -> SbomResult:
        path = context.output_directory / "_Sbom" / f"{Path(artifact.path).stem}.cdx.json"
        sbom = {
            "bomFormat": "CycloneDX",
            "specVersion": "1.4",
            "version": 1,
            "metadata": {
                "timestamp": datetime.now(UTC).isoformat(),
                "tools": [{"name": "packforge", "version": __version__}],
            },
            "components": [{
                "type": "application",
                "name": artifact.meta("packageName") or context.project.name,
                "version": artifact.meta("packageVersion") or context.project.version,
            }],
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(sbom, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to generate SBOM for %s: %s", artifact.path, e)
            return SbomResult(issue=PackagingIssue.warning(
                "security.sbom.generate_failed", f"Failed to generate SBOM: {e}"
            ))
        return SbomResult(path=str(path))


# ── Vulnerabilities ────────────────────────────────────────────


@dataclass(frozen=True)
class VulnerabilityFinding:
    id: str
    severity: str
    description: str = ""
    advisory_url: str | None = None

    @property
    def issue_severity(self) -> IssueSeverity:
        level = self.severity.upper()
        if level == "CRITICAL":
            return IssueSeverity.ERROR
        if level in ("HIGH", "MEDIUM"):
            return IssueSeverity.WARNING
        return IssueSeverity.INFO

    def to_issue(self) -> PackagingIssue:
        message = f"{self.id} ({self.severity}): {self.description}"
        if self.advisory_url:
            message += f" ({self.advisory_url})"
        return PackagingIssue(
            code=f"security.vuln.{self.id.lower()}",
            message=message,
            severity=self.issue_severity,
        )


@dataclass(frozen=True)
class ScanResult:
    findings: tuple[VulnerabilityFinding, ...] = ()
    issue: PackagingIssue | None = None


class VulnerabilityScanner(ABC):
    name: str = ""

    @abstractmethod
    def scan(self, context: PackageFormatContext, artifact: PackagingArtifact) -> ScanResult:
        """Scan an artifact. Failures are returned as ``ScanResult.issue``."""


class NullVulnerabilityScanner(VulnerabilityScanner):
    name = "null"

    def scan(self, context: PackageFormatContext, artifact: PackagingArtifact) -> ScanResult:
        return ScanResult()


@dataclass
class StaticVulnerabilityScanner(VulnerabilityScanner):
    """Reports a fixed list of findings for every artifact."""

    findings: list[VulnerabilityFinding] = field(default_factory=list)
    name: str = "static"

    def scan(self, context: PackageFormatContext, artifact: PackagingArtifact) -> ScanResult:
        return ScanResult(findings=tuple(self.findings))


# ── Stage ──────────────────────────────────────────────────────


class SecurityStage(SecondaryStage):
    name = "security"

    def __init__(
        self,
        generators: Iterable[SbomGenerator] | None = None,
        scanners: Iterable[VulnerabilityScanner] | None = None,
    ):
        self._generators = list(generators) if generators is not None else [CycloneDxSbomGenerator()]
        self._scanners = list(scanners) if scanners is not None else [NullVulnerabilityScanner()]
        if not self._generators:
            raise ValueError("At least one SBOM generator must be registered")
        if not self._scanners:
            raise ValueError("At least one vulnerability scanner must be registered")

    def enabled(self, request: PackagingRequest) -> bool:
        return request.property_flag("security.sbom.enabled") or request.property_flag("security.vuln.enabled")

    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        request = context.request
        issues: list[PackagingIssue] = []
        generator = self._generator(request, issues) if request.property_flag("security.sbom.enabled") else None
        scanner = self._scanner(request, issues) if request.property_flag("security.vuln.enabled") else None

        for artifact in result.artifacts:
            cancel_token.raise_if_cancelled()
            if generator is not None:
                sbom = generator.generate(context, artifact)
                if sbom.path:
                    issues.append(PackagingIssue.info(
                        "security.sbom.generated",
                        f"SBOM ({generator.name}) generated at '{Path(sbom.path).resolve()}'.",
                    ))
                if sbom.issue is not None:
                    issues.append(sbom.issue)
            if scanner is not None:
                scan = scanner.scan(context, artifact)
                if scan.issue is not None:
                    issues.append(scan.issue)
                issues.extend(f.to_issue() for f in scan.findings)
        return issues

    def _generator(self, request: PackagingRequest, issues: list[PackagingIssue]) -> SbomGenerator:
        wanted = (request.prop("security.sbom.format") or "").strip()
        if not wanted:
            return self._generators[0]
        for g in self._generators:
            if wanted.lower() in (g.name, *g.aliases):
                return g
        issues.append(PackagingIssue.warning(
            "security.sbom.format.unsupported", f"SBOM format '{wanted}' is not supported."
        ))
        return self._generators[0]

    def _scanner(self, request: PackagingRequest, issues: list[PackagingIssue]) -> VulnerabilityScanner:
        raw = request.prop("security.vuln.providers") or request.prop("security.vuln.provider") or ""
        names = [n.strip() for n in raw.replace(",", ";").split(";") if n.strip()]
        if not names:
            return self._scanners[0]
        for s in self._scanners:
            if s.name == names[0].lower():
                return s
        issues.append(PackagingIssue.warning(
            "security.vuln.provider.unsupported",
            f"Vulnerability provider '{names[0]}' is not supported.",
        ))
        return self._scanners[0]
