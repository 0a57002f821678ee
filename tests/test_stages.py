"""
Tests for secondary stages — sandbox, repository, security, container, macOS verification and audit.
"""

import hashlib
import json
from pathlib import Path

import pytest

from packforge.adapters.base import PackageFormatContext
from packforge.adapters.process.runner import ProcessResult, ProcessRunner
from packforge.adapters.stages import (
    LinuxContainerStage,
    LinuxRepositoryStage,
    LinuxSandboxStage,
    MacAuditStage,
    MacVerificationStage,
    SecurityStage,
)
from packforge.adapters.stages.container import SCRIPT_NAME
from packforge.adapters.stages.repository import resolve_credential
from packforge.adapters.stages.security import (
    CycloneDxSbomGenerator,
    NullVulnerabilityScanner,
    StaticVulnerabilityScanner,
    VulnerabilityFinding,
)
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import (
    IssueSeverity,
    PackagingArtifact,
    PackagingPlatform,
    PackagingResult,
)
from packforge.core.observability.telemetry import RecordingTelemetry

from conftest import make_project, make_request


def context(tmp_path, platform=PackagingPlatform.LINUX, properties=None, metadata=None):
    out = tmp_path / "out"
    out.mkdir(exist_ok=True)
    return PackageFormatContext(
        project=make_project(metadata=metadata),
        request=make_request(out, platform=platform, properties=properties),
        working_directory=str(tmp_path),
    )


def artifact_file(tmp_path, name, content=b"package", fmt=None, **metadata):
    path = tmp_path / name
    path.write_bytes(content)
    return PackagingArtifact(format=fmt or path.suffix.lstrip("."), path=str(path), metadata=metadata)


def run(stage, ctx, *artifacts):
    return stage.run(ctx, PackagingResult.create(artifacts), CancellationToken.none())


def codes(issues):
    return [i.code for i in issues]


# ── Sandbox ────────────────────────────────────────────────────


class TestLinuxSandboxStage:
    def test_gate(self, tmp_path):
        stage = LinuxSandboxStage()
        assert stage.enabled(make_request(tmp_path, properties={"linux.sandbox.enabled": "true"}))
        assert not stage.enabled(make_request(tmp_path))

    def test_missing_configuration(self, tmp_path):
        ctx = context(tmp_path, properties={"linux.sandbox.enabled": "true"})
        issues = run(LinuxSandboxStage(), ctx, artifact_file(tmp_path, "app.deb"))
        assert codes(issues) == ["linux.sandbox.missing_configuration"]
        assert issues[0].severity == IssueSeverity.WARNING

    def test_writes_profile_per_artifact(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.sandbox.enabled": "true",
            "linux.sandbox.apparmorProfile": "usr.bin.sample",
            "linux.sandbox.flatpakPermissions": "--share=network",
        })
        deb = artifact_file(tmp_path, "app_1.2.3.deb")
        rpm = artifact_file(tmp_path, "app-1.2.3.rpm")

        issues = run(LinuxSandboxStage(), ctx, deb, rpm)

        assert issues == []
        profile = json.loads((ctx.output_directory / "_Audit" / "sandbox" / "app_1.2.3" / "profile.json").read_text())
        assert profile == {
            "artifactPath": deb.path,
            "format": "deb",
            "apparmorProfile": "usr.bin.sample",
            "selinuxContext": None,
            "flatpakPermissions": "--share=network",
            "postInstallScript": None,
        }
        assert (ctx.output_directory / "_Audit" / "sandbox" / "app-1.2.3" / "profile.json").is_file()

    def test_capture_failure_is_warning(self, tmp_path):
        ctx = context(tmp_path, properties={"linux.sandbox.selinuxContext": "system_u"})
        (ctx.output_directory / "_Audit").write_text("not a directory")
        issues = run(LinuxSandboxStage(), ctx, artifact_file(tmp_path, "app.deb"))
        assert codes(issues) == ["linux.sandbox.capture_failed"]


# ── Repository ─────────────────────────────────────────────────


class TestResolveCredential:
    def test_collects_properties(self, tmp_path):
        request = make_request(tmp_path, properties={
            "linux.repo.credential.prod.type": "token",
            "linux.repo.credential.prod.token": "s3cret",
            "linux.repo.credential.other.user": "x",
        })
        credential = resolve_credential(request, "prod")
        assert credential.type == "token"
        assert credential.properties == {"token": "s3cret"}

    def test_absent(self, tmp_path):
        assert resolve_credential(make_request(tmp_path), "prod") is None


class TestLinuxRepositoryStage:
    def test_targets_missing(self, tmp_path):
        ctx = context(tmp_path, properties={"linux.repo.enabled": "true"})
        assert codes(run(LinuxRepositoryStage(), ctx)) == ["linux.repo.targets_missing"]

    def test_bad_targets(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "a; b ;",
            "linux.repo.target.b.type": "zypper",
        })
        assert codes(run(LinuxRepositoryStage(), ctx)) == [
            "linux.repo.target_type_missing",
            "linux.repo.target_type_invalid",
        ]

    def test_credential_missing(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "stable",
            "linux.repo.target.stable.type": "apt",
            "linux.repo.target.stable.credential": "prod",
        })
        issues = run(LinuxRepositoryStage(), ctx, artifact_file(tmp_path, "app.deb"))
        assert codes(issues) == ["linux.repo.credential_missing"]
        assert issues[0].is_error

    def test_apt_publish(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "stable",
            "linux.repo.target.stable.type": "apt",
            "linux.repo.target.stable.components": "main, extra",
            "linux.repo.target.stable.credential": "prod",
            "linux.repo.credential.prod.type": "token",
            "linux.repo.credential.prod.token": "s3cret",
        })
        deb = artifact_file(tmp_path, "sample_1.2.3_arm64.deb", b"deb-bytes",
                            packageName="sample", packageArchitecture="arm64")

        issues = run(LinuxRepositoryStage(), ctx, deb)

        assert issues == []
        root = ctx.output_directory / "_Repo" / "stable" / "apt"
        packages = (root / "dists" / "stable" / "extra" / "binary-arm64" / "Packages").read_text()
        assert "Package: sample" in packages
        assert "Version: 1.2.3" in packages
        assert "Filename: pool/extra/sample_1.2.3_arm64.deb" in packages
        assert f"Size: {len(b'deb-bytes')}" in packages
        assert f"SHA256: {hashlib.sha256(b'deb-bytes').hexdigest()}" in packages

        release = (root / "dists" / "stable" / "Release").read_text()
        assert "Components: main extra" in release
        assert "Architectures: arm64" in release
        assert "Origin: packforge" in release

        target = json.loads((root / "target.json").read_text())
        assert target["credential"] == {"id": "prod", "type": "token", "properties": ["token"]}
        assert "s3cret" not in (root / "target.json").read_text()

    def test_apt_defaults(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "s",
            "linux.repo.target.s.type": "APT",
        })
        run(LinuxRepositoryStage(), ctx, artifact_file(tmp_path, "app.deb"))
        assert (ctx.output_directory / "_Repo" / "s" / "apt" / "dists" / "stable" / "main"
                / "binary-amd64" / "Packages").is_file()

    def test_apt_without_debs(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "s",
            "linux.repo.target.s.type": "apt",
        })
        issues = run(LinuxRepositoryStage(), ctx, artifact_file(tmp_path, "app.rpm"))
        assert codes(issues) == ["linux.repo.apt.no_artifacts"]

    def test_apt_artifact_missing(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "s",
            "linux.repo.target.s.type": "apt",
        })
        ghost = PackagingArtifact(format="deb", path=str(tmp_path / "ghost.deb"))
        issues = run(LinuxRepositoryStage(), ctx, ghost)
        assert codes(issues) == ["linux.repo.apt.artifact_missing"]

    def test_yum_publish(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "internal",
            "linux.repo.target.internal.type": "yum",
            "linux.repo.target.internal.destination": "https://repo.example.com/el9",
        })
        rpm = artifact_file(tmp_path, "sample-1.2.3.x86_64.rpm", b"rpm-bytes")

        issues = run(LinuxRepositoryStage(), ctx, rpm)

        assert issues == []
        root = ctx.output_directory / "_Repo" / "internal" / "yum"
        repodata = json.loads((root / "repodata" / "repodata.json").read_text())
        assert repodata["packages"][0]["architecture"] == "x86_64"
        assert repodata["packages"][0]["sha256"] == hashlib.sha256(b"rpm-bytes").hexdigest()
        repo_file = (root / "internal.repo").read_text()
        assert "baseurl=https://repo.example.com/el9" in repo_file
        assert json.loads((root / "target.json").read_text())["destination"] == (
            "https://repo.example.com/el9"
        )

    def test_yum_baseurl_defaults_to_local(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "local",
            "linux.repo.target.local.type": "yum",
        })
        run(LinuxRepositoryStage(), ctx, artifact_file(tmp_path, "a.rpm"))
        repo_file = (ctx.output_directory / "_Repo" / "local" / "yum" / "local.repo").read_text()
        assert "baseurl=file://" in repo_file

    def test_publish_failure_is_warning(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.repo.targets": "s",
            "linux.repo.target.s.type": "yum",
        })
        (ctx.output_directory / "_Repo").write_text("blocker")
        issues = run(LinuxRepositoryStage(), ctx, artifact_file(tmp_path, "a.rpm"))
        assert codes(issues) == ["linux.repo.publish_failed"]


# ── Security ───────────────────────────────────────────────────


class TestVulnerabilityFinding:
    @pytest.mark.parametrize("severity,expected", [
        ("CRITICAL", IssueSeverity.ERROR),
        ("high", IssueSeverity.WARNING),
        ("Medium", IssueSeverity.WARNING),
        ("LOW", IssueSeverity.INFO),
        ("unknown", IssueSeverity.INFO),
    ])
    def test_severity_mapping(self, severity, expected):
        assert VulnerabilityFinding("CVE-1", severity).issue_severity == expected

    def test_to_issue(self):
        issue = VulnerabilityFinding(
            "CVE-2024-0001", "HIGH", "Heap overflow", "https://nvd.example/CVE-2024-0001"
        ).to_issue()
        assert issue.code == "security.vuln.cve-2024-0001"
        assert issue.message == (
            "CVE-2024-0001 (HIGH): Heap overflow (https://nvd.example/CVE-2024-0001)"
        )


class TestSecurityStage:
    def test_requires_registrations(self):
        with pytest.raises(ValueError):
            SecurityStage(generators=[])
        with pytest.raises(ValueError):
            SecurityStage(scanners=[])

    def test_gate(self, tmp_path):
        stage = SecurityStage()
        assert stage.enabled(make_request(tmp_path, properties={"security.sbom.enabled": "1"}))
        assert stage.enabled(make_request(tmp_path, properties={"security.vuln.enabled": "true"}))
        assert not stage.enabled(make_request(tmp_path))

    def test_sbom_generated(self, tmp_path):
        ctx = context(tmp_path, PackagingPlatform.WINDOWS, {"security.sbom.enabled": "true"})
        issues = run(SecurityStage(), ctx, artifact_file(tmp_path, "Sample.msi"))

        assert codes(issues) == ["security.sbom.generated"]
        assert issues[0].severity == IssueSeverity.INFO
        sbom = json.loads((ctx.output_directory / "_Sbom" / "Sample.cdx.json").read_text())
        assert sbom["bomFormat"] == "CycloneDX"
        assert sbom["specVersion"] == "1.4"
        assert sbom["components"][0] == {"type": "application", "name": "Sample App", "version": "1.2.3"}

    def test_sbom_alias(self, tmp_path):
        ctx = context(tmp_path, properties={
            "security.sbom.enabled": "true", "security.sbom.format": "CycloneDX-JSON",
        })
        assert codes(run(SecurityStage(), ctx, artifact_file(tmp_path, "a.deb"))) == [
            "security.sbom.generated"
        ]

    def test_unknown_sbom_format_falls_back(self, tmp_path):
        ctx = context(tmp_path, properties={
            "security.sbom.enabled": "true", "security.sbom.format": "spdx",
        })
        issues = run(SecurityStage(), ctx, artifact_file(tmp_path, "a.deb"), artifact_file(tmp_path, "b.rpm"))
        assert codes(issues) == [
            "security.sbom.format.unsupported",
            "security.sbom.generated",
            "security.sbom.generated",
        ]

    def test_sbom_failure_is_warning(self, tmp_path):
        ctx = context(tmp_path, properties={"security.sbom.enabled": "true"})
        (ctx.output_directory / "_Sbom").write_text("blocker")
        issues = run(SecurityStage(), ctx, artifact_file(tmp_path, "a.deb"))
        assert codes(issues) == ["security.sbom.generate_failed"]

    def test_vulnerability_findings(self, tmp_path):
        scanner = StaticVulnerabilityScanner([
            VulnerabilityFinding("CVE-A", "CRITICAL", "bad"),
            VulnerabilityFinding("CVE-B", "LOW", "meh"),
        ])
        stage = SecurityStage(scanners=[NullVulnerabilityScanner(), scanner])
        ctx = context(tmp_path, properties={
            "security.vuln.enabled": "true", "security.vuln.providers": "static; null",
        })

        issues = run(stage, ctx, artifact_file(tmp_path, "a.deb"))

        assert codes(issues) == ["security.vuln.cve-a", "security.vuln.cve-b"]
        assert [i.severity for i in issues] == [IssueSeverity.ERROR, IssueSeverity.INFO]
        assert not PackagingResult.create(issues=issues).success

    def test_unknown_scanner_falls_back(self, tmp_path):
        ctx = context(tmp_path, properties={
            "security.vuln.enabled": "true", "security.vuln.provider": "grype",
        })
        issues = run(SecurityStage(), ctx, artifact_file(tmp_path, "a.deb"))
        assert codes(issues) == ["security.vuln.provider.unsupported"]

    def test_only_scanning(self, tmp_path):
        ctx = context(tmp_path, properties={"security.vuln.enabled": "true"})
        run(SecurityStage(), ctx, artifact_file(tmp_path, "a.deb"))
        assert not (ctx.output_directory / "_Sbom").exists()

    def test_generator_direct(self, tmp_path):
        ctx = context(tmp_path)
        result = CycloneDxSbomGenerator().generate(
            ctx, artifact_file(tmp_path, "x.deb", packageName="pkg", packageVersion="9")
        )
        component = json.loads(Path(result.path).read_text())["components"][0]
        assert component["name"] == "pkg"
        assert component["version"] == "9"


# ── macOS audit ────────────────────────────────────────────────


class TestMacAuditStage:
    def test_gate(self, tmp_path):
        assert MacAuditStage().enabled(make_request(tmp_path, properties={"mac.audit.enabled": "true"}))

    def test_captures_log_and_receipt(self, tmp_path):
        log = tmp_path / "notarytool-log-abc.json"
        log.write_text("{}")
        pkg = artifact_file(tmp_path, "Sample.pkg", notarizationLog=str(log), stapled="True")
        ctx = context(tmp_path, PackagingPlatform.MACOS)

        issues = run(MacAuditStage(), ctx, pkg)

        assert issues == []
        audit = ctx.output_directory / "_Audit" / "Sample"
        assert (audit / "notarization" / "notarytool-log-abc.json").is_file()
        receipt = json.loads((audit / "receipt.json").read_text())
        assert receipt["format"] == "pkg"
        assert receipt["metadata"]["stapled"] == "True"

    def test_unstapled_has_no_receipt(self, tmp_path):
        pkg = artifact_file(tmp_path, "Sample.pkg", stapled="False")
        ctx = context(tmp_path, PackagingPlatform.MACOS)
        run(MacAuditStage(), ctx, pkg)
        assert not (ctx.output_directory / "_Audit" / "Sample" / "receipt.json").exists()

    def test_capture_failure_is_warning(self, tmp_path):
        pkg = artifact_file(tmp_path, "Sample.pkg", stapled="true")
        ctx = context(tmp_path, PackagingPlatform.MACOS)
        (ctx.output_directory / "_Audit").write_text("blocker")
        assert codes(run(MacAuditStage(), ctx, pkg)) == ["mac.audit.capture_failed"]


# ── macOS verification ─────────────────────────────────────────


class RecordingRunner(ProcessRunner):
    def __init__(self, fail_tool=None):
        self.fail_tool = fail_tool
        self.requests = []

    def execute(self, request, cancel_token=None):
        self.requests.append(request)
        if request.file_name == self.fail_tool:
            return ProcessResult(exit_code=1, stderr="rejected")
        return ProcessResult(exit_code=0, stdout="ok")

    def tools(self):
        return [r.file_name for r in self.requests]


class TestMacVerificationStage:
    def test_gate(self, tmp_path):
        stage = MacVerificationStage(RecordingRunner())
        assert stage.enabled(make_request(tmp_path, properties={"mac.verify.enabled": "TRUE"}))
        assert not stage.enabled(make_request(tmp_path))

    @pytest.mark.parametrize("name, tools", [
        ("Sample.app", ["spctl"]),
        ("Sample.pkg", ["spctl", "pkgutil"]),
        ("Sample.dmg", ["hdiutil"]),
        ("Sample.zip", []),
    ])
    def test_tools_per_format(self, tmp_path, name, tools):
        runner = RecordingRunner()
        ctx = context(tmp_path, PackagingPlatform.MACOS)

        issues = run(MacVerificationStage(runner), ctx, artifact_file(tmp_path, name))

        assert issues == []
        assert runner.tools() == tools

    def test_pkg_arguments(self, tmp_path):
        runner = RecordingRunner()
        pkg = artifact_file(tmp_path, "Sample.pkg")
        run(MacVerificationStage(runner), context(tmp_path, PackagingPlatform.MACOS), pkg)

        spctl, pkgutil = runner.requests
        assert list(spctl.arguments) == [
            "--assess", "--type", "install", "--ignore-cache", "--no-cache", pkg.path,
        ]
        assert list(pkgutil.arguments) == ["--check-signature", pkg.path]

    def test_failure_is_error_with_diagnostics(self, tmp_path):
        runner = RecordingRunner(fail_tool="spctl")
        telemetry = RecordingTelemetry()
        ctx = context(tmp_path, PackagingPlatform.MACOS)

        issues = run(MacVerificationStage(runner, telemetry), ctx, artifact_file(tmp_path, "Sample.pkg"))

        assert codes(issues) == ["mac.verify.spctl_failed.install"]
        assert issues[0].severity == IssueSeverity.ERROR
        assert "rejected" in issues[0].message
        assert list((ctx.output_directory / "_diagnostics").glob("gatekeeper-assessment-failed-*.log"))
        assert runner.tools() == ["spctl", "pkgutil"]
        assert [(d.name, d.success) for d in telemetry.dependencies] == [
            ("mac.verify.spctl", False),
            ("mac.verify.pkgutil", True),
        ]

    def test_dmg_failure(self, tmp_path):
        runner = RecordingRunner(fail_tool="hdiutil")
        ctx = context(tmp_path, PackagingPlatform.MACOS)
        issues = run(MacVerificationStage(runner), ctx, artifact_file(tmp_path, "Sample.dmg"))
        assert codes(issues) == ["mac.verify.hdiutil_failed"]


# ── Linux container ────────────────────────────────────────────


class TestLinuxContainerStage:
    def test_gate(self, tmp_path):
        stage = LinuxContainerStage()
        assert stage.enabled(make_request(tmp_path, properties={"linux.container.image": "ubuntu:24.04"}))
        assert not stage.enabled(make_request(tmp_path, properties={"linux.container.image": "  "}))

    def test_script_generated(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.container.image": "ghcr.io/acme/packager:1",
            "linux.sandbox.enabled": "true",
            "release.notes": "first cut",
        })

        issues = run(LinuxContainerStage(), ctx)

        assert codes(issues) == ["linux.container.script_generated"]
        script = ctx.output_directory / SCRIPT_NAME
        text = script.read_text()
        assert text.startswith("#!/usr/bin/env bash\nset -euo pipefail\n")
        assert "  ghcr.io/acme/packager:1 \\\n" in text
        assert "packforge pack 'Sample App.json' --platform linux --format mock" in text
        assert "--configuration Release" in text
        assert f"--output {ctx.output_directory}" in text
        assert "--property linux.sandbox.enabled=true" in text
        assert "--property 'release.notes=first cut'" in text
        assert "linux.container.image=" not in text
        assert script.stat().st_mode & 0o100

    def test_overrides(self, tmp_path):
        ctx = context(tmp_path, properties={
            "linux.container.image": "img",
            "linux.container.projectPath": "build/app.yml",
            "linux.container.output": "/workspace/out",
        })
        run(LinuxContainerStage(), ctx)
        text = (ctx.output_directory / SCRIPT_NAME).read_text()
        assert "packforge pack build/app.yml" in text
        assert "--output /workspace/out" in text

    def test_write_failure_is_warning(self, tmp_path):
        ctx = context(tmp_path, properties={"linux.container.image": "img"})
        (ctx.output_directory / SCRIPT_NAME).mkdir()
        assert codes(run(LinuxContainerStage(), ctx)) == ["linux.container.script_failed"]
