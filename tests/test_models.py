"""
Tests for domain models — packaging values, identity tokens, secure entries.
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from packforge.core.models import (
    IdentityPrincipal,
    IdentityToken,
    IssueSeverity,
    PackagingArtifact,
    PackagingIssue,
    PackagingPlatform,
    PackagingResult,
    PolicyEvaluationResult,
    SecureStoreEntry,
)
from packforge.core.models.packaging import is_true, lookup

from conftest import make_project, make_request


# ── Helpers ─────────────────────────────────────────────────────────


class TestLookup:
    def test_exact_match(self):
        assert lookup({"a.B": "1"}, "a.B") == "1"

    def test_case_insensitive(self):
        assert lookup({"Mac.AppleId": "x"}, "mac.appleid") == "x"

    def test_missing(self):
        assert lookup({}, "anything") is None


class TestIsTrue:
    @pytest.mark.parametrize("value", ["true", "TRUE", " True ", "1"])
    def test_true_values(self, value):
        assert is_true(value)

    @pytest.mark.parametrize("value", [None, "", "false", "yes", "0"])
    def test_false_values(self, value):
        assert not is_true(value)


# ── Platform ────────────────────────────────────────────────────────


class TestPackagingPlatform:
    def test_parse_aliases(self):
        assert PackagingPlatform.parse("mac") is PackagingPlatform.MACOS
        assert PackagingPlatform.parse("OSX") is PackagingPlatform.MACOS
        assert PackagingPlatform.parse("Linux") is PackagingPlatform.LINUX

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            PackagingPlatform.parse("amiga")

    def test_display_name(self):
        assert PackagingPlatform.MACOS.display_name == "MacOS"


# ── Result ──────────────────────────────────────────────────────────


class TestPackagingResult:
    def test_success_without_errors(self):
        result = PackagingResult.create(issues=[PackagingIssue.warning("w", "warn")])
        assert result.success
        assert result.blocking_issues == 0

    def test_error_makes_failure(self):
        result = PackagingResult.create(issues=[PackagingIssue.error("e", "bad")])
        assert not result.success
        assert result.blocking_issues == 1

    def test_failed_keeps_issues(self):
        result = PackagingResult.failed(PackagingIssue.error("x.y", "nope"))
        assert result.codes() == ["x.y"]
        assert result.artifacts == ()

    def test_merge_preserves_order(self):
        a = PackagingResult.create(
            [PackagingArtifact(format="msi", path="a.msi")], [PackagingIssue.info("i1", "")]
        )
        b = PackagingResult.create(
            [PackagingArtifact(format="msix", path="b.msix")], [PackagingIssue.info("i2", "")]
        )
        merged = a.merge(b)
        assert [x.format for x in merged.artifacts] == ["msi", "msix"]
        assert merged.codes() == ["i1", "i2"]

    def test_partial_success_keeps_artifacts(self):
        result = PackagingResult.create(
            [PackagingArtifact(format="msix", path="ok.msix")],
            [PackagingIssue.error("windows.msi.exception", "boom")],
        )
        assert not result.success
        assert len(result.artifacts) == 1

    def test_to_dict_includes_success(self):
        d = PackagingResult.create().to_dict()
        assert d["success"] is True
        assert d["issues"] == []

    def test_frozen(self):
        result = PackagingResult.create()
        with pytest.raises(ValidationError):
            result.artifacts = ()


class TestPackagingIssue:
    def test_factories(self):
        assert PackagingIssue.info("a", "").severity == IssueSeverity.INFO
        assert PackagingIssue.warning("a", "").severity == IssueSeverity.WARNING
        assert PackagingIssue.error("a", "").is_error


# ── Project / request ───────────────────────────────────────────────


class TestProjectAndRequest:
    def test_meta_case_insensitive(self):
        project = make_project(metadata={"Policy.Signing.Required": "true"})
        assert project.meta("policy.signing.required") == "true"

    def test_with_metadata_returns_copy(self):
        project = make_project()
        updated = project.with_metadata({"mac.teamId": "ABC"})
        assert updated.meta("mac.teamId") == "ABC"
        assert project.meta("mac.teamId") is None

    def test_request_property_flag(self, tmp_path):
        request = make_request(tmp_path, properties={"linux.repo.enabled": "1"})
        assert request.property_flag("linux.repo.enabled")
        assert not request.property_flag("linux.sandbox.enabled")

    def test_with_properties_merges(self, tmp_path):
        request = make_request(tmp_path, properties={"a": "1"})
        updated = request.with_properties({"b": "2"})
        assert updated.properties == {"a": "1", "b": "2"}
        assert request.properties == {"a": "1"}


# ── Identity ────────────────────────────────────────────────────────


class TestIdentityToken:
    def test_naive_expiry_treated_as_utc(self):
        token = IdentityToken(value="t", expires_at=datetime(2030, 1, 1))
        assert token.expires_at.tzinfo is not None

    def test_remaining(self):
        now = datetime.now(UTC)
        token = IdentityToken(value="t", expires_at=now + timedelta(minutes=5))
        assert token.remaining(now) == timedelta(minutes=5)

    def test_covers_subset(self):
        token = IdentityToken(
            value="t",
            expires_at=datetime.now(UTC),
            scopes=("packaging.run", "packaging.sign"),
        )
        assert token.covers(("packaging.run",))
        assert not token.covers(("packaging.publish",))


class TestIdentityPrincipal:
    def test_has_role_ignores_case(self):
        principal = IdentityPrincipal(id="p", display_name="P", roles=("ReleaseEngineer",))
        assert principal.has_role("releaseengineer")
        assert not principal.has_role("Admin")


# ── Secure store / policy ───────────────────────────────────────────


class TestSecureStoreEntry:
    def test_kind_from_metadata(self):
        entry = SecureStoreEntry(id="e", metadata={"kind": "mac.entitlements"})
        assert entry.kind == "mac.entitlements"

    def test_is_expired(self):
        now = datetime.now(UTC)
        assert SecureStoreEntry(id="e", expires_at=now - timedelta(seconds=1)).is_expired(now)
        assert not SecureStoreEntry(id="e", expires_at=now + timedelta(days=1)).is_expired(now)
        assert not SecureStoreEntry(id="e").is_expired(now)


class TestPolicyEvaluationResult:
    def test_allowed(self):
        result = PolicyEvaluationResult.allowed()
        assert result.is_allowed
        assert not result.blocked

    def test_block(self):
        result = PolicyEvaluationResult.block([PackagingIssue.error("policy.x", "")])
        assert result.blocked
        assert len(result.issues) == 1
