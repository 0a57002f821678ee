"""
Tests for the packforge CLI — pack, policy check, secrets.
"""

import json

import pytest
from click.testing import CliRunner

from packforge.main import cli


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return CliRunner(env={
        "PACKFORGE_SECURE_STORE": str(tmp_path / "store"),
        "PACKFORGE_AUDIT": "false",
    })


@pytest.fixture
def project_file(tmp_path):
    path = tmp_path / "packaging.yml"
    path.write_text(
        "id: sample\n"
        "name: Sample App\n"
        "version: 1.2.3\n"
        "platforms:\n"
        "  windows:\n"
        "    formats: [msi]\n"
    )
    return path


@pytest.fixture
def strict_project_file(tmp_path):
    path = tmp_path / "strict.yml"
    path.write_text(
        "id: strict\n"
        "metadata:\n"
        "  policy.signing.required: true\n"
        "  policy.approval.required: true\n"
    )
    return path


class TestGlobal:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "pack" in result.output
        assert "secrets" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_invalid_settings_file(self, runner, tmp_path):
        bad = tmp_path / "bad.yml"
        bad.write_text("- not\n- a mapping\n")
        result = runner.invoke(cli, ["-c", str(bad), "secrets", "list"])
        assert result.exit_code == 1
        assert "Expected a mapping" in result.output


class TestPack:
    def test_no_provider_fails(self, runner, project_file, tmp_path):
        result = runner.invoke(cli, [
            "pack", str(project_file), "--platform", "windows", "-o", str(tmp_path / "out"),
        ])
        assert result.exit_code == 1
        assert "Packaging failed (1 blocking issue(s))" in result.output
        assert "windows.no_providers" in result.output

    def test_json_output(self, runner, project_file, tmp_path):
        result = runner.invoke(cli, [
            "pack", str(project_file), "-p", "linux", "-f", "deb",
            "-o", str(tmp_path / "out"), "--json",
        ])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["success"] is False
        assert data["issues"][0]["code"] == "linux.no_providers"

    def test_policy_block_reported(self, runner, strict_project_file, tmp_path):
        result = runner.invoke(cli, [
            "pack", str(strict_project_file), "-p", "mac", "-o", str(tmp_path / "out"),
        ])
        assert result.exit_code == 1
        assert "policy.signing.required" in result.output
        assert "policy.approval.missing_token" in result.output

    def test_bad_property(self, runner, project_file):
        result = runner.invoke(cli, [
            "pack", str(project_file), "-p", "windows", "--property", "novalue",
        ])
        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    def test_missing_project_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["pack", str(tmp_path / "none.yml"), "-p", "windows"])
        assert result.exit_code == 2


class TestPolicyCheck:
    def test_allows(self, runner, project_file):
        result = runner.invoke(cli, ["policy", "check", str(project_file), "-p", "windows"])
        assert result.exit_code == 0
        assert "Policy allows sample on Windows" in result.output

    def test_blocks(self, runner, strict_project_file):
        result = runner.invoke(cli, ["policy", "check", str(strict_project_file), "-p", "linux"])
        assert result.exit_code == 1
        assert "Policy blocks strict on Linux" in result.output
        assert "policy.signing.required" in result.output

    def test_properties_satisfy_policy(self, runner, strict_project_file):
        result = runner.invoke(cli, [
            "policy", "check", str(strict_project_file), "-p", "linux",
            "--property", "linux.signing.keyId=ABCD",
            "--property", "policy.approvalToken=CAB-7",
        ])
        assert result.exit_code == 0

    def test_json(self, runner, strict_project_file):
        result = runner.invoke(cli, [
            "policy", "check", str(strict_project_file), "-p", "windows", "--json",
        ])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["is_allowed"] is False
        assert [i["code"] for i in data["issues"]] == [
            "policy.signing.required",
            "policy.approval.missing_token",
        ]


class TestSecrets:
    def test_put_list_delete(self, runner, tmp_path):
        payload = tmp_path / "app.entitlements"
        payload.write_text("<plist/>")

        put = runner.invoke(cli, [
            "secrets", "put", "ent", str(payload),
            "--kind", "mac.entitlements", "--expires", "2030-01-01T00:00:00+00:00",
        ])
        assert put.exit_code == 0
        assert "Stored 'ent'" in put.output

        listed = runner.invoke(cli, ["secrets", "list"])
        assert "ent [mac.entitlements]" in listed.output
        assert "2030-01-01" in listed.output

        as_json = runner.invoke(cli, ["secrets", "list", "--json"])
        assert json.loads(as_json.output)[0]["id"] == "ent"

        deleted = runner.invoke(cli, ["secrets", "delete", "ent"])
        assert deleted.exit_code == 0
        assert "Deleted 'ent'" in deleted.output

        assert "No entries." in runner.invoke(cli, ["secrets", "list"]).output

    def test_delete_missing(self, runner):
        result = runner.invoke(cli, ["secrets", "delete", "ghost"])
        assert result.exit_code == 1
        assert "No entry 'ghost'" in result.output

    def test_bad_expiry(self, runner, tmp_path):
        payload = tmp_path / "p"
        payload.write_text("x")
        result = runner.invoke(cli, ["secrets", "put", "k", str(payload), "--expires", "soon"])
        assert result.exit_code == 2
