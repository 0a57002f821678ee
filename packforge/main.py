"""
packforge — CLI entrypoint.

Usage:
    packforge --help
    packforge pack packaging.yml --platform macos --format notarize
    packforge policy check packaging.yml --platform windows
    packforge secrets list
"""

from __future__ import annotations

import json
import os
import sys
from datetime import datetime
from pathlib import Path

import click

from packforge import __version__
from packforge.core.observability.logging_config import setup_logging

_SEVERITY_STYLE = {
    "error": ("❌", "red"),
    "warning": ("⚠️ ", "yellow"),
    "info": ("ℹ️ ", "cyan"),
}


@click.group()
@click.version_option(version=__version__, prog_name="packforge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to packforge.yml settings (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """packforge — governed multi-platform packaging."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("PACKFORGE_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("PACKFORGE_LOG_FILE"),
        log_file_level=os.environ.get("PACKFORGE_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


def _settings(ctx: click.Context):
    from packforge.core.config.loader import ConfigError
    from packforge.core.config.settings import load_settings

    try:
        return load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _parse_properties(values: tuple[str, ...]) -> dict[str, str]:
    props: dict[str, str] = {}
    for raw in values:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got '{raw}'", param_hint="--property")
        props[key.strip()] = value
    return props


def _echo_issues(issues) -> None:
    for issue in issues:
        icon, color = _SEVERITY_STYLE.get(issue.severity.value, ("•", "white"))
        click.secho(f"   {icon} {issue.code}", fg=color, nl=False)
        click.echo(f"  {issue.message}")


_platform_option = click.option(
    "--platform",
    "-p",
    required=True,
    type=click.Choice(["windows", "macos", "mac", "linux"], case_sensitive=False),
    help="Target platform.",
)
_property_option = click.option(
    "--property",
    "properties",
    multiple=True,
    metavar="KEY=VALUE",
    help="Request property (repeatable).",
)


# ── pack ───────────────────────────────────────────────────────


@cli.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False))
@_platform_option
@click.option("--format", "-f", "formats", multiple=True, help="Format to produce (repeatable).")
@click.option("--configuration", default="Release", show_default=True, help="Build configuration.")
@click.option("--output", "-o", "output", type=click.Path(file_okay=False), default=None,
              help="Output directory (default: ./artifacts/<platform>).")
@_property_option
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def pack(
    ctx: click.Context,
    project_file: str,
    platform: str,
    formats: tuple[str, ...],
    configuration: str,
    output: str | None,
    properties: tuple[str, ...],
    as_json: bool,
) -> None:
    """Package a project for one platform."""
    from packforge.client import create_default
    from packforge.core.config.loader import ConfigError

    props = _parse_properties(properties)
    client = create_default(_settings(ctx))

    try:
        result = client.run_project_file(
            project_file,
            platform,
            formats=formats or None,
            configuration=configuration,
            output_directory=output,
            properties=props,
        )
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.success else 1)

    if result.success:
        click.secho(f"✅ Packaging succeeded ({len(result.artifacts)} artifact(s))", fg="green", bold=True)
    else:
        click.secho(f"❌ Packaging failed ({result.blocking_issues} blocking issue(s))", fg="red", bold=True)

    for artifact in result.artifacts:
        click.echo(f"   📦 [{artifact.format}] {artifact.path}")
    if result.issues and not ctx.obj.get("quiet"):
        click.echo()
        _echo_issues(result.issues)

    click.echo()
    if not result.success:
        sys.exit(1)


# ── policy ─────────────────────────────────────────────────────


@cli.group()
def policy() -> None:
    """Policy evaluation commands."""


@policy.command("check")
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False))
@_platform_option
@_property_option
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def policy_check(project_file: str, platform: str, properties: tuple[str, ...], as_json: bool) -> None:
    """Evaluate policy for a project without packaging it."""
    from packforge.core.config.loader import ConfigError, load_project
    from packforge.core.models.packaging import PackagingPlatform, PackagingRequest
    from packforge.core.policy.gate import PolicyGate

    try:
        project = load_project(Path(project_file))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    target = PackagingPlatform.parse(platform)
    merged = dict(project.platform(target).properties) if project.platform(target) else {}
    merged.update(_parse_properties(properties))
    request = PackagingRequest(
        project_id=project.id,
        platform=target,
        output_directory=str(Path.cwd()),
        properties=merged,
    )
    result = PolicyGate().evaluate(project, request)

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        sys.exit(0 if result.is_allowed else 1)

    if result.is_allowed:
        click.secho(f"✅ Policy allows {project.id} on {target.display_name}", fg="green", bold=True)
        return

    click.secho(f"❌ Policy blocks {project.id} on {target.display_name}:", fg="red", bold=True)
    _echo_issues(result.issues)
    click.echo()
    sys.exit(1)


# ── secrets ────────────────────────────────────────────────────


@cli.group()
def secrets() -> None:
    """Secure store commands."""


def _store(ctx: click.Context):
    from packforge.core.security.secure_store import FileSecureStore

    return FileSecureStore(_settings(ctx).secure_store_path)


@secrets.command("put")
@click.argument("entry_id")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--kind", default=None, help="Entry kind (e.g. mac.entitlements).")
@click.option("--expires", default=None, metavar="ISO", help="Expiry timestamp (ISO 8601).")
@click.pass_context
def secrets_put(ctx: click.Context, entry_id: str, file: str, kind: str | None, expires: str | None) -> None:
    """Store FILE encrypted under ENTRY_ID."""
    from packforge.core.models.secure import KIND_KEY, SecureStorePutOptions
    from packforge.core.security.secure_store import SecureStoreError

    expires_at = None
    if expires:
        try:
            expires_at = datetime.fromisoformat(expires)
        except ValueError:
            raise click.BadParameter(
                f"not an ISO 8601 timestamp: '{expires}'", param_hint="--expires"
            ) from None

    options = SecureStorePutOptions(
        expires_at=expires_at,
        metadata={KIND_KEY: kind} if kind else {},
    )
    try:
        entry = _store(ctx).put(entry_id, Path(file).read_bytes(), options)
    except (OSError, ValueError, SecureStoreError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    click.secho(f"✅ Stored '{entry.id}'", fg="green", bold=True)


@secrets.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def secrets_list(ctx: click.Context, as_json: bool) -> None:
    """List secure store entries (metadata only)."""
    entries = _store(ctx).list()

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No entries.")
        return

    for entry in entries:
        expiry = entry.expires_at.isoformat() if entry.expires_at else "never"
        kind = f" [{entry.kind}]" if entry.kind else ""
        click.echo(f"   • {entry.id}{kind}  expires: {expiry}")


@secrets.command("delete")
@click.argument("entry_id")
@click.pass_context
def secrets_delete(ctx: click.Context, entry_id: str) -> None:
    """Delete an entry."""
    if _store(ctx).delete(entry_id):
        click.secho(f"✅ Deleted '{entry_id}'", fg="green")
    else:
        click.secho(f"❌ No entry '{entry_id}'", fg="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
