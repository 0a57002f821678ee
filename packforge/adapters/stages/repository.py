"""
Linux repository publisher — apt/yum metadata for produced packages.

Targets come from request properties:

    linux.repo.targets                    "stable;internal"
    linux.repo.target.<id>.type           apt | yum
    linux.repo.target.<id>.destination    base URL recorded in metadata
    linux.repo.target.<id>.suite          apt suite (default "stable")
    linux.repo.target.<id>.components     apt components, comma-separated (default "main")
    linux.repo.target.<id>.credential     credential id, resolved from
                                          linux.repo.credential.<cid>.*

Files land under ``<output>/_Repo/<id>/apt`` or ``<output>/_Repo/<id>/yum``
together with a ``target.json`` describing the target.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import format_datetime
from pathlib import Path
from typing import Any

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

TARGET_TYPES = ("apt", "yum")


@dataclass(frozen=True)
class RepositoryCredential:
    id: str
    type: str = "generic"
    properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RepositoryTarget:
    id: str
    type: str
    destination: str | None = None
    suite: str | None = None
    components: tuple[str, ...] = ()
    credential_id: str | None = None


def resolve_credential(request: PackagingRequest, credential_id: str) -> RepositoryCredential | None:
    """Collect ``linux.repo.credential.<id>.*`` properties. None when absent."""
    prefix = f"linux.repo.credential.{credential_id}.".casefold()
    cred_type = "generic"
    props: dict[str, str] = {}
    found = False
    for key, value in request.properties.items():
        if not key.casefold().startswith(prefix):
            continue
        found = True
        suffix = key[len(prefix):]
        if suffix.casefold() == "type":
            cred_type = value
        else:
            props[suffix] = value
    return RepositoryCredential(credential_id, cred_type, props) if found else None


class LinuxRepositoryStage(SecondaryStage):
    name = "repository"

    def enabled(self, request: PackagingRequest) -> bool:
        return request.property_flag("linux.repo.enabled")

    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        issues: list[PackagingIssue] = []
        for target in self._targets(context.request, issues):
            cancel_token.raise_if_cancelled()

            credential = None
            if target.credential_id:
                credential = resolve_credential(context.request, target.credential_id)
                if credential is None:
                    issues.append(PackagingIssue.error(
                        "linux.repo.credential_missing",
                        f"Credential '{target.credential_id}' could not be resolved "
                        f"for repository target '{target.id}'.",
                    ))
                    continue

            try:
                if target.type == "apt":
                    issues.extend(self._publish_apt(context, result, target, credential))
                else:
                    issues.extend(self._publish_yum(context, result, target, credential))
            except OSError as e:
                logger.warning("Failed to publish repository target %s: %s", target.id, e)
                issues.append(PackagingIssue.warning(
                    "linux.repo.publish_failed",
                    f"Failed to publish repository target '{target.id}': {e}",
                ))
        return issues

    # ── Targets ────────────────────────────────────────────────

    def _targets(self, request: PackagingRequest, issues: list[PackagingIssue]) -> list[RepositoryTarget]:
        raw = request.prop("linux.repo.targets")
        if not raw or not raw.strip():
            issues.append(PackagingIssue.warning(
                "linux.repo.targets_missing",
                "Repository publishing enabled but no targets were specified "
                "(expected 'linux.repo.targets').",
            ))
            return []

        targets = []
        for ident in (s.strip() for s in raw.split(";")):
            if not ident:
                continue
            prefix = f"linux.repo.target.{ident}."
            type_value = (request.prop(prefix + "type") or "").strip()
            if not type_value:
                issues.append(PackagingIssue.warning(
                    "linux.repo.target_type_missing",
                    f"Repository target '{ident}' is missing required property '{prefix}type'.",
                ))
                continue
            if type_value.lower() not in TARGET_TYPES:
                issues.append(PackagingIssue.warning(
                    "linux.repo.target_type_invalid",
                    f"Repository target '{ident}' specified unsupported type '{type_value}'.",
                ))
                continue

            components = request.prop(prefix + "components") or ""
            targets.append(RepositoryTarget(
                id=ident,
                type=type_value.lower(),
                destination=request.prop(prefix + "destination") or None,
                suite=request.prop(prefix + "suite") or None,
                components=tuple(c.strip() for c in components.split(",") if c.strip()),
                credential_id=request.prop(prefix + "credential") or None,
            ))
        return targets

    # ── apt ────────────────────────────────────────────────────

    def _publish_apt(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        target: RepositoryTarget,
        credential: RepositoryCredential | None,
    ) -> list[PackagingIssue]:
        debs = _artifacts_of(result, "deb")
        if not debs:
            return [PackagingIssue.warning(
                "linux.repo.apt.no_artifacts",
                f"Repository target '{target.id}' expects Debian packages but none were produced.",
            )]

        issues: list[PackagingIssue] = []
        suite = target.suite or "stable"
        components = target.components or ("main",)
        root = context.output_directory / "_Repo" / target.id / "apt"
        root.mkdir(parents=True, exist_ok=True)

        grouped: dict[tuple[str, str], list[dict[str, Any]]] = {}
        for artifact in debs:
            entry = _package_entry(context, artifact, "amd64")
            if entry is None:
                issues.append(_artifact_missing("apt", artifact))
                continue
            for component in components:
                grouped.setdefault((component, entry["architecture"]), []).append(entry)

        for (component, arch), entries in grouped.items():
            packages_dir = root / "dists" / suite / component / f"binary-{arch}"
            packages_dir.mkdir(parents=True, exist_ok=True)
            stanzas = []
            for entry in entries:
                lines = [
                    f"Package: {entry['name']}",
                    f"Version: {entry['version']}",
                    f"Architecture: {entry['architecture']}",
                ]
                if entry["description"]:
                    lines.append(f"Description: {entry['description']}")
                lines += [
                    f"Filename: pool/{component}/{entry['filename']}",
                    f"Size: {entry['size']}",
                    f"SHA256: {entry['sha256']}",
                ]
                stanzas.append("\n".join(lines) + "\n")
            (packages_dir / "Packages").write_text("\n".join(stanzas), encoding="utf-8")

        architectures = sorted({arch for _, arch in grouped})
        release = root / "dists" / suite / "Release"
        release.parent.mkdir(parents=True, exist_ok=True)
        release.write_text(
            "\n".join([
                "Origin: packforge",
                f"Suite: {suite}",
                f"Components: {' '.join(components)}",
                f"Architectures: {' '.join(architectures)}",
                f"Date: {format_datetime(datetime.now(UTC), usegmt=True)}",
            ]) + "\n",
            encoding="utf-8",
        )

        _write_target(root, target, credential, {
            "type": "apt",
            "suite": suite,
            "components": list(components),
            "architectures": architectures,
        })
        logger.info("Published apt target %s (%d package(s))", target.id, len(debs))
        return issues

    # ── yum ────────────────────────────────────────────────────

    def _publish_yum(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        target: RepositoryTarget,
        credential: RepositoryCredential | None,
    ) -> list[PackagingIssue]:
        rpms = _artifacts_of(result, "rpm")
        if not rpms:
            return [PackagingIssue.warning(
                "linux.repo.yum.no_artifacts",
                f"Repository target '{target.id}' expects RPM packages but none were produced.",
            )]

        issues: list[PackagingIssue] = []
        root = context.output_directory / "_Repo" / target.id / "yum"
        root.mkdir(parents=True, exist_ok=True)

        packages = []
        for artifact in rpms:
            entry = _package_entry(context, artifact, "x86_64")
            if entry is None:
                issues.append(_artifact_missing("yum", artifact))
                continue
            entry.pop("description")
            packages.append(entry)

        repodata = {"generated": datetime.now(UTC).isoformat(), "packages": packages}
        (root / "repodata").mkdir(exist_ok=True)
        (root / "repodata" / "repodata.json").write_text(json.dumps(repodata, indent=2), encoding="utf-8")

        base_url = target.destination or root.resolve().as_uri()
        (root / f"{target.id}.repo").write_text(
            f"[{target.id}]\nname={target.id}\nbaseurl={base_url}\nenabled=1\ngpgcheck=0\n",
            encoding="utf-8",
        )

        _write_target(root, target, credential, {
            "type": "yum",
            "architectures": sorted({p["architecture"] for p in packages}),
        })
        logger.info("Published yum target %s (%d package(s))", target.id, len(packages))
        return issues


# ── Helpers ────────────────────────────────────────────────────


def _artifacts_of(result: PackagingResult, fmt: str) -> list[PackagingArtifact]:
    return [a for a in result.artifacts if a.format.lower() == fmt]


def _artifact_missing(kind: str, artifact: PackagingArtifact) -> PackagingIssue:
    return PackagingIssue.warning(
        f"linux.repo.{kind}.artifact_missing",
        f"Artifact '{artifact.path}' could not be found for repository publishing.",
    )


def _package_entry(
    context: PackageFormatContext,
    artifact: PackagingArtifact,
    default_arch: str,
) -> dict[str, Any] | None:
    path = Path(artifact.path)
    if not path.is_file():
        return None
    arch = artifact.meta("packageArchitecture") or context.project.meta("linux.architecture") or default_arch
    return {
        "name": artifact.meta("packageName") or path.stem,
        "version": artifact.meta("packageVersion") or context.project.version,
        "architecture": arch,
        "filename": path.name,
        "size": path.stat().st_size,
        "sha256": _sha256(path),
        "description": artifact.meta("packageDescription") or "",
    }


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _write_target(
    root: Path,
    target: RepositoryTarget,
    credential: RepositoryCredential | None,
    additional: dict[str, Any],
) -> None:
    metadata: dict[str, Any] = {
        "id": target.id,
        "type": target.type,
        "destination": target.destination,
        "additional": additional,
    }
    if credential is not None:
        # Property names only, never values.
        metadata["credential"] = {
            "id": credential.id,
            "type": credential.type,
            "properties": sorted(credential.properties),
        }
    (root / "target.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
