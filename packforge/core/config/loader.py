"""
Project loader — reads packaging project files into domain models.

Project files are YAML (``packaging.yml``) or JSON (``packaging.json``)
in the camelCase document form:

    id: sample-app
    name: Sample App
    version: 1.2.0
    metadata:
      policy.signing.required: true
    platforms:
      linux:
        formats: [deb, rpm]
        properties:
          linux.sandbox.enabled: true

YAML scalars (booleans, numbers) are normalized to strings, since
metadata and properties are string maps.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from packforge.core.models.packaging import (
    PackagingPlatform,
    PackagingProject,
    PlatformConfiguration,
)

logger = logging.getLogger(__name__)

PROJECT_FILE_NAMES = ("packaging.yml", "packaging.yaml", "packaging.json")


class ConfigError(Exception):
    """Raised when a project or settings file is invalid or missing."""


def find_project_file(start_dir: Path | None = None) -> Path | None:
    """Search for a project file starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        for name in PROJECT_FILE_NAMES:
            candidate = current / name
            if candidate.is_file():
                return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def read_document(path: Path) -> dict[str, Any]:
    """Read a YAML or JSON mapping from disk.

    Raises:
        ConfigError: If the file is missing, unreadable, or not a mapping.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid document in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def load_project(path: Path | None = None) -> PackagingProject:
    """Load and validate a packaging project file.

    Args:
        path: Explicit path to the project file. If None, searches upward.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_project_file()
    if path is None:
        raise ConfigError(
            f"No project file found ({', '.join(PROJECT_FILE_NAMES)}). Specify one explicitly."
        )

    logger.debug("Loading project from %s", path)
    project = project_from_dict(read_document(path), source=str(path))
    logger.info("Loaded project '%s' with %d platform(s)", project.id, len(project.platforms))
    return project


def save_project(project: PackagingProject, path: Path) -> None:
    """Write a project document; YAML or JSON chosen by file suffix."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = project_to_dict(project)
    if path.suffix.lower() == ".json":
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    else:
        content = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    path.write_text(content, encoding="utf-8")


# ── Document mapping ───────────────────────────────────────────


def project_from_dict(data: dict[str, Any], source: str = "<memory>") -> PackagingProject:
    if not str(data.get("id") or "").strip():
        raise ConfigError(f"Project in {source} has no 'id'")

    raw_platforms = data.get("platforms") or {}
    if not isinstance(raw_platforms, dict):
        raise ConfigError(f"'platforms' in {source} must be a mapping of platform name to settings")

    platforms: dict[PackagingPlatform, PlatformConfiguration] = {}
    for name, doc in raw_platforms.items():
        try:
            platform = PackagingPlatform.parse(str(name))
        except ValueError as e:
            raise ConfigError(f"Unknown platform '{name}' in {source}") from e
        doc = doc or {}
        if not isinstance(doc, dict):
            raise ConfigError(f"Platform '{name}' in {source} must be a mapping")
        platforms[platform] = PlatformConfiguration(
            formats=_format_list(doc.get("formats"), name, source),
            properties=_string_map(doc.get("properties")),
        )

    try:
        return PackagingProject(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or data.get("id") or ""),
            version=str(data.get("version") or "1.0.0"),
            metadata=_string_map(data.get("metadata")),
            platforms=platforms,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid project configuration in {source}: {e}") from e


def project_to_dict(project: PackagingProject) -> dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "version": project.version,
        "metadata": dict(project.metadata),
        "platforms": {
            platform.value: {
                "formats": list(config.formats),
                "properties": dict(config.properties),
            }
            for platform, config in project.platforms.items()
        },
    }


def _format_list(raw: Any, platform: str, source: str) -> tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if not isinstance(raw, (list, tuple)):
        raise ConfigError(f"'formats' for platform '{platform}' in {source} must be a list")
    return tuple(str(f) for f in raw)


def _string_map(raw: Any) -> dict[str, str]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a mapping of strings, got {type(raw).__name__}")
    return {str(k): _scalar(v) for k, v in raw.items()}


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    return str(value)
