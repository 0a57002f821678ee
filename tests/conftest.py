"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from packforge.core.models.packaging import (
    PackagingPlatform,
    PackagingProject,
    PackagingRequest,
    PlatformConfiguration,
)
from packforge.core.observability.telemetry import RecordingTelemetry
from packforge.core.persistence.project_store import InMemoryProjectStore


def make_project(
    project_id: str = "sample",
    metadata: dict | None = None,
    platforms: dict | None = None,
) -> PackagingProject:
    """Build a project with an (empty) configuration for every platform."""
    if platforms is None:
        platforms = {p: PlatformConfiguration() for p in PackagingPlatform}
    return PackagingProject(
        id=project_id,
        name="Sample App",
        version="1.2.3",
        metadata=metadata or {},
        platforms=platforms,
    )


def make_request(
    output: Path,
    platform: PackagingPlatform = PackagingPlatform.WINDOWS,
    formats: tuple[str, ...] = ("mock",),
    properties: dict | None = None,
    project_id: str = "sample",
) -> PackagingRequest:
    return PackagingRequest(
        project_id=project_id,
        platform=platform,
        formats=formats,
        output_directory=str(output),
        properties=properties or {},
    )


@pytest.fixture
def project() -> PackagingProject:
    return make_project()


@pytest.fixture
def store(project: PackagingProject) -> InMemoryProjectStore:
    return InMemoryProjectStore([project])


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    """Return a (not yet created) output directory."""
    return tmp_path / "out"
