"""
Format provider base — the contract between pipelines and packaging tools.

A format provider produces one kind of artifact (``msi``, ``pkg``,
``deb``, ``notarize``...). Pipelines only talk to providers through this
interface and never call packaging tools directly.

Providers report problems as issues in their FormatResult. A provider
that raises anyway is caught by the pipeline and turned into an error
issue tagged with its format, without affecting sibling providers.

To create a new provider:
    1. Subclass FormatProvider
    2. Implement ``format`` and ``package``
    3. Register it with the pipeline's ProviderRegistry
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import (
    PackagingArtifact,
    PackagingIssue,
    PackagingProject,
    PackagingRequest,
    PlatformConfiguration,
)
from packforge.core.models.signing import MacSigningMaterialResult


class PackageFormatContext(BaseModel):
    """Everything a provider or secondary stage sees of the current run."""

    model_config = ConfigDict(frozen=True)

    project: PackagingProject
    request: PackagingRequest
    working_directory: str
    signing: MacSigningMaterialResult | None = None

    @property
    def output_directory(self) -> Path:
        return Path(self.request.output_directory)

    @property
    def platform_config(self) -> PlatformConfiguration | None:
        return self.project.platform(self.request.platform)

    def setting(self, key: str) -> str | None:
        """Resolve a setting: request properties, project metadata, platform properties."""
        value = self.request.prop(key)
        if value is None:
            value = self.project.meta(key)
        if value is None and self.platform_config is not None:
            value = self.platform_config.prop(key)
        return value


class FormatResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    artifacts: tuple[PackagingArtifact, ...] = ()
    issues: tuple[PackagingIssue, ...] = ()

    @classmethod
    def create(
        cls,
        artifacts: Iterable[PackagingArtifact] = (),
        issues: Iterable[PackagingIssue] = (),
    ) -> FormatResult:
        return cls(artifacts=tuple(artifacts), issues=tuple(issues))


class FormatProvider(ABC):
    """Abstract base class for all format providers."""

    @property
    @abstractmethod
    def format(self) -> str:
        """Format identifier matched against requested formats (e.g. 'msi')."""

    @abstractmethod
    def package(
        self,
        context: PackageFormatContext,
        cancel_token: CancellationToken,
    ) -> FormatResult:
        """Produce artifacts for the context.

        Should report failures as issues. Raising is tolerated but
        costs the provider a generic ``exception`` issue.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} format={self.format!r}>"
