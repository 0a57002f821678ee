"""
Packaging models — projects, requests, issues, artifacts, results.

These are the values that flow through a packaging run. A request names
a project and a platform; the pipeline loads the project, runs format
providers, and returns a PackagingResult. Failures never travel as
exceptions: every problem becomes a PackagingIssue inside the result.

All models are frozen. "Changing" a project or result means building a
new instance (``with_metadata``, ``merge``, ...).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, computed_field

_TRUE_VALUES = ("true", "1")


def lookup(mapping: Mapping[str, str], key: str) -> str | None:
    """Case-insensitive lookup in a string-keyed map.

    An exact match wins; otherwise the first key that matches ignoring
    case is used.
    """
    if key in mapping:
        return mapping[key]
    folded = key.casefold()
    for k, v in mapping.items():
        if k.casefold() == folded:
            return v
    return None


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so expiry comparisons never mix kinds."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_true(value: str | None) -> bool:
    """Whether a property value counts as an enabled flag."""
    return value is not None and value.strip().lower() in _TRUE_VALUES


class PackagingPlatform(StrEnum):
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"

    @classmethod
    def parse(cls, value: str | PackagingPlatform) -> PackagingPlatform:
        """Parse a platform name ignoring case (``mac`` is accepted)."""
        if isinstance(value, PackagingPlatform):
            return value
        name = value.strip().lower()
        if name in ("mac", "osx"):
            return cls.MACOS
        return cls(name)

    @property
    def display_name(self) -> str:
        return {"windows": "Windows", "macos": "MacOS", "linux": "Linux"}[self.value]


class IssueSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class PackagingIssue(BaseModel):
    """A single finding produced by any stage of a run."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity == IssueSeverity.ERROR

    @classmethod
    def info(cls, code: str, message: str) -> PackagingIssue:
        return cls(code=code, message=message, severity=IssueSeverity.INFO)

    @classmethod
    def warning(cls, code: str, message: str) -> PackagingIssue:
        return cls(code=code, message=message, severity=IssueSeverity.WARNING)

    @classmethod
    def error(cls, code: str, message: str) -> PackagingIssue:
        return cls(code=code, message=message, severity=IssueSeverity.ERROR)


class PackagingArtifact(BaseModel):
    """A file produced by a format provider."""

    model_config = ConfigDict(frozen=True)

    format: str
    path: str
    metadata: dict[str, str] = Field(default_factory=dict)

    def meta(self, key: str) -> str | None:
        return lookup(self.metadata, key)


class PackagingResult(BaseModel):
    """Outcome of a packaging run or of a single stage.

    ``success`` is derived from the issues on every access: a result is
    successful exactly when it carries no error-severity issue.
    """

    model_config = ConfigDict(frozen=True)

    artifacts: tuple[PackagingArtifact, ...] = ()
    issues: tuple[PackagingIssue, ...] = ()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return not any(i.is_error for i in self.issues)

    @property
    def blocking_issues(self) -> int:
        return sum(1 for i in self.issues if i.is_error)

    @classmethod
    def create(
        cls,
        artifacts: Iterable[PackagingArtifact] = (),
        issues: Iterable[PackagingIssue] = (),
    ) -> PackagingResult:
        return cls(artifacts=tuple(artifacts), issues=tuple(issues))

    @classmethod
    def failed(cls, *issues: PackagingIssue) -> PackagingResult:
        """Create a result carrying only the given issues."""
        return cls(issues=tuple(issues))

    def with_issues(self, issues: Iterable[PackagingIssue]) -> PackagingResult:
        added = tuple(issues)
        if not added:
            return self
        return PackagingResult(artifacts=self.artifacts, issues=self.issues + added)

    def with_artifacts(self, artifacts: Iterable[PackagingArtifact]) -> PackagingResult:
        added = tuple(artifacts)
        if not added:
            return self
        return PackagingResult(artifacts=self.artifacts + added, issues=self.issues)

    def merge(self, other: PackagingResult) -> PackagingResult:
        return PackagingResult(
            artifacts=self.artifacts + other.artifacts,
            issues=self.issues + other.issues,
        )

    def codes(self) -> list[str]:
        return [i.code for i in self.issues]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class PlatformConfiguration(BaseModel):
    """Per-platform formats and properties of a project."""

    model_config = ConfigDict(frozen=True)

    formats: tuple[str, ...] = ()
    properties: dict[str, str] = Field(default_factory=dict)

    def prop(self, key: str) -> str | None:
        return lookup(self.properties, key)


class PackagingProject(BaseModel):
    """A packaging project definition.

    Metadata keys are looked up case-insensitively through ``meta``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    version: str = "1.0.0"
    metadata: dict[str, str] = Field(default_factory=dict)
    platforms: dict[PackagingPlatform, PlatformConfiguration] = Field(default_factory=dict)

    def meta(self, key: str) -> str | None:
        return lookup(self.metadata, key)

    def platform(self, platform: PackagingPlatform) -> PlatformConfiguration | None:
        return self.platforms.get(platform)

    def with_metadata(self, updates: Mapping[str, str]) -> PackagingProject:
        return self.model_copy(update={"metadata": {**self.metadata, **updates}})

    def with_platform(
        self, platform: PackagingPlatform, config: PlatformConfiguration
    ) -> PackagingProject:
        return self.model_copy(update={"platforms": {**self.platforms, platform: config}})


class PackagingRequest(BaseModel):
    """A request to package one project for one platform."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    platform: PackagingPlatform
    formats: tuple[str, ...] = ()
    configuration: str = "Release"
    output_directory: str
    properties: dict[str, str] = Field(default_factory=dict)

    def prop(self, key: str) -> str | None:
        return lookup(self.properties, key)

    def property_flag(self, key: str) -> bool:
        return is_true(self.prop(key))

    def with_properties(self, updates: Mapping[str, str]) -> PackagingRequest:
        return self.model_copy(update={"properties": {**self.properties, **updates}})
