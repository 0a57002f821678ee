"""
Mock format provider — test double for pipelines.

Records every context it is called with and returns a configurable
result: one artifact by default, or custom issues, or an exception.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from packforge.adapters.base import FormatProvider, FormatResult, PackageFormatContext
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.engine.scope import current_agent
from packforge.core.models.packaging import PackagingArtifact, PackagingIssue


class MockFormatProvider(FormatProvider):
    """Universal mock provider for testing.

    By default produces ``<output>/<project id>.<format>`` as an artifact
    without touching the filesystem.
    """

    def __init__(
        self,
        format_name: str = "mock",
        issues: list[PackagingIssue] | None = None,
        raises: Exception | None = None,
        produce_artifact: bool = True,
        delay: float = 0.0,
    ):
        self._format = format_name
        self._issues = list(issues or [])
        self._raises = raises
        self._produce_artifact = produce_artifact
        self._delay = delay
        self._call_log: list[PackageFormatContext] = []
        self._agents_seen: list[str | None] = []
        self._lock = threading.Lock()

    @property
    def format(self) -> str:
        return self._format

    @property
    def call_log(self) -> list[PackageFormatContext]:
        """All contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times package has been called."""
        return len(self._call_log)

    @property
    def agents_seen(self) -> list[str | None]:
        """Name of the active build agent at each call."""
        return self._agents_seen

    def package(self, context: PackageFormatContext, cancel_token: CancellationToken) -> FormatResult:
        agent = current_agent()
        with self._lock:
            self._call_log.append(context)
            self._agents_seen.append(agent.name if agent else None)

        if self._delay:
            time.sleep(self._delay)
        if self._raises is not None:
            raise self._raises

        artifacts = []
        if self._produce_artifact:
            path = Path(context.request.output_directory) / f"{context.project.id}.{self._format}"
            artifacts.append(
                PackagingArtifact(format=self._format, path=str(path), metadata={"mock": "true"})
            )
        return FormatResult.create(artifacts=artifacts, issues=self._issues)
