"""
Secondary stage base — post-processing steps after format providers.

Stages run strictly after every provider has finished, one at a time,
in the pipeline's fixed order. Each stage sees the cumulative result
(provider output plus issues from earlier stages) and returns only the
issues it adds. Stages never add artifacts; side files go under the
output directory's ``_Audit``, ``_Repo`` and ``_Sbom`` folders.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from packforge.adapters.base import PackageFormatContext
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import PackagingIssue, PackagingRequest, PackagingResult


class SecondaryStage(ABC):
    """A request-gated post-processing step."""

    name: str = ""

    @abstractmethod
    def enabled(self, request: PackagingRequest) -> bool:
        """Whether the request turns this stage on."""

    @abstractmethod
    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        """Process the current result and return any new issues."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
