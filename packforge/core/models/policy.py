"""
Policy evaluation result — allowed, or blocked with every violation.
"""

from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel, ConfigDict

from packforge.core.models.packaging import PackagingIssue


class PolicyEvaluationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_allowed: bool = True
    issues: tuple[PackagingIssue, ...] = ()

    @property
    def blocked(self) -> bool:
        return not self.is_allowed

    @classmethod
    def allowed(cls) -> PolicyEvaluationResult:
        return cls(is_allowed=True)

    @classmethod
    def block(cls, issues: Iterable[PackagingIssue]) -> PolicyEvaluationResult:
        return cls(is_allowed=False, issues=tuple(issues))
