"""Secondary stages — sandbox, repository, security, container, verification, and audit capture."""

from packforge.adapters.stages.audit import MacAuditStage
from packforge.adapters.stages.base import SecondaryStage
from packforge.adapters.stages.container import LinuxContainerStage
from packforge.adapters.stages.repository import LinuxRepositoryStage
from packforge.adapters.stages.sandbox import LinuxSandboxStage
from packforge.adapters.stages.security import SecurityStage
from packforge.adapters.stages.verification import MacVerificationStage

__all__ = [
    "LinuxContainerStage",
    "LinuxRepositoryStage",
    "LinuxSandboxStage",
    "MacAuditStage",
    "MacVerificationStage",
    "SecondaryStage",
    "SecurityStage",
]
