"""Process execution — local, agent-aware, and SSH runners."""

from packforge.adapters.process.agent_aware import AgentAwareProcessRunner, RemoteCommandClient
from packforge.adapters.process.runner import (
    LocalProcessRunner,
    ProcessRequest,
    ProcessResult,
    ProcessRunner,
)
from packforge.adapters.process.ssh import SshRemoteCommandClient

__all__ = [
    "AgentAwareProcessRunner",
    "LocalProcessRunner",
    "ProcessRequest",
    "ProcessResult",
    "ProcessRunner",
    "RemoteCommandClient",
    "SshRemoteCommandClient",
]
