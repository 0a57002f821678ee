"""
SSH remote client — run tools on a remote Mac through OpenSSH.

Activated by agent capabilities:

    mac.remote.sshHost       required
    mac.remote.sshUser       optional, prefixed as user@host
    mac.remote.sshIdentity   optional, passed as -i
    mac.remote.sshPort       optional, passed as -p

The remote command line is assembled as

    cd '<workdir>' && KEY='value' '<tool>' '<arg>' ...

with values quoted by ``shlex.quote``, then handed to ``ssh`` through a local
process runner (so cancellation and timeouts behave the same).
"""

from __future__ import annotations

import shlex

from packforge.adapters.process.agent_aware import RemoteCommandClient
from packforge.adapters.process.runner import (
    LocalProcessRunner,
    ProcessRequest,
    ProcessResult,
    ProcessRunner,
)
from packforge.core.engine.broker import BuildAgentHandle

SSH_HOST = "mac.remote.sshHost"
SSH_USER = "mac.remote.sshUser"
SSH_IDENTITY = "mac.remote.sshIdentity"
SSH_PORT = "mac.remote.sshPort"


class SshRemoteCommandClient(RemoteCommandClient):
    def __init__(self, runner: ProcessRunner | None = None, ssh_executable: str = "ssh"):
        self._runner = runner or LocalProcessRunner()
        self._ssh = ssh_executable

    def can_execute(self, agent: BuildAgentHandle) -> bool:
        host = agent.capability(SSH_HOST)
        return bool(host and host.strip())

    def execute(self, agent, request, cancel_token=None) -> ProcessResult:
        return self._runner.execute(self.build_request(agent, request), cancel_token)

    def build_request(self, agent: BuildAgentHandle, request: ProcessRequest) -> ProcessRequest:
        """Translate a local request into the ``ssh`` invocation for ``agent``."""
        host = (agent.capability(SSH_HOST) or "").strip()
        if not host:
            raise ValueError(f"Agent '{agent.name}' is missing the '{SSH_HOST}' capability.")

        user = (agent.capability(SSH_USER) or "").strip()
        endpoint = f"{user}@{host}" if user else host

        args: list[str] = []
        identity = (agent.capability(SSH_IDENTITY) or "").strip()
        if identity:
            args += ["-i", identity]
        port = (agent.capability(SSH_PORT) or "").strip()
        if port:
            args += ["-p", port]
        args += [endpoint, build_remote_command(request)]

        return ProcessRequest.of(self._ssh, args, timeout=request.timeout)


def build_remote_command(request: ProcessRequest) -> str:
    parts: list[str] = []
    if request.working_directory:
        parts.append(f"cd {shlex.quote(request.working_directory)} &&")
    for key, value in request.environment.items():
        parts.append(f"{key}={shlex.quote(value)}")
    parts.append(shlex.quote(request.file_name))
    parts.extend(shlex.quote(a) for a in request.arguments)
    return " ".join(parts)
