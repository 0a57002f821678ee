"""
Agent-aware process runner — route commands to the active build agent.

Reads the top of the execution scope (``current_agent()``):

    no agent                               → local runner
    agent claimed by a remote client       → that client
    agent no remote client can handle      → local runner

Providers use this runner unchanged whether the pipeline acquired the
local machine or a brokered remote host.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from packforge.adapters.process.runner import (
    LocalProcessRunner,
    ProcessRequest,
    ProcessResult,
    ProcessRunner,
)
from packforge.core.engine.broker import BuildAgentHandle
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.engine.scope import current_agent
from packforge.core.observability.telemetry import NullTelemetry, TelemetryChannel

logger = logging.getLogger(__name__)


class RemoteCommandClient(ABC):
    """Executes commands on a remote build agent."""

    @abstractmethod
    def can_execute(self, agent: BuildAgentHandle) -> bool:
        """Whether this client understands the agent's capabilities."""

    @abstractmethod
    def execute(
        self,
        agent: BuildAgentHandle,
        request: ProcessRequest,
        cancel_token: CancellationToken | None = None,
    ) -> ProcessResult:
        ...


class AgentAwareProcessRunner(ProcessRunner):
    def __init__(
        self,
        remote_clients: Iterable[RemoteCommandClient] = (),
        local_runner: ProcessRunner | None = None,
        telemetry: TelemetryChannel | None = None,
        event_prefix: str = "mac",
    ):
        self._remote_clients = list(remote_clients)
        self._local = local_runner or LocalProcessRunner()
        self._telemetry = telemetry or NullTelemetry()
        self._event_prefix = event_prefix

    def execute(self, request, cancel_token=None) -> ProcessResult:
        agent = current_agent()
        if agent is None:
            return self._local.execute(request, cancel_token)

        for client in self._remote_clients:
            if client.can_execute(agent):
                logger.debug("Dispatching %s to agent '%s'", request.file_name, agent.name)
                self._telemetry.track_event(
                    f"{self._event_prefix}.remote.execute",
                    {"agent": agent.name, "tool": request.file_name},
                )
                return client.execute(agent, request, cancel_token)

        return self._local.execute(request, cancel_token)
