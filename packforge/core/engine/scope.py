"""
Execution scope — the stack of build agents active for the current run.

The pipeline pushes its agent handle before any provider runs; process
runners read ``current_agent()`` to decide where a command executes.
The stack lives in a ``ContextVar``, so each run (and each provider
thread started with a copy of the run's context) sees its own handle
and nothing leaks between runs.

    with push_agent(handle):
        ...  # current_agent() is handle here
    # previous agent (or None) restored
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from packforge.core.engine.broker import BuildAgentHandle

_agents: ContextVar[tuple[BuildAgentHandle, ...]] = ContextVar("packforge_agents", default=())


class AgentScope:
    """Token returned by ``push_agent``; restores the parent on exit."""

    def __init__(self, token: Token) -> None:
        self._token: Token | None = token

    def close(self) -> None:
        if self._token is not None:
            _agents.reset(self._token)
            self._token = None

    def __enter__(self) -> AgentScope:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def push_agent(handle: BuildAgentHandle) -> AgentScope:
    """Make ``handle`` the current agent until the returned scope closes."""
    return AgentScope(_agents.set(_agents.get() + (handle,)))


def current_agent() -> BuildAgentHandle | None:
    stack = _agents.get()
    return stack[-1] if stack else None


def agent_depth() -> int:
    return len(_agents.get())
