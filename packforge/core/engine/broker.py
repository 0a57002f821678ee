"""
Build agent broker — where a packaging run executes.

A broker hands out a ``BuildAgentHandle`` per run. The handle names the
agent and carries a capability map (``mac.remote.sshHost`` and friends)
that agent-aware process runners use to route commands. Handles are
scoped resources: the pipeline releases them when the run ends, whether
it succeeded, failed, raised, or was cancelled.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Mapping

from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import PackagingPlatform, lookup

logger = logging.getLogger(__name__)


class BuildAgentHandle:
    """An acquired build agent. Use as a context manager or call release()."""

    def __init__(
        self,
        name: str,
        capabilities: Mapping[str, str] | None = None,
        on_release: Callable[[], None] | None = None,
    ):
        self.name = name
        self.capabilities: dict[str, str] = dict(capabilities or {})
        self._on_release = on_release
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def capability(self, key: str) -> str | None:
        return lookup(self.capabilities, key)

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        if self._on_release is not None:
            self._on_release()
        logger.debug("Released build agent '%s'", self.name)

    def __enter__(self) -> BuildAgentHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"BuildAgentHandle(name={self.name!r}, capabilities={sorted(self.capabilities)})"


class BuildAgentBroker(ABC):
    @abstractmethod
    def acquire(
        self,
        platform: PackagingPlatform,
        cancel_token: CancellationToken | None = None,
    ) -> BuildAgentHandle:
        """Acquire an agent for ``platform``. Caller must release it."""


class LocalBuildAgentBroker(BuildAgentBroker):
    """Always hands out the local machine with no capabilities."""

    def acquire(self, platform, cancel_token=None) -> BuildAgentHandle:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return BuildAgentHandle("local")


class StaticBuildAgentBroker(BuildAgentBroker):
    """Hands out a fixed, configured agent per platform.

    Platforms without configuration get the local agent. Useful for
    pointing macOS runs at a remote Mac over SSH:

        StaticBuildAgentBroker({
            PackagingPlatform.MACOS: ("mac-mini", {"mac.remote.sshHost": "mac-mini.lan"}),
        })
    """

    def __init__(
        self,
        agents: Mapping[PackagingPlatform, tuple[str, Mapping[str, str]]],
    ):
        self._agents = dict(agents)
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        """Number of handles acquired and not yet released."""
        return self._active

    def acquire(self, platform, cancel_token=None) -> BuildAgentHandle:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        configured = self._agents.get(platform)
        if configured is None:
            return BuildAgentHandle("local")

        name, capabilities = configured
        with self._lock:
            self._active += 1
        logger.info("Acquired build agent '%s' for %s", name, platform.value)
        return BuildAgentHandle(name, capabilities, on_release=self._returned)

    def _returned(self) -> None:
        with self._lock:
            self._active -= 1
