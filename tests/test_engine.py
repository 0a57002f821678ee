"""
Tests for engine primitives — cancellation, execution scope, agent broker.
"""

import contextvars
import threading

import pytest

from packforge.core.engine.broker import (
    BuildAgentHandle,
    LocalBuildAgentBroker,
    StaticBuildAgentBroker,
)
from packforge.core.engine.cancellation import CancellationToken, OperationCancelled
from packforge.core.engine.scope import agent_depth, current_agent, push_agent
from packforge.core.models.packaging import PackagingPlatform


class TestCancellationToken:
    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel_raises(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            token.raise_if_cancelled()

    def test_wait_returns_true_when_cancelled(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(5) is True

    def test_wait_times_out(self):
        assert CancellationToken().wait(0.01) is False

    def test_zero_wait(self):
        assert CancellationToken().wait(0) is False


class TestExecutionScope:
    def test_push_and_restore(self):
        outer = BuildAgentHandle("outer")
        inner = BuildAgentHandle("inner")
        assert current_agent() is None

        with push_agent(outer):
            assert current_agent() is outer
            with push_agent(inner):
                assert current_agent() is inner
                assert agent_depth() == 2
            assert current_agent() is outer

        assert current_agent() is None
        assert agent_depth() == 0

    def test_close_is_idempotent(self):
        scope = push_agent(BuildAgentHandle("a"))
        scope.close()
        scope.close()
        assert current_agent() is None

    def test_copied_context_sees_agent_in_thread(self):
        handle = BuildAgentHandle("remote")
        seen = []
        with push_agent(handle):
            ctx = contextvars.copy_context()
            t = threading.Thread(target=ctx.run, args=(lambda: seen.append(current_agent()),))
            t.start()
            t.join()
        assert seen == [handle]

    def test_plain_thread_does_not_inherit(self):
        seen = []
        with push_agent(BuildAgentHandle("x")):
            t = threading.Thread(target=lambda: seen.append(current_agent()))
            t.start()
            t.join()
        assert seen == [None]


class TestBuildAgentHandle:
    def test_capability_case_insensitive(self):
        handle = BuildAgentHandle("a", {"mac.remote.sshHost": "mac.lan"})
        assert handle.capability("MAC.REMOTE.SSHHOST") == "mac.lan"

    def test_release_once(self):
        calls = []
        handle = BuildAgentHandle("a", on_release=lambda: calls.append(1))
        with handle:
            pass
        handle.release()
        assert handle.released
        assert calls == [1]


class TestBrokers:
    def test_local_broker(self):
        handle = LocalBuildAgentBroker().acquire(PackagingPlatform.LINUX)
        assert handle.name == "local"
        assert handle.capabilities == {}

    def test_local_broker_honors_cancellation(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            LocalBuildAgentBroker().acquire(PackagingPlatform.LINUX, token)

    def test_static_broker_tracks_active(self):
        broker = StaticBuildAgentBroker({
            PackagingPlatform.MACOS: ("mac-mini", {"mac.remote.sshHost": "mini.lan"}),
        })
        handle = broker.acquire(PackagingPlatform.MACOS)
        assert handle.name == "mac-mini"
        assert broker.active == 1
        handle.release()
        assert broker.active == 0

    def test_static_broker_falls_back_to_local(self):
        broker = StaticBuildAgentBroker({})
        assert broker.acquire(PackagingPlatform.WINDOWS).name == "local"
        assert broker.active == 0
