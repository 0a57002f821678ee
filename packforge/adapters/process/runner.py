"""
Process runner — how packaging tools are executed.

Providers never call ``subprocess`` directly. They build a
ProcessRequest and hand it to a ProcessRunner, which decides where and
how the command runs. The local runner executes on this machine; the
agent-aware runner (agent_aware.py) may redirect to a remote host.

The local runner waits on the child in short slices so it can notice
cancellation; a cancelled wait kills the child and raises
OperationCancelled.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from packforge.core.engine.cancellation import CancellationToken, OperationCancelled

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while a child runs
_POLL_SLICE = 0.2

# Exit code reported when the executable could not be started
EXIT_NOT_STARTED = 127


class ProcessRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_name: str
    arguments: tuple[str, ...] = ()
    working_directory: str | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = None

    @classmethod
    def of(
        cls,
        file_name: str,
        arguments: Sequence[str] = (),
        working_directory: str | None = None,
        environment: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> ProcessRequest:
        return cls(
            file_name=file_name,
            arguments=tuple(arguments),
            working_directory=working_directory,
            environment=dict(environment or {}),
            timeout=timeout,
        )

    @property
    def command_line(self) -> str:
        return " ".join((self.file_name, *self.arguments))


class ProcessResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ProcessRunner(ABC):
    @abstractmethod
    def execute(
        self,
        request: ProcessRequest,
        cancel_token: CancellationToken | None = None,
    ) -> ProcessResult:
        """Run the command and return its exit code and output.

        Raises:
            OperationCancelled: if the token fires while the command runs.
        """


class LocalProcessRunner(ProcessRunner):
    """Runs commands on the local machine."""

    def execute(self, request, cancel_token=None) -> ProcessResult:
        token = cancel_token or CancellationToken.none()
        token.raise_if_cancelled()

        env = None
        if request.environment:
            env = {**os.environ, **request.environment}

        logger.debug("Executing: %s (cwd=%s)", request.command_line, request.working_directory)
        try:
            proc = subprocess.Popen(
                [request.file_name, *request.arguments],
                cwd=request.working_directory,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            logger.warning("Could not start %s: %s", request.file_name, e)
            return ProcessResult(exit_code=EXIT_NOT_STARTED, stderr=str(e))

        deadline = time.monotonic() + request.timeout if request.timeout else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_SLICE)
                break
            except subprocess.TimeoutExpired:
                if token.cancelled:
                    _kill(proc)
                    raise OperationCancelled(f"{request.file_name} was cancelled")
                if deadline is not None and time.monotonic() >= deadline:
                    _kill(proc)
                    return ProcessResult(
                        exit_code=-1,
                        stderr=f"{request.file_name} timed out after {request.timeout}s",
                    )

        logger.debug("%s exited with %d", request.file_name, proc.returncode)
        return ProcessResult(exit_code=proc.returncode, stdout=stdout or "", stderr=stderr or "")


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s did not exit after kill", proc.pid)
