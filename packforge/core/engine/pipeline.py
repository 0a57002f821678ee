"""
Pipeline executor — the per-platform packaging orchestration loop.

Flow:
    platform check → load project → policy gate → acquire agent
      → push agent scope → prepare (platform hook) → providers (concurrent)
      → secondary stages (sequential, fixed order) → telemetry → result

Guarantees:
    - Nothing raises across ``execute``: every failure is an issue.
    - A policy block returns before any provider is invoked.
    - One provider's exception never aborts its siblings.
    - Provider output is merged in registration order, whatever order
      the threads finish in.
    - Stages see the cumulative result of everything before them.
    - The agent handle is released and the scope popped on every path,
      including cancellation.
    - ``pipeline.completed`` and one ``pipeline.artifact`` per artifact
      are emitted for every run that got past the platform check.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import tempfile
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator

from packforge.adapters.base import FormatProvider, PackageFormatContext
from packforge.adapters.registry import ProviderRegistry
from packforge.adapters.stages.base import SecondaryStage
from packforge.core.engine.broker import BuildAgentBroker, LocalBuildAgentBroker
from packforge.core.engine.cancellation import CancellationToken, OperationCancelled
from packforge.core.engine.scope import push_agent
from packforge.core.models.packaging import (
    PackagingArtifact,
    PackagingIssue,
    PackagingPlatform,
    PackagingProject,
    PackagingRequest,
    PackagingResult,
)
from packforge.core.observability.telemetry import NullTelemetry, TelemetryChannel
from packforge.core.persistence.project_store import ProjectStore
from packforge.core.policy.gate import PolicyGate
from packforge.core.security.identity.service import IdentityContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class _ProviderCollector:
    """Thread-safe slots for provider output, merged in slot order."""

    def __init__(self, size: int):
        self._slots: list[tuple[tuple[PackagingArtifact, ...], tuple[PackagingIssue, ...]]] = [
            ((), ()) for _ in range(size)
        ]
        self._lock = threading.Lock()

    def put(self, index: int, artifacts=(), issues=()) -> None:
        with self._lock:
            self._slots[index] = (tuple(artifacts), tuple(issues))

    def result(self) -> PackagingResult:
        with self._lock:
            artifacts = [a for slot_artifacts, _ in self._slots for a in slot_artifacts]
            issues = [i for _, slot_issues in self._slots for i in slot_issues]
        return PackagingResult.create(artifacts, issues)


class PackagingPipeline:
    """Base pipeline. Subclasses fix the platform, prefix, and stage order."""

    platform: PackagingPlatform
    issue_prefix: str = ""
    uses_temp_workdir: bool = True
    stage_order: tuple[str, ...] = ()

    def __init__(
        self,
        project_store: ProjectStore,
        providers: ProviderRegistry | Iterable[FormatProvider] = (),
        stages: Iterable[SecondaryStage] = (),
        policy_gate: PolicyGate | None = None,
        broker: BuildAgentBroker | None = None,
        telemetry: TelemetryChannel | None = None,
        identity_context: IdentityContext | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._store = project_store
        self._providers = (
            providers if isinstance(providers, ProviderRegistry) else ProviderRegistry(providers)
        )
        self._stages = self._order_stages(stages)
        self._policy = policy_gate or PolicyGate()
        self._broker = broker or LocalBuildAgentBroker()
        self._telemetry = telemetry or NullTelemetry()
        self._identity = identity_context or IdentityContext()
        self._max_workers = max(1, max_workers)

    @property
    def providers(self) -> ProviderRegistry:
        return self._providers

    @property
    def stages(self) -> list[SecondaryStage]:
        return list(self._stages)

    def _order_stages(self, stages: Iterable[SecondaryStage]) -> list[SecondaryStage]:
        rank = {name: i for i, name in enumerate(self.stage_order)}
        return sorted(stages, key=lambda s: rank.get(s.name, len(rank)))

    # ── Entry point ────────────────────────────────────────────

    def execute(
        self,
        request: PackagingRequest,
        cancel_token: CancellationToken | None = None,
    ) -> PackagingResult:
        """Run the pipeline for one request. Never raises."""
        token = cancel_token or CancellationToken.none()
        prefix = self.issue_prefix

        if request.platform != self.platform:
            return PackagingResult.failed(PackagingIssue.error(
                f"{prefix}.platform_mismatch",
                f"{self.platform.display_name} pipeline cannot handle "
                f"{request.platform.display_name} requests.",
            ))

        job_id = uuid.uuid4().hex
        started = time.monotonic()

        try:
            project = self._store.try_load(request.project_id)
        except Exception as e:
            logger.error("Project store failed loading '%s': %s", request.project_id, e)
            project = None
        if project is None:
            result = PackagingResult.failed(PackagingIssue.error(
                f"{prefix}.project_not_found",
                f"Project '{request.project_id}' could not be found.",
            ))
            return self._complete(job_id, None, request, result, started)

        policy = self._policy.evaluate(project, request, self._identity.identity)
        if policy.blocked:
            result = PackagingResult.failed(*policy.issues)
            return self._complete(job_id, project, request, result, started)

        try:
            agent = self._broker.acquire(self.platform, token)
        except OperationCancelled:
            return self._complete(
                job_id, project, request, PackagingResult.failed(self._cancelled_issue()), started
            )
        except Exception as e:
            logger.error("Agent acquisition failed for %s: %s", self.platform.value, e)
            result = PackagingResult.failed(PackagingIssue.error(
                f"{prefix}.agent_unavailable",
                f"No build agent could be acquired for {self.platform.display_name}: {e}",
            ))
            return self._complete(job_id, project, request, result, started)

        try:
            with agent, push_agent(agent), self._working_directory(request) as workdir:
                logger.info(
                    "Packaging %s for %s on agent '%s' (job %s)",
                    project.id, self.platform.value, agent.name, job_id,
                )
                result = self._run(project, request, workdir, token)
        except OperationCancelled:
            result = PackagingResult.failed(self._cancelled_issue())
        except Exception as e:
            # Setup/teardown failures (working directory, agent release)
            logger.error("Pipeline %s failed: %s", job_id, e)
            result = PackagingResult.failed(PackagingIssue.error(
                f"{prefix}.pipeline_failed", f"Pipeline failed unexpectedly: {e}"
            ))

        return self._complete(job_id, project, request, result, started)

    # ── Steps ──────────────────────────────────────────────────

    def _run(
        self,
        project: PackagingProject,
        request: PackagingRequest,
        workdir: Path,
        token: CancellationToken,
    ) -> PackagingResult:
        prefix = self.issue_prefix
        context = PackageFormatContext(
            project=project, request=request, working_directory=str(workdir)
        )

        requested = request.formats
        if not requested:
            platform_config = project.platform(self.platform)
            requested = platform_config.formats if platform_config else ()

        providers = self._providers.resolve(requested)
        if not providers:
            return PackagingResult.failed(PackagingIssue.error(
                f"{prefix}.no_providers",
                f"No format providers matched the requested formats: "
                f"{', '.join(requested) or '(none)'}.",
            ))

        if token.cancelled:
            return PackagingResult.failed(self._cancelled_issue())

        context, prepare_issues = self.prepare(context, token)
        result = PackagingResult.create(issues=prepare_issues)

        result = result.merge(self._invoke_providers(providers, context, token))
        if token.cancelled:
            return result.with_issues([self._cancelled_issue()])

        return self._run_stages(context, result, token)

    def prepare(
        self,
        context: PackageFormatContext,
        token: CancellationToken,
    ) -> tuple[PackageFormatContext, list[PackagingIssue]]:
        """Platform hook run before providers. Default: nothing."""
        return context, []

    def _invoke_providers(
        self,
        providers: list[FormatProvider],
        context: PackageFormatContext,
        token: CancellationToken,
    ) -> PackagingResult:
        collector = _ProviderCollector(len(providers))
        workers = min(self._max_workers, len(providers))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{self.issue_prefix}-provider") as pool:
            futures = [
                # Each provider runs in a copy of this context so it sees the agent scope
                pool.submit(
                    contextvars.copy_context().run,
                    self._invoke_provider, index, provider, context, token, collector,
                )
                for index, provider in enumerate(providers)
            ]
            for future in as_completed(futures):
                future.result()

        return collector.result()

    def _invoke_provider(
        self,
        index: int,
        provider: FormatProvider,
        context: PackageFormatContext,
        token: CancellationToken,
        collector: _ProviderCollector,
    ) -> None:
        fmt = provider.format
        prefix = self.issue_prefix
        self._telemetry.track_event(f"{prefix}.provider.start", {"format": fmt})
        started = time.monotonic()

        try:
            output = provider.package(context, token)
        except OperationCancelled:
            logger.info("Provider %s cancelled", fmt)
            self._telemetry.track_dependency(
                fmt, _since(started), False, {"cancelled": "true"}
            )
            return
        except Exception as e:
            fingerprint = f"{type(e).__module__}.{type(e).__qualname__}"
            logger.warning("Provider %s raised %s: %s", fmt, fingerprint, e)
            collector.put(index, issues=[PackagingIssue.error(
                f"{prefix}.{fmt}.exception",
                f"{fmt} provider failed with {fingerprint}: {e}",
            )])
            self._telemetry.track_dependency(
                fmt, _since(started), False, {"exception": fingerprint}
            )
            return

        collector.put(index, output.artifacts, output.issues)
        self._telemetry.track_dependency(
            fmt,
            _since(started),
            not any(i.is_error for i in output.issues),
            {"artifactCount": str(len(output.artifacts)), "issueCount": str(len(output.issues))},
        )

    def _run_stages(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        token: CancellationToken,
    ) -> PackagingResult:
        for stage in self._stages:
            if not stage.enabled(context.request):
                continue
            if token.cancelled:
                return result.with_issues([self._cancelled_issue()])

            logger.debug("Running stage %s", stage.name)
            try:
                added = stage.run(context, result, token)
            except OperationCancelled:
                return result.with_issues([self._cancelled_issue()])
            except Exception as e:
                logger.warning("Stage %s raised: %s", stage.name, e)
                added = [PackagingIssue.error(
                    f"{self.issue_prefix}.{stage.name}.exception",
                    f"{stage.name} stage failed with {type(e).__qualname__}: {e}",
                )]
            result = result.with_issues(added)
        return result

    # ── Helpers ────────────────────────────────────────────────

    @contextlib.contextmanager
    def _working_directory(self, request: PackagingRequest) -> Iterator[Path]:
        output = Path(request.output_directory)
        output.mkdir(parents=True, exist_ok=True)
        if not self.uses_temp_workdir:
            yield output
            return
        with tempfile.TemporaryDirectory(prefix=f"packforge-{self.platform.value}-") as tmp:
            yield Path(tmp)

    def _cancelled_issue(self) -> PackagingIssue:
        return PackagingIssue.error(
            f"{self.issue_prefix}.cancelled", "Packaging run was cancelled."
        )

    def _complete(
        self,
        job_id: str,
        project: PackagingProject | None,
        request: PackagingRequest,
        result: PackagingResult,
        started: float,
    ) -> PackagingResult:
        duration = time.monotonic() - started
        name = project.name if project else request.project_id
        channel = request.configuration or "default"

        self._telemetry.track_event("pipeline.completed", {
            "jobId": job_id,
            "projectId": request.project_id,
            "displayName": f"{name} ({self.platform.display_name})",
            "channel": channel,
            "platform": self.platform.value,
            "status": "succeeded" if result.success else "failed",
            "durationSeconds": f"{duration:.3f}",
            "completedAt": datetime.now(UTC).isoformat(),
            "blockingIssues": str(result.blocking_issues),
        })
        for artifact in result.artifacts:
            self._telemetry.track_event("pipeline.artifact", {
                "jobId": job_id,
                "projectId": request.project_id,
                "format": artifact.format,
                "path": artifact.path,
                "platform": self.platform.value,
                "channel": channel,
            })

        logger.info(
            "Job %s %s in %.2fs: %d artifact(s), %d issue(s)",
            job_id,
            "succeeded" if result.success else "failed",
            duration,
            len(result.artifacts),
            len(result.issues),
        )
        return result


def _since(started: float) -> timedelta:
    return timedelta(seconds=time.monotonic() - started)
