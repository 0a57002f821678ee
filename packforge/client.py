"""
Packaging client — the SDK entry point.

Wraps the three platform pipelines behind a single ``run`` call:

    client = create_default(load_settings())
    result = client.run_project_file("packaging.yml", "macos", formats=["notarize"])
    if not result.success:
        for issue in result.issues:
            print(issue.code, issue.message)

Per run the client:
    1. merges platform properties from the project under the caller's properties
    2. acquires an identity (failures are logged; policy decides what that means)
    3. executes the platform pipeline
    4. appends a run ledger entry when auditing is on
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Iterable, Mapping

from packforge.adapters.base import FormatProvider
from packforge.adapters.notarization import NotarizationProvider
from packforge.adapters.process.agent_aware import AgentAwareProcessRunner
from packforge.adapters.process.ssh import SshRemoteCommandClient
from packforge.adapters.stages.audit import MacAuditStage
from packforge.adapters.stages.container import LinuxContainerStage
from packforge.adapters.stages.repository import LinuxRepositoryStage
from packforge.adapters.stages.sandbox import LinuxSandboxStage
from packforge.adapters.stages.security import SecurityStage
from packforge.adapters.stages.verification import MacVerificationStage
from packforge.core.config.loader import load_project
from packforge.core.config.settings import Settings
from packforge.core.engine.broker import BuildAgentBroker, LocalBuildAgentBroker, StaticBuildAgentBroker
from packforge.core.engine.cancellation import CancellationToken, OperationCancelled
from packforge.core.engine.pipeline import PackagingPipeline
from packforge.core.engine.platforms import (
    LinuxPackagingPipeline,
    MacPackagingPipeline,
    WindowsPackagingPipeline,
)
from packforge.core.models.packaging import (
    PackagingIssue,
    PackagingPlatform,
    PackagingRequest,
    PackagingResult,
)
from packforge.core.observability.metrics import MetricsRegistry
from packforge.core.observability.telemetry import (
    CompositeTelemetry,
    LoggingTelemetry,
    MetricsTelemetry,
    TelemetryChannel,
)
from packforge.core.persistence.audit import RunAuditEntry, RunAuditWriter
from packforge.core.persistence.project_store import InMemoryProjectStore, ProjectStore
from packforge.core.policy.gate import PolicyGate
from packforge.core.security.identity.cache import SecureIdentityCache
from packforge.core.security.identity.providers import (
    AzureAdIdentityProvider,
    IdentityError,
    LocalIdentityProvider,
    OktaIdentityProvider,
)
from packforge.core.security.identity.service import (
    IdentityContext,
    IdentityService,
    build_identity_request,
)
from packforge.core.security.secure_store import FileSecureStore
from packforge.core.security.signing_material import MacSigningMaterialService

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_ROOT = "artifacts"


class PackagingClient:
    """Runs packaging requests against a set of platform pipelines."""

    def __init__(
        self,
        project_store: ProjectStore,
        pipelines: Iterable[PackagingPipeline],
        identity_service: IdentityService | None = None,
        identity_context: IdentityContext | None = None,
        settings: Settings | None = None,
    ):
        self._store = project_store
        self._pipelines = {p.platform: p for p in pipelines}
        self._identity = identity_service or IdentityService()
        self._identity_context = identity_context or IdentityContext()
        self._settings = settings or Settings()

    @property
    def project_store(self) -> ProjectStore:
        return self._store

    @property
    def platforms(self) -> list[PackagingPlatform]:
        return list(self._pipelines)

    def pipeline(self, platform: PackagingPlatform) -> PackagingPipeline | None:
        return self._pipelines.get(platform)

    # ── Runs ───────────────────────────────────────────────────

    def run(
        self,
        project_id: str,
        platform: PackagingPlatform | str,
        formats: Iterable[str] | None = None,
        configuration: str = "Release",
        output_directory: Path | str | None = None,
        properties: Mapping[str, str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PackagingResult:
        platform = PackagingPlatform.parse(platform)
        pipeline = self._pipelines.get(platform)
        if pipeline is None:
            return PackagingResult.failed(PackagingIssue.error(
                "client.platform_unsupported",
                f"No packaging pipeline is registered for {platform.display_name}.",
            ))

        output = Path(output_directory) if output_directory else Path(DEFAULT_OUTPUT_ROOT) / platform.value
        project = self._store.try_load(project_id)

        merged: dict[str, str] = {}
        if project is not None and project.platform(platform) is not None:
            merged.update(project.platform(platform).properties)
        merged.update(properties or {})

        request = PackagingRequest(
            project_id=project_id,
            platform=platform,
            formats=tuple(formats or ()),
            configuration=configuration,
            output_directory=str(output.resolve()),
            properties=merged,
        )

        if project is not None:
            self._acquire_identity(project, request, cancel_token)

        started = time.monotonic()
        result = pipeline.execute(request, cancel_token)
        if self._settings.audit:
            self._record(request, result, started)
        return result

    def run_project_file(
        self,
        path: Path | str,
        platform: PackagingPlatform | str,
        **kwargs,
    ) -> PackagingResult:
        """Load a project file, register it, and run it.

        Raises:
            ConfigError: If the project file cannot be read.
            TypeError: If the client's store cannot accept projects.
        """
        project = load_project(Path(path))
        if not isinstance(self._store, InMemoryProjectStore):
            raise TypeError("run_project_file requires an InMemoryProjectStore")
        self._store.save(project)
        return self.run(project.id, platform, **kwargs)

    # ── Helpers ────────────────────────────────────────────────

    def _acquire_identity(self, project, request: PackagingRequest, token: CancellationToken | None) -> None:
        identity_request = build_identity_request(project, request)
        try:
            identity = self._identity.acquire(identity_request, token)
        except (IdentityError, OperationCancelled) as e:
            logger.warning("Identity acquisition via '%s' failed: %s", identity_request.provider, e)
            self._identity_context.clear()
            return
        logger.info("Acting as %s", identity.principal.id)
        self._identity_context.set(identity)

    def _record(self, request: PackagingRequest, result: PackagingResult, started: float) -> None:
        identity = self._identity_context.identity
        entry = RunAuditEntry(
            job_id=uuid.uuid4().hex,
            project_id=request.project_id,
            platform=request.platform.value,
            formats=list(request.formats),
            configuration=request.configuration,
            principal=identity.principal.id if identity else None,
            status="succeeded" if result.success else "failed",
            artifacts=[a.path for a in result.artifacts],
            issue_codes=result.codes(),
            blocking_issues=result.blocking_issues,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        RunAuditWriter(output_directory=Path(request.output_directory)).write(entry)


# ── Wiring ─────────────────────────────────────────────────────


def default_telemetry(registry: MetricsRegistry | None = None) -> TelemetryChannel:
    return CompositeTelemetry([LoggingTelemetry(), MetricsTelemetry(registry)])


def create_default(
    settings: Settings | None = None,
    providers: Mapping[PackagingPlatform, Iterable[FormatProvider]] | None = None,
    telemetry: TelemetryChannel | None = None,
    project_store: ProjectStore | None = None,
) -> PackagingClient:
    """Wire a client with the bundled stages, secure store, and identity providers.

    ``providers`` adds format providers per platform. macOS always gets
    the notarization provider, which dispatches tools over SSH when the
    acquired agent advertises an SSH host.
    """
    settings = settings or Settings()
    telemetry = telemetry or default_telemetry()
    store = project_store or InMemoryProjectStore()
    extra = providers or {}

    secure_store = FileSecureStore(settings.secure_store_path)
    identity_cache = SecureIdentityCache(secure_store)
    identity_service = IdentityService([
        LocalIdentityProvider(),
        AzureAdIdentityProvider(identity_cache),
        OktaIdentityProvider(identity_cache),
    ])
    identity_context = IdentityContext()

    broker: BuildAgentBroker = LocalBuildAgentBroker()
    if settings.agents:
        broker = StaticBuildAgentBroker({
            platform: (agent.name, agent.capabilities) for platform, agent in settings.agents.items()
        })

    shared = dict(
        project_store=store,
        policy_gate=PolicyGate(),
        broker=broker,
        telemetry=telemetry,
        identity_context=identity_context,
        max_workers=settings.max_workers,
    )

    runner = AgentAwareProcessRunner([SshRemoteCommandClient()], telemetry=telemetry)
    mac_providers = [NotarizationProvider(runner, telemetry), *extra.get(PackagingPlatform.MACOS, ())]

    pipelines = [
        WindowsPackagingPipeline(
            providers=list(extra.get(PackagingPlatform.WINDOWS, ())),
            stages=[SecurityStage()],
            **shared,
        ),
        MacPackagingPipeline(
            providers=mac_providers,
            stages=[MacVerificationStage(runner, telemetry), MacAuditStage(), SecurityStage()],
            signing_material=MacSigningMaterialService(secure_store, telemetry),
            **shared,
        ),
        LinuxPackagingPipeline(
            providers=list(extra.get(PackagingPlatform.LINUX, ())),
            stages=[LinuxSandboxStage(), LinuxRepositoryStage(), SecurityStage(), LinuxContainerStage()],
            **shared,
        ),
    ]
    return PackagingClient(store, pipelines, identity_service, identity_context, settings)
