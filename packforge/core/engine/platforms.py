"""
Platform pipelines — Windows, macOS, and Linux.

    platform   prefix    working dir    stage order
    windows    windows   temporary      security
    macos      mac       temporary      verify → audit → security
    linux      linux     output dir     sandbox → repository → security → container

The macOS pipeline also prepares signing material (entitlements,
provisioning profiles) before providers run and hands the materialized
paths to providers through ``context.signing``.
"""

from __future__ import annotations

import logging

from packforge.adapters.base import PackageFormatContext
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.engine.pipeline import PackagingPipeline
from packforge.core.models.packaging import PackagingIssue, PackagingPlatform
from packforge.core.security.signing_material import MacSigningMaterialService

logger = logging.getLogger(__name__)


class WindowsPackagingPipeline(PackagingPipeline):
    platform = PackagingPlatform.WINDOWS
    issue_prefix = "windows"
    uses_temp_workdir = True
    stage_order = ("security",)


class MacPackagingPipeline(PackagingPipeline):
    platform = PackagingPlatform.MACOS
    issue_prefix = "mac"
    uses_temp_workdir = True
    stage_order = ("verify", "audit", "security")

    def __init__(self, *args, signing_material: MacSigningMaterialService | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._signing = signing_material

    def prepare(
        self,
        context: PackageFormatContext,
        token: CancellationToken,
    ) -> tuple[PackageFormatContext, list[PackagingIssue]]:
        if self._signing is None:
            return context, []
        token.raise_if_cancelled()
        material = self._signing.prepare(context)
        if not material.success:
            logger.warning(
                "Signing material has errors: %s", ", ".join(i.code for i in material.issues)
            )
        return context.model_copy(update={"signing": material}), list(material.issues)


class LinuxPackagingPipeline(PackagingPipeline):
    platform = PackagingPlatform.LINUX
    issue_prefix = "linux"
    uses_temp_workdir = False
    stage_order = ("sandbox", "repository", "security", "container")


PIPELINE_TYPES: dict[PackagingPlatform, type[PackagingPipeline]] = {
    PackagingPlatform.WINDOWS: WindowsPackagingPipeline,
    PackagingPlatform.MACOS: MacPackagingPipeline,
    PackagingPlatform.LINUX: LinuxPackagingPipeline,
}
