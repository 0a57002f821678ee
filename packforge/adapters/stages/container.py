"""
Linux container build stage — a script that reruns packaging in a container.

When ``linux.container.image`` names an image, writes
``<output>/container-build.sh``: a ``docker run`` that mounts the
current directory at /workspace and runs ``packforge pack`` inside the
image with the same formats, configuration and properties.

    linux.container.image         image to run (stage is off when unset)
    linux.container.projectPath   project file inside the container
                                  (default: <project name>.json)
    linux.container.output        --output inside the container
                                  (default: the request's output directory)

``linux.container.*`` keys are not forwarded as properties.
"""

from __future__ import annotations

import logging
import shlex
import stat
from pathlib import Path

from packforge.adapters.base import PackageFormatContext
from packforge.adapters.stages.base import SecondaryStage
from packforge.core.engine.cancellation import CancellationToken
from packforge.core.models.packaging import PackagingIssue, PackagingRequest, PackagingResult

logger = logging.getLogger(__name__)

SCRIPT_NAME = "container-build.sh"
_CONTAINER_PREFIX = "linux.container."


class LinuxContainerStage(SecondaryStage):
    name = "container"

    def enabled(self, request: PackagingRequest) -> bool:
        return bool((request.prop("linux.container.image") or "").strip())

    def run(
        self,
        context: PackageFormatContext,
        result: PackagingResult,
        cancel_token: CancellationToken,
    ) -> list[PackagingIssue]:
        cancel_token.raise_if_cancelled()
        try:
            path = self.write_script(context)
        except OSError as e:
            logger.warning("Failed to generate container build script: %s", e)
            return [PackagingIssue.warning(
                "linux.container.script_failed",
                f"Failed to generate container build script: {e}",
            )]
        return [PackagingIssue.info(
            "linux.container.script_generated",
            f"Container build script generated at '{path}'.",
        )]

    def write_script(self, context: PackageFormatContext) -> Path:
        path = context.output_directory / SCRIPT_NAME
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_script(context), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IRWXU)
        logger.info("Wrote container build script for %s to %s", context.project.id, path)
        return path


def render_script(context: PackageFormatContext) -> str:
    request = context.request
    image = (request.prop("linux.container.image") or "").strip()
    project_path = (request.prop("linux.container.projectPath") or "").strip() or f"{context.project.name}.json"
    output = (request.prop("linux.container.output") or "").strip() or request.output_directory

    command = ["packforge", "pack", project_path, "--platform", "linux"]
    for fmt in request.formats:
        command += ["--format", fmt]
    if request.configuration:
        command += ["--configuration", request.configuration]
    command += ["--output", output]
    for key, value in request.properties.items():
        if key.lower().startswith(_CONTAINER_PREFIX):
            continue
        command += ["--property", f"{key}={value}"]

    lines = [
        "#!/usr/bin/env bash",
        "set -euo pipefail",
        "",
        "docker run --rm \\",
        '  -v "$PWD:/workspace" \\',
        "  -w /workspace \\",
        f"  {shlex.quote(image)} \\",
        f"  {shlex.join(command)}",
    ]
    return "\n".join(lines) + "\n"
