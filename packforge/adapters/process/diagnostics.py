"""
Process diagnostics — persist a failed tool invocation for troubleshooting.

Writes ``<output>/_diagnostics/<component>-<timestamp>.log`` with the
command, exit code, and both output streams. Issue messages reference
the file so users can find the full tool output.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from packforge.adapters.process.runner import ProcessRequest, ProcessResult

logger = logging.getLogger(__name__)

DIAGNOSTICS_DIR = "_diagnostics"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def write_process_log(
    output_directory: Path | str,
    component: str,
    request: ProcessRequest,
    result: ProcessResult,
) -> Path | None:
    """Write a diagnostics log. Returns its path, or None if it could not be written."""
    now = datetime.now(UTC)
    directory = Path(output_directory) / DIAGNOSTICS_DIR
    path = directory / f"{_UNSAFE.sub('_', component)}-{now:%Y%m%d%H%M%S%f}.log"

    lines = [
        f"# Timestamp: {now.isoformat()}",
        f"# Tool: {request.file_name}",
        f"# Arguments: {' '.join(request.arguments)}",
        f"# ExitCode: {result.exit_code}",
        "",
        "## Standard Output",
        result.stdout,
        "",
        "## Standard Error",
        result.stderr,
    ]
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as e:
        logger.warning("Could not write diagnostics for %s: %s", component, e)
        return None
    return path
