"""
Run ledger — append-only history of packaging runs.

Every run appends one NDJSON line to ``<output>/_Audit/runs.ndjson``:
who ran it, what was asked, how it ended, and which issue codes were
raised. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

AUDIT_DIR = "_Audit"
AUDIT_FILE = "runs.ndjson"


class RunAuditEntry(BaseModel):
    """A single run ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    job_id: str = ""
    project_id: str = ""
    platform: str = ""
    formats: list[str] = Field(default_factory=list)
    configuration: str = ""

    principal: str | None = None

    status: str = ""               # succeeded, failed
    artifacts: list[str] = Field(default_factory=list)
    issue_codes: list[str] = Field(default_factory=list)
    blocking_issues: int = 0
    duration_ms: int = 0

    context: dict[str, Any] = Field(default_factory=dict)


class RunAuditWriter:
    """Append-only run ledger writer."""

    def __init__(self, path: Path | None = None, output_directory: Path | None = None):
        if path is not None:
            self._path = path
        elif output_directory is not None:
            self._path = output_directory / AUDIT_DIR / AUDIT_FILE
        else:
            self._path = Path(AUDIT_DIR) / AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: RunAuditEntry) -> None:
        """Append an entry; write failures are logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run ledger entry written: %s", entry.job_id)
        except OSError as e:
            logger.error("Failed to write run ledger entry: %s", e)

    def read_all(self) -> list[RunAuditEntry]:
        """Read all entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        with self._path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(RunAuditEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Skipping corrupt ledger entry at line %d: %s", line_num, e)
        return entries
