"""
Notarization provider — Apple notarytool submit/poll/log/staple driver.

State machine (one instance per ``package`` call):

    PENDING → SUBMITTED ─┬─ in progress ─→ POLLING ─┬─ Accepted ─→ STAPLING → DONE
                         │                          ├─ other ────→ REJECTED
                         │                          └─ bound hit ─→ TIMED_OUT
                         ├─ Accepted ────────────────────────────→ STAPLING → DONE
                         └─ other ───────────────────────────────→ REJECTED
    any tool failure → FAILED, cancellation → CANCELLED

Request properties:
    mac.notarization.artifact             path to submit (required)
    mac.notarization.maxPollAttempts      status queries before timing out (default 60)
    mac.notarization.pollIntervalSeconds  delay between queries (default 10)
    mac.notarization.staple               "false" skips stapling

Project settings: mac.appleId, mac.teamId, mac.notarytool.profile.

Once a terminal status is known the notarization log is fetched and
saved under ``<output>/notarization/`` whether or not the submission
was accepted. An accepted submission that fails to staple is an error.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import Callable

from packforge.adapters.base import FormatProvider, FormatResult, PackageFormatContext
from packforge.adapters.process.diagnostics import write_process_log
from packforge.adapters.process.runner import ProcessRequest, ProcessResult, ProcessRunner
from packforge.core.engine.cancellation import CancellationToken, OperationCancelled
from packforge.core.models.packaging import PackagingArtifact, PackagingIssue
from packforge.core.observability.telemetry import NullTelemetry, TelemetryChannel

logger = logging.getLogger(__name__)

DEFAULT_MAX_POLL_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 10

_IN_PROGRESS = {"inprogress", "in progress", "in_progress"}


class NotarizationState(StrEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    POLLING = "polling"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    STAPLING = "stapling"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class NotarizationResponse:
    request_id: str
    status: str
    summary: str | None
    raw: str


def parse_response(raw: str) -> NotarizationResponse:
    """Parse notarytool JSON output.

    Raises:
        ValueError: If the output is not a JSON object.
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    status = data.get("status") or data.get("statusSummary") or ""
    summary = data.get("statusSummary") or data.get("message")
    return NotarizationResponse(
        request_id=str(data.get("id") or ""),
        status=str(status),
        summary=str(summary) if summary else None,
        raw=raw,
    )


def is_in_progress(status: str | None) -> bool:
    if not status or not status.strip():
        return True
    return status.strip().lower() in _IN_PROGRESS


def _wait(token: CancellationToken, seconds: float) -> bool:
    return token.wait(seconds)


class NotarizationProvider(FormatProvider):
    """Submits an artifact for notarization and staples the ticket."""

    def __init__(
        self,
        runner: ProcessRunner,
        telemetry: TelemetryChannel | None = None,
        wait: Callable[[CancellationToken, float], bool] = _wait,
    ):
        self._runner = runner
        self._telemetry = telemetry or NullTelemetry()
        self.wait = wait

    @property
    def format(self) -> str:
        return "notarize"

    def package(self, context: PackageFormatContext, cancel_token: CancellationToken) -> FormatResult:
        run = _NotarizationRun(self, context, cancel_token)
        try:
            return run.execute()
        except OperationCancelled:
            run.transition(NotarizationState.CANCELLED)
            raise

    # ── Tool execution ─────────────────────────────────────────

    def run_tool(
        self,
        context: PackageFormatContext,
        tool: str,
        args: list[str],
        token: CancellationToken,
    ) -> tuple[ProcessRequest, ProcessResult]:
        request = ProcessRequest.of(tool, args, working_directory=context.working_directory)
        started = time.monotonic()
        result = self._runner.execute(request, token)
        self._telemetry.track_dependency(
            tool,
            timedelta(seconds=time.monotonic() - started),
            result.success,
            {"arguments": " ".join(args), "exitCode": str(result.exit_code)},
        )
        return request, result


class _NotarizationRun:
    """State for one notarization of one artifact."""

    def __init__(
        self,
        provider: NotarizationProvider,
        context: PackageFormatContext,
        token: CancellationToken,
    ):
        self._provider = provider
        self._context = context
        self._token = token
        self._issues: list[PackagingIssue] = []
        self.state = NotarizationState.PENDING
        self.artifact_path = ""

    def transition(self, new_state: NotarizationState) -> None:
        old = self.state
        self.state = new_state
        logger.info("Notarization '%s': %s → %s", self.artifact_path, old.value, new_state.value)

    def _fail(self, issue: PackagingIssue, state: NotarizationState = NotarizationState.FAILED) -> FormatResult:
        self._issues.append(issue)
        self.transition(state)
        return FormatResult.create(issues=self._issues)

    # ── Flow ───────────────────────────────────────────────────

    def execute(self) -> FormatResult:
        ctx = self._context
        artifact = (ctx.request.prop("mac.notarization.artifact") or "").strip()
        if not artifact:
            return self._fail(PackagingIssue.error(
                "mac.notarization.artifact_missing",
                "No artifact was specified for notarization. "
                "Provide the 'mac.notarization.artifact' property.",
            ))
        self.artifact_path = artifact

        # ── Submit ─────────────────────────────────────────────
        args = [
            "submit", artifact,
            "--apple-id", ctx.setting("mac.appleId") or "apple-id@example.com",
            "--team-id", ctx.setting("mac.teamId") or "TEAMID",
            "--output-format", "json",
        ]
        profile = ctx.setting("mac.notarytool.profile")
        if profile:
            args += ["--keychain-profile", profile]

        request, result = self._provider.run_tool(ctx, "notarytool", args, self._token)
        if not result.success:
            return self._fail(PackagingIssue.error(
                "mac.notarization.submit_failed",
                self._failure_message("notarytool submit failed.", "notarytool-submit", request, result),
            ))
        try:
            submission = parse_response(result.stdout)
        except ValueError as e:
            return self._fail(PackagingIssue.error(
                "mac.notarization.submit_unexpected_response",
                f"Unable to parse notarytool response: {e}",
            ))
        if not submission.request_id:
            return self._fail(PackagingIssue.error(
                "mac.notarization.submit_unexpected_response",
                "Unable to parse notarytool response: no request id.",
            ))
        self.transition(NotarizationState.SUBMITTED)

        request_id = submission.request_id
        status, summary, raw = submission.status, submission.summary, submission.raw

        # ── Poll ───────────────────────────────────────────────
        if is_in_progress(status):
            self.transition(NotarizationState.POLLING)
            polled = self._poll(request_id, submission)
            if polled is None:
                return FormatResult.create(issues=self._issues)
            status = polled.status
            summary = polled.summary or summary
            raw = polled.raw

        # ── Log ────────────────────────────────────────────────
        log_path = self._fetch_log(request_id)

        if status.strip().lower() != "accepted":
            self._issues.append(PackagingIssue.error(
                "mac.notarization.rejected", _remediation(summary, raw, log_path)
            ))
            self.transition(NotarizationState.REJECTED)
            return FormatResult.create(issues=self._issues)
        self.transition(NotarizationState.ACCEPTED)

        # ── Staple ─────────────────────────────────────────────
        stapled = False
        if (ctx.request.prop("mac.notarization.staple") or "").strip().lower() != "false":
            self.transition(NotarizationState.STAPLING)
            staple_args = ["stapler", "staple", artifact]
            request, result = self._provider.run_tool(ctx, "xcrun", staple_args, self._token)
            if not result.success:
                return self._fail(PackagingIssue.error(
                    "mac.notarization.staple_failed",
                    self._failure_message("Stapling failed.", "stapler", request, result),
                ))
            stapled = True

        metadata = {
            "notarizationRequestId": request_id,
            "notarizationStatus": status,
            "stapled": "True" if stapled else "False",
        }
        if summary:
            metadata["notarizationSummary"] = summary
        if log_path:
            metadata["notarizationLog"] = log_path

        self.transition(NotarizationState.DONE)
        artifact_out = PackagingArtifact(format="notarize", path=artifact, metadata=metadata)
        return FormatResult.create(artifacts=[artifact_out], issues=self._issues)

    def _poll(self, request_id: str, submission: NotarizationResponse) -> NotarizationResponse | None:
        """Query status until it leaves the in-progress set. None on failure."""
        request = self._context.request
        max_attempts = _positive_int(request.prop("mac.notarization.maxPollAttempts"), DEFAULT_MAX_POLL_ATTEMPTS)
        interval = _positive_int(request.prop("mac.notarization.pollIntervalSeconds"), DEFAULT_POLL_INTERVAL)
        summary = submission.summary

        for attempt in range(max_attempts):
            self._token.raise_if_cancelled()
            if attempt > 0 or not submission.status:
                if self._provider.wait(self._token, interval):
                    raise OperationCancelled("Notarization polling was cancelled.")
            self._token.raise_if_cancelled()

            args = ["status", request_id, "--output-format", "json"]
            proc_request, result = self._provider.run_tool(self._context, "notarytool", args, self._token)
            if not result.success:
                self._fail(PackagingIssue.error(
                    "mac.notarization.status_failed",
                    self._failure_message(
                        "Failed to query notarization status.", "notarytool-status", proc_request, result
                    ),
                ))
                return None
            try:
                polled = parse_response(result.stdout)
            except ValueError as e:
                self._fail(PackagingIssue.error(
                    "mac.notarization.status_unexpected_response",
                    f"Unable to parse notarization status response: {e}",
                ))
                return None

            summary = polled.summary or summary
            logger.debug("Notarization %s attempt %d: %s", request_id, attempt + 1, polled.status)
            if not is_in_progress(polled.status):
                return NotarizationResponse(request_id, polled.status, summary, polled.raw)

        self._fail(
            PackagingIssue.error(
                "mac.notarization.status_timeout",
                f"Notarization request '{request_id}' did not complete within "
                f"{max_attempts} status queries.",
            ),
            NotarizationState.TIMED_OUT,
        )
        return None

    def _fetch_log(self, request_id: str) -> str | None:
        args = ["log", request_id, "--output-format", "json"]
        request, result = self._provider.run_tool(self._context, "notarytool", args, self._token)
        if not result.success:
            self._issues.append(PackagingIssue.warning(
                "mac.notarization.log_failed",
                self._failure_message("Fetching notarization log failed.", "notarytool-log", request, result),
            ))
            return None

        log_file = self._context.output_directory / "notarization" / f"notarytool-log-{request_id}.json"
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(result.stdout, encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to persist notarization log for %s: %s", request_id, e)
            self._issues.append(PackagingIssue.warning(
                "mac.notarization.log_persist_failed", f"Unable to persist notarization log: {e}"
            ))
            return None

        self._issues.append(PackagingIssue.info(
            "mac.notarization.log_saved", f"Notarization log saved to '{log_file}'."
        ))
        return str(log_file)

    def _failure_message(
        self, headline: str, component: str, request: ProcessRequest, result: ProcessResult
    ) -> str:
        diagnostics = write_process_log(self._context.output_directory, component, request, result)
        parts = [headline]
        if result.stderr.strip():
            parts.append(result.stderr.strip())
        if diagnostics is not None:
            parts.append(f"See '{diagnostics}' for details.")
        return " ".join(parts)


def _positive_int(raw: str | None, default: int) -> int:
    try:
        value = int((raw or "").strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _remediation(summary: str | None, raw: str | None, log_path: str | None) -> str:
    parts = [summary.strip() if summary and summary.strip() else "Notarization was rejected."]
    if raw and raw.strip():
        parts.append(f"Response: {raw.strip()}")
    if log_path:
        parts.append(f"Refer to '{log_path}' for detailed remediation guidance.")
    return " ".join(parts)
