"""CI webhook payload parsing — GitHub Actions, GitLab CI and Jenkins.

Each parser turns a platform payload into a ``CompletedRun`` (the run to
broadcast plus the trigger to alert on), or returns None for events that
do not describe a finished pipeline run.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from cicd_dashboard.core.types import PipelinePlatform, PipelineRun, PipelineTrigger, RunStatus

logger = structlog.get_logger(__name__)


class WebhookError(Exception):
    """Webhook rejected; carries the HTTP status to answer with."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class CompletedRun:
    run: PipelineRun
    trigger: PipelineTrigger


_GITHUB_CONCLUSIONS: dict[str, RunStatus] = {
    "success": RunStatus.SUCCESS,
    "failure": RunStatus.FAILED,
    "startup_failure": RunStatus.FAILED,
    "cancelled": RunStatus.CANCELLED,
    "timed_out": RunStatus.TIMEOUT,
}

_GITLAB_STATUSES: dict[str, RunStatus] = {
    "success": RunStatus.SUCCESS,
    "failed": RunStatus.FAILED,
    "canceled": RunStatus.CANCELLED,
    "skipped": RunStatus.CANCELLED,
}

_JENKINS_STATUSES: dict[str, RunStatus] = {
    "SUCCESS": RunStatus.SUCCESS,
    "FAILURE": RunStatus.FAILED,
    "UNSTABLE": RunStatus.FAILED,
    "ABORTED": RunStatus.CANCELLED,
    "NOT_BUILT": RunStatus.CANCELLED,
}


# ── Verification ────────────────────────────────────────────────


def verify_github_signature(secret: str, body: bytes, header: str | None) -> None:
    """Check ``X-Hub-Signature-256`` against the HMAC-SHA256 of *body*.

    An empty *secret* disables the check.

    Raises:
        WebhookError: (401) on a missing or mismatching signature.
    """
    if not secret:
        return
    if not header or not header.startswith("sha256="):
        raise WebhookError("Missing webhook signature", status=401)
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(header[len("sha256="):], expected):
        raise WebhookError("Invalid webhook signature", status=401)


def verify_gitlab_token(token: str, header: str | None) -> None:
    """Check ``X-Gitlab-Token``; an empty *token* disables the check."""
    if not token:
        return
    if not header or not hmac.compare_digest(header, token):
        raise WebhookError("Invalid webhook token", status=401)


# ── Helpers ─────────────────────────────────────────────────────


def _parse_time(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith(" UTC"):
        # GitLab: "2024-05-01 10:00:00 UTC"
        text = text[:-4].replace(" ", "T") + "+00:00"
    elif text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _seconds_between(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return max((end - start).total_seconds(), 0.0)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _completed(run: PipelineRun, environment: str | None = None) -> CompletedRun:
    trigger = PipelineTrigger(
        pipeline_name=run.pipeline_name,
        status=run.status,
        duration=run.duration,
        platform=run.platform,
        environment=environment,
        commit=run.commit_sha,
        branch=run.branch,
        run_id=run.id,
        pipeline_id=run.pipeline_id,
    )
    return CompletedRun(run=run, trigger=trigger)


# ── Parsers ─────────────────────────────────────────────────────


def parse_github(event: str | None, payload: dict[str, Any]) -> CompletedRun | None:
    """Parse a GitHub ``workflow_run`` delivery with action ``completed``."""
    if event != "workflow_run" or payload.get("action") != "completed":
        logger.debug("github_event_ignored", event_name=event, action=payload.get("action"))
        return None

    wr = _as_dict(payload.get("workflow_run"))
    repo = _as_dict(payload.get("repository"))
    actor = _as_dict(wr.get("triggering_actor")) or _as_dict(wr.get("actor"))

    conclusion = str(wr.get("conclusion") or "")
    status = _GITHUB_CONCLUSIONS.get(conclusion, RunStatus.UNKNOWN)
    start = _parse_time(wr.get("run_started_at") or wr.get("created_at"))
    end = _parse_time(wr.get("updated_at")) or datetime.now(timezone.utc)

    name = wr.get("name") or "Unknown"
    if repo.get("full_name"):
        name = f"{repo['full_name']} / {name}"

    run = PipelineRun(
        id=str(wr.get("id") or ""),
        pipeline_id=str(wr.get("workflow_id") or repo.get("id") or "github"),
        pipeline_name=name,
        status=status.value,
        platform=PipelinePlatform.GITHUB_ACTIONS.value,
        duration=_seconds_between(start, end),
        branch=wr.get("head_branch"),
        commit_sha=wr.get("head_sha"),
        triggered_by=actor.get("login"),
        start_time=start,
        end_time=end,
    )
    return _completed(run)


def parse_gitlab(event: str | None, payload: dict[str, Any]) -> CompletedRun | None:
    """Parse a GitLab pipeline hook once the pipeline reached a final status."""
    if payload.get("object_kind") != "pipeline":
        logger.debug("gitlab_event_ignored", event_name=event, kind=payload.get("object_kind"))
        return None

    attrs = _as_dict(payload.get("object_attributes"))
    project = _as_dict(payload.get("project"))
    user = _as_dict(payload.get("user"))

    raw_status = str(attrs.get("status") or "")
    status = _GITLAB_STATUSES.get(raw_status)
    if status is None:
        logger.debug("gitlab_pipeline_not_finished", status=raw_status)
        return None

    start = _parse_time(attrs.get("created_at"))
    end = _parse_time(attrs.get("finished_at")) or datetime.now(timezone.utc)
    duration = attrs.get("duration")

    run = PipelineRun(
        id=str(attrs.get("id") or ""),
        pipeline_id=str(project.get("id") or "gitlab"),
        pipeline_name=project.get("path_with_namespace") or project.get("name") or "Unknown",
        status=status.value,
        platform=PipelinePlatform.GITLAB_CI.value,
        duration=(
            float(duration)
            if isinstance(duration, (int, float))
            else _seconds_between(start, end)
        ),
        branch=attrs.get("ref"),
        commit_sha=attrs.get("sha"),
        triggered_by=user.get("username"),
        start_time=start,
        end_time=end,
    )
    environment = None
    for var in attrs.get("variables") or []:
        if isinstance(var, dict) and var.get("key") == "ENVIRONMENT":
            environment = var.get("value")
    return _completed(run, environment)


def parse_jenkins(payload: dict[str, Any]) -> CompletedRun | None:
    """Parse a Notification plugin payload in the ``COMPLETED`` phase."""
    build = _as_dict(payload.get("build"))
    phase = str(build.get("phase") or "").upper()
    if phase != "COMPLETED":
        logger.debug("jenkins_phase_ignored", phase=phase)
        return None

    job = payload.get("name") or "Unknown"
    scm = _as_dict(build.get("scm"))
    status = _JENKINS_STATUSES.get(str(build.get("status") or "").upper(), RunStatus.UNKNOWN)

    duration_ms = build.get("duration")
    duration = float(duration_ms) / 1000.0 if isinstance(duration_ms, (int, float)) else None
    end = datetime.now(timezone.utc)
    start = end - timedelta(seconds=duration) if duration is not None else None

    params = _as_dict(build.get("parameters"))
    run = PipelineRun(
        id=f"{job}#{build.get('number', '')}",
        pipeline_id=str(job).replace(":", "-"),
        pipeline_name=job,
        status=status.value,
        platform=PipelinePlatform.JENKINS.value,
        duration=duration,
        branch=scm.get("branch"),
        commit_sha=scm.get("commit"),
        start_time=start,
        end_time=end,
    )
    return _completed(run, params.get("ENVIRONMENT"))
