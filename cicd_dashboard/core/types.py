"""Domain types for CI/CD pipelines, runs and inbound alert triggers."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelinePlatform(StrEnum):
    """CI platforms that can report runs."""

    GITHUB_ACTIONS = "github_actions"
    JENKINS = "jenkins"
    GITLAB_CI = "gitlab_ci"
    AZURE_DEVOPS = "azure_devops"


class RunStatus(StrEnum):
    """Pipeline run status as reported to alerting."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class AlertType(StrEnum):
    """Known alert types. System alerts may carry arbitrary type strings."""

    FAILURE = "failure"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    SUCCESS_RATE_DROP = "success_rate_drop"
    BUILD_TIME_INCREASE = "build_time_increase"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    SYSTEM = "system"


class AlertSeverity(StrEnum):
    """Alert-history severity taxonomy."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PipelineRun(BaseModel):
    """A completed pipeline run, as broadcast to dashboard clients.

    Dumped with ``by_alias=True`` the keys are camelCase (``pipelineId``,
    ``commitSha``, ...), the shape dashboard clients consume.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    pipeline_id: str
    pipeline_name: str
    status: str
    platform: str | None = None
    duration: float | None = None
    branch: str | None = None
    commit_sha: str | None = None
    triggered_by: str | None = None
    start_time: datetime | None = None
    end_time: datetime = Field(default_factory=_utcnow)


class PipelineTrigger(BaseModel):
    """Inbound pipeline alert request.

    Accepts camelCase keys from HTTP callers. Missing identifying fields
    fall back to documented defaults rather than failing the alert.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    pipeline_name: str = Field(default="Unknown", alias="pipelineName")
    status: str = "unknown"
    duration: float | None = None
    platform: str | None = None
    environment: str | None = None
    commit: str | None = None
    branch: str | None = None
    run_id: str | None = Field(default=None, alias="runId")
    pipeline_id: str | None = Field(default=None, alias="pipelineId")
    severity: AlertSeverity | None = None
    message: str | None = None

    @field_validator("pipeline_name", "status", mode="before")
    @classmethod
    def _blank_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "Unknown" if info.field_name == "pipeline_name" else "unknown"
        return v

    @field_validator("status")
    @classmethod
    def _lower_status(cls, v: str) -> str:
        return v.strip().lower()


class SystemTrigger(BaseModel):
    """Inbound system alert request."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    alert_type: str = Field(default=AlertType.SYSTEM.value, alias="alertType")
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("alert_type", mode="before")
    @classmethod
    def _blank_type(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return AlertType.SYSTEM.value
        return v

    @field_validator("data", mode="before")
    @classmethod
    def _none_data(cls, v: Any) -> Any:
        return {} if v is None else v


def new_run_id(prefix: str = "run") -> str:
    """Build a run identifier from the current wall-clock time in ms."""
    return f"{prefix}-{int(time.time() * 1000)}"
