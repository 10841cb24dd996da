"""Tests for core domain types — trigger defaults and run serialisation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cicd_dashboard.core.types import (
    AlertSeverity,
    PipelineRun,
    PipelineTrigger,
    SystemTrigger,
    new_run_id,
)


class TestPipelineTrigger:
    def test_camel_case_aliases(self) -> None:
        t = PipelineTrigger.model_validate({
            "pipelineName": "Backend API",
            "status": "failed",
            "runId": "run-9",
            "pipelineId": "42",
        })
        assert t.pipeline_name == "Backend API"
        assert t.run_id == "run-9"
        assert t.pipeline_id == "42"

    def test_missing_fields_get_defaults(self) -> None:
        t = PipelineTrigger.model_validate({})
        assert t.pipeline_name == "Unknown"
        assert t.status == "unknown"
        assert t.severity is None

    def test_blank_values_get_defaults(self) -> None:
        t = PipelineTrigger.model_validate({"pipelineName": "  ", "status": None})
        assert t.pipeline_name == "Unknown"
        assert t.status == "unknown"

    def test_status_lowercased(self) -> None:
        assert PipelineTrigger(status="FAILED").status == "failed"

    def test_explicit_severity(self) -> None:
        t = PipelineTrigger.model_validate({"severity": "critical"})
        assert t.severity == AlertSeverity.CRITICAL

    def test_unknown_severity_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PipelineTrigger.model_validate({"severity": "apocalyptic"})


class TestSystemTrigger:
    def test_defaults(self) -> None:
        t = SystemTrigger.model_validate({})
        assert t.alert_type == "system"
        assert t.message == ""
        assert t.data == {}

    def test_null_data_becomes_empty(self) -> None:
        t = SystemTrigger.model_validate({"alertType": "disk_usage", "data": None})
        assert t.alert_type == "disk_usage"
        assert t.data == {}


class TestPipelineRun:
    def test_dump_uses_camel_case(self) -> None:
        run = PipelineRun(
            id="run-1",
            pipeline_id="42",
            pipeline_name="Frontend",
            status="success",
            commit_sha="abc",
        )
        data = run.model_dump(mode="json", by_alias=True)
        assert data["pipelineId"] == "42"
        assert data["commitSha"] == "abc"
        assert "endTime" in data

    def test_new_run_id_prefix(self) -> None:
        assert new_run_id("demo-run").startswith("demo-run-")
