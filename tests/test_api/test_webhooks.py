"""Tests for CI webhooks — payload parsing, verification and run processing."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer
from pydantic import SecretStr

from cicd_dashboard.api.app import create_app
from cicd_dashboard.api.webhooks import (
    WebhookError,
    parse_github,
    parse_gitlab,
    parse_jenkins,
    verify_github_signature,
    verify_gitlab_token,
)
from cicd_dashboard.core.config import DispatchConfig, Settings, WebhooksConfig
from cicd_dashboard.notify.channels import NotificationChannel
from cicd_dashboard.notify.dispatcher import NotificationDispatcher
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.notify.types import AlertEvent
from cicd_dashboard.realtime.bus import BroadcastBus


# ── Helpers ─────────────────────────────────────────────────────


class FakeChannel(NotificationChannel):
    name = "fake"

    def __init__(self) -> None:
        self.sent: list[AlertEvent] = []

    def is_configured(self) -> bool:
        return True

    def render(self, event: AlertEvent) -> AlertEvent:
        return event

    async def deliver(self, message: AlertEvent) -> bool:
        self.sent.append(message)
        return True

    async def close(self) -> None:
        return None


def _github_payload(conclusion: str = "failure", action: str = "completed") -> dict[str, Any]:
    return {
        "action": action,
        "repository": {"id": 1, "full_name": "acme/web"},
        "workflow_run": {
            "id": 555,
            "workflow_id": 42,
            "name": "CI",
            "status": "completed",
            "conclusion": conclusion,
            "head_branch": "main",
            "head_sha": "abc123def4567890",
            "run_started_at": "2024-05-01T10:00:00Z",
            "updated_at": "2024-05-01T10:02:30Z",
            "triggering_actor": {"login": "octocat"},
        },
    }


def _gitlab_payload(status: str = "failed") -> dict[str, Any]:
    return {
        "object_kind": "pipeline",
        "object_attributes": {
            "id": 31,
            "ref": "develop",
            "sha": "feedbeef12345678",
            "status": status,
            "duration": 95,
            "created_at": "2024-05-01 10:00:00 UTC",
            "finished_at": "2024-05-01 10:01:35 UTC",
            "variables": [{"key": "ENVIRONMENT", "value": "staging"}],
        },
        "project": {"id": 9, "name": "api", "path_with_namespace": "acme/api"},
        "user": {"username": "dev"},
    }


def _jenkins_payload(phase: str = "COMPLETED", status: str = "FAILURE") -> dict[str, Any]:
    return {
        "name": "backend-build",
        "build": {
            "number": 17,
            "phase": phase,
            "status": status,
            "duration": 61500,
            "scm": {"branch": "origin/main", "commit": "0123456789abcdef"},
        },
    }


def _sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _client_for(settings: Settings, channel: FakeChannel) -> TestClient:
    bus = BroadcastBus()
    metrics = DeliveryMetrics()
    dispatcher = NotificationDispatcher(channels=[channel], bus=bus, metrics=metrics)
    return TestClient(TestServer(create_app(settings, dispatcher, bus, metrics)))


# ── Verification ────────────────────────────────────────────────


class TestVerification:
    def test_github_signature_ok(self) -> None:
        body = b'{"a": 1}'
        verify_github_signature("s3cret", body, _sign("s3cret", body))

    def test_github_signature_disabled_without_secret(self) -> None:
        verify_github_signature("", b"{}", None)

    @pytest.mark.parametrize("header", [None, "sha1=abc", "sha256=deadbeef"])
    def test_github_signature_rejected(self, header: str | None) -> None:
        with pytest.raises(WebhookError) as exc_info:
            verify_github_signature("s3cret", b"{}", header)
        assert exc_info.value.status == 401

    def test_gitlab_token(self) -> None:
        verify_gitlab_token("tok", "tok")
        verify_gitlab_token("", None)
        with pytest.raises(WebhookError):
            verify_gitlab_token("tok", "wrong")


# ── Parsing ─────────────────────────────────────────────────────


class TestParsing:
    def test_github_completed_failure(self) -> None:
        completed = parse_github("workflow_run", _github_payload())
        assert completed is not None
        run = completed.run
        assert run.status == "failed"
        assert run.pipeline_id == "42"
        assert run.pipeline_name == "acme/web / CI"
        assert run.duration == 150.0
        assert run.triggered_by == "octocat"
        assert completed.trigger.commit == "abc123def4567890"
        assert completed.trigger.platform == "github_actions"

    @pytest.mark.parametrize(
        ("conclusion", "status"),
        [("success", "success"), ("cancelled", "cancelled"), ("timed_out", "timeout"), ("neutral", "unknown")],
    )
    def test_github_conclusions(self, conclusion: str, status: str) -> None:
        completed = parse_github("workflow_run", _github_payload(conclusion))
        assert completed is not None
        assert completed.run.status == status

    def test_github_ignores_other_events(self) -> None:
        assert parse_github("push", _github_payload()) is None
        assert parse_github("workflow_run", _github_payload(action="requested")) is None

    def test_gitlab_finished(self) -> None:
        completed = parse_gitlab("Pipeline Hook", _gitlab_payload())
        assert completed is not None
        assert completed.run.status == "failed"
        assert completed.run.pipeline_id == "9"
        assert completed.run.pipeline_name == "acme/api"
        assert completed.run.duration == 95.0
        assert completed.trigger.environment == "staging"

    def test_gitlab_non_numeric_duration_uses_timestamps(self) -> None:
        payload = _gitlab_payload()
        payload["object_attributes"]["duration"] = "n/a"
        completed = parse_gitlab("Pipeline Hook", payload)
        assert completed is not None
        assert completed.run.duration == 95.0

    def test_gitlab_running_ignored(self) -> None:
        assert parse_gitlab("Pipeline Hook", _gitlab_payload("running")) is None
        assert parse_gitlab("Push Hook", {"object_kind": "push"}) is None

    def test_jenkins_completed(self) -> None:
        completed = parse_jenkins(_jenkins_payload())
        assert completed is not None
        assert completed.run.id == "backend-build#17"
        assert completed.run.status == "failed"
        assert completed.run.duration == 61.5
        assert completed.run.branch == "origin/main"

    def test_jenkins_other_phases_ignored(self) -> None:
        assert parse_jenkins(_jenkins_payload(phase="STARTED")) is None
        assert parse_jenkins({}) is None


# ── Routes ──────────────────────────────────────────────────────


class TestWebhookRoutes:
    async def test_github_failure_dispatches_alert(self) -> None:
        ch = FakeChannel()
        async with _client_for(Settings(), ch) as client:
            resp = await client.post(
                "/api/webhooks/github",
                json=_github_payload(),
                headers={"X-GitHub-Event": "workflow_run"},
            )
            assert resp.status == 200
            body = await resp.json()
        assert body["data"]["alertSent"] is True
        assert body["data"]["succeeded"] == ["fake"]
        assert ch.sent[0].alert_type == "failure"
        assert ch.sent[0].short_sha == "abc123de"

    async def test_github_success_no_alert_by_default(self) -> None:
        ch = FakeChannel()
        async with _client_for(Settings(), ch) as client:
            body = await (
                await client.post(
                    "/api/webhooks/github",
                    json=_github_payload("success"),
                    headers={"X-GitHub-Event": "workflow_run"},
                )
            ).json()
        assert body["data"]["alertSent"] is False
        assert ch.sent == []

    async def test_notify_on_success(self) -> None:
        ch = FakeChannel()
        settings = Settings(dispatch=DispatchConfig(notify_on_success=True))
        async with _client_for(settings, ch) as client:
            await client.post(
                "/api/webhooks/github",
                json=_github_payload("success"),
                headers={"X-GitHub-Event": "workflow_run"},
            )
        assert len(ch.sent) == 1

    async def test_github_bad_signature_401(self) -> None:
        ch = FakeChannel()
        settings = Settings(webhooks=WebhooksConfig(github_secret=SecretStr("s3cret")))
        async with _client_for(settings, ch) as client:
            resp = await client.post(
                "/api/webhooks/github",
                json=_github_payload(),
                headers={"X-GitHub-Event": "workflow_run", "X-Hub-Signature-256": "sha256=00"},
            )
            assert resp.status == 401
        assert ch.sent == []

    async def test_github_signed_request_accepted(self) -> None:
        ch = FakeChannel()
        settings = Settings(webhooks=WebhooksConfig(github_secret=SecretStr("s3cret")))
        body = json.dumps(_github_payload()).encode()
        async with _client_for(settings, ch) as client:
            resp = await client.post(
                "/api/webhooks/github",
                data=body,
                headers={
                    "Content-Type": "application/json",
                    "X-GitHub-Event": "workflow_run",
                    "X-Hub-Signature-256": _sign("s3cret", body),
                },
            )
            assert resp.status == 200
        assert len(ch.sent) == 1

    async def test_ignored_event(self) -> None:
        ch = FakeChannel()
        async with _client_for(Settings(), ch) as client:
            body = await (
                await client.post(
                    "/api/webhooks/github", json={"zen": "hi"}, headers={"X-GitHub-Event": "ping"}
                )
            ).json()
        assert body == {"success": True, "message": "Event ignored"}

    async def test_gitlab_token_checked(self) -> None:
        ch = FakeChannel()
        settings = Settings(webhooks=WebhooksConfig(gitlab_token=SecretStr("tok")))
        async with _client_for(settings, ch) as client:
            bad = await client.post(
                "/api/webhooks/gitlab", json=_gitlab_payload(), headers={"X-Gitlab-Token": "nope"}
            )
            assert bad.status == 401
            good = await client.post(
                "/api/webhooks/gitlab", json=_gitlab_payload(), headers={"X-Gitlab-Token": "tok"}
            )
            assert good.status == 200
        assert len(ch.sent) == 1
        assert ch.sent[0].environment == "staging"

    async def test_gitlab_route_tolerates_bad_duration(self) -> None:
        ch = FakeChannel()
        payload = _gitlab_payload()
        payload["object_attributes"]["duration"] = "n/a"
        async with _client_for(Settings(), ch) as client:
            resp = await client.post(
                "/api/webhooks/gitlab", json=payload, headers={"X-Gitlab-Event": "Pipeline Hook"}
            )
            assert resp.status == 200
            body = await resp.json()
        assert body["data"]["run"]["duration"] == 95.0
        assert len(ch.sent) == 1

    async def test_jenkins_route(self) -> None:
        ch = FakeChannel()
        async with _client_for(Settings(), ch) as client:
            resp = await client.post("/api/webhooks/jenkins", json=_jenkins_payload())
            body = await resp.json()
        assert body["data"]["run"]["id"] == "backend-build#17"
        assert ch.sent[0].platform == "jenkins"

    async def test_invalid_payload_400(self) -> None:
        async with _client_for(Settings(), FakeChannel()) as client:
            resp = await client.post(
                "/api/webhooks/jenkins",
                data="[not json",
                headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400
