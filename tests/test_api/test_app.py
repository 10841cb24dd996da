"""Tests for the HTTP boundary — routes, error middleware and demo triggers."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer
from pydantic import SecretStr

from cicd_dashboard.api.app import create_app
from cicd_dashboard.core.config import EmailConfig, Settings
from cicd_dashboard.notify.channels import EmailChannel, NotificationChannel
from cicd_dashboard.notify.dispatcher import NotificationDispatcher
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.notify.types import AlertEvent
from cicd_dashboard.realtime.bus import BroadcastBus


# ── Helpers ─────────────────────────────────────────────────────


class FakeChannel(NotificationChannel):
    """In-memory channel for testing."""

    def __init__(self, name: str, configured: bool = True, result: bool = True) -> None:
        self.name = name
        self.sent: list[AlertEvent] = []
        self._configured = configured
        self._result = result

    def is_configured(self) -> bool:
        return self._configured

    def render(self, event: AlertEvent) -> AlertEvent:
        return event

    async def deliver(self, message: AlertEvent) -> bool:
        self.sent.append(message)
        return self._result

    async def close(self) -> None:
        return None


def _email_channel(**kw: object) -> EmailChannel:
    defaults: dict[str, object] = {
        "username": "bot@example.com",
        "password": SecretStr("pw"),
        "recipients": ["ops@example.com"],
    }
    defaults.update(kw)
    return EmailChannel(EmailConfig(**defaults), production=False)  # type: ignore[arg-type]


def _app(
    channels: list[NotificationChannel] | None = None,
    settings: Settings | None = None,
    email_channel: EmailChannel | None = None,
) -> tuple[web.Application, DeliveryMetrics]:
    bus = BroadcastBus()
    metrics = DeliveryMetrics()
    dispatcher = NotificationDispatcher(channels=channels or [], bus=bus, metrics=metrics)
    app = create_app(
        settings or Settings(),
        dispatcher,
        bus,
        metrics,
        email_channel=email_channel,
    )
    return app, metrics


# ── Core routes ─────────────────────────────────────────────────


class TestCoreRoutes:
    async def test_health(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            body = await resp.json()
        assert body["status"] == "healthy"
        assert body["environment"] == "development"
        assert body["uptime"] >= 0

    async def test_api_index(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            body = await (await client.get("/api")).json()
        assert body["endpoints"]["websocket"] == "/ws"
        assert body["health"] == "/health"

    async def test_unknown_route_json_404(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/api/nope")
            assert resp.status == 404
            body = await resp.json()
        assert body["success"] is False
        assert body["error"] == "Route not found"


# ── Alert triggers ──────────────────────────────────────────────


class TestAlertRoutes:
    async def test_system_alert(self) -> None:
        teams = FakeChannel("teams")
        email = FakeChannel("email", configured=False)
        app, _ = _app(channels=[email, teams])
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/api/alerts/system",
                json={"alertType": "disk_usage", "message": "disk at 92%", "data": {"host": "node-1"}},
            )
            assert resp.status == 200
            body = await resp.json()

        assert body["success"] is True
        assert body["data"]["attempted"] == ["teams"]
        assert body["data"]["succeeded"] == ["teams"]
        assert teams.sent[0].metadata == {"host": "node-1"}

    async def test_pipeline_alert_reports_failures(self) -> None:
        ok, bad = FakeChannel("email"), FakeChannel("discord", result=False)
        app, metrics = _app(channels=[ok, bad])
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/api/alerts/pipeline",
                json={"pipelineName": "Backend API", "status": "failed", "branch": "main"},
            )
            body = await resp.json()

        assert body["data"]["attempted"] == ["email", "discord"]
        assert body["data"]["succeeded"] == ["email"]
        assert body["data"]["deliveries"][1] == {
            "channel": "discord",
            "success": False,
            "error": "delivery_failed",
        }
        assert ok.sent[0].alert_type == "failure"
        assert metrics.summary()["deliveries_failed"] == 1

    async def test_empty_pipeline_alert_uses_defaults(self) -> None:
        ch = FakeChannel("email")
        app, _ = _app(channels=[ch])
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/alerts/pipeline", json={})
            assert resp.status == 200
        assert ch.sent[0].pipeline_name == "Unknown"
        assert ch.sent[0].status == "unknown"

    async def test_invalid_json_400(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/api/alerts/system",
                data="{not json",
                headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400
            body = await resp.json()
        assert body == {"success": False, "error": "Request body is not valid JSON"}

    async def test_non_object_body_400(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/alerts/system", json=[1, 2])
            assert resp.status == 400

    async def test_validation_error_400(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/alerts/pipeline", json={"severity": "apocalyptic"})
            assert resp.status == 400
            body = await resp.json()
        assert body["success"] is False
        assert body["error"] == "Validation error"
        assert body["details"]

    async def test_unexpected_error_500(self) -> None:
        app, _ = _app()
        with patch.object(
            NotificationDispatcher,
            "dispatch_system_alert",
            AsyncMock(side_effect=RuntimeError("kaboom")),
        ):
            async with TestClient(TestServer(app)) as client:
                resp = await client.post("/api/alerts/system", json={})
                assert resp.status == 500
                body = await resp.json()
        assert body == {"success": False, "error": "Internal server error"}


# ── Demo routes ─────────────────────────────────────────────────


class TestDemoRoutes:
    async def test_alert_email_demo_mode(self) -> None:
        email = _email_channel()
        app, _ = _app(email_channel=email)
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/demo/alert-email")
            assert resp.status == 200
            body = await resp.json()
        assert body["success"] is True
        assert body["data"]["recipients"] == ["ops@example.com"]
        assert body["data"]["severity"] == "high"

    async def test_alert_email_prefers_demo_recipient(self) -> None:
        email = _email_channel()
        settings = Settings(email=EmailConfig(demo_recipient="demo@example.com"))
        app, _ = _app(settings=settings, email_channel=email)
        async with TestClient(TestServer(app)) as client:
            body = await (await client.post("/api/demo/alert-email")).json()
        assert body["data"]["recipients"] == ["demo@example.com"]

    async def test_alert_email_failure_500(self) -> None:
        email = _email_channel(recipients=[])
        app, _ = _app(email_channel=email)
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/demo/alert-email")
            assert resp.status == 500
            body = await resp.json()
        assert body["error"] == "Failed to send demo alert email"

    async def test_alert_email_without_channel_503(self) -> None:
        app, _ = _app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/demo/alert-email")
            assert resp.status == 503

    async def test_test_email_unconfigured_skips_connection(self) -> None:
        email = _email_channel(username="")
        app, _ = _app(email_channel=email)
        with patch.object(email, "test_connection", AsyncMock(return_value=True)) as connection_check:
            async with TestClient(TestServer(app)) as client:
                body = await (await client.get("/api/demo/test-email")).json()
        connection_check.assert_not_awaited()
        assert body["data"]["emailConfigured"] is False
        assert body["data"]["connectionTest"] is False

    async def test_test_email_configured(self) -> None:
        email = _email_channel()
        app, _ = _app(email_channel=email)
        with patch.object(email, "test_connection", AsyncMock(return_value=True)):
            async with TestClient(TestServer(app)) as client:
                body = await (await client.get("/api/demo/test-email")).json()
        assert body["data"]["connectionTest"] is True
        assert body["data"]["emailHost"] == "smtp.gmail.com"

    async def test_status(self) -> None:
        app, _ = _app(channels=[FakeChannel("email"), FakeChannel("teams", configured=False)])
        async with TestClient(TestServer(app)) as client:
            body = await (await client.get("/api/demo/status")).json()
        data = body["data"]
        assert data["environment"] == "development"
        assert data["channels"]["email"] == {"configured": True, "enabled": True}
        assert data["channels"]["teams"] == {"configured": False, "enabled": False}
        assert data["websocketConnections"] == 0

    async def test_pipeline_run_success_sends_no_alert(self) -> None:
        ch = FakeChannel("email")
        app, _ = _app(channels=[ch])
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/api/demo/pipeline-run", json={"status": "success", "pipelineId": "42"}
            )
            body = await resp.json()
        assert body["data"]["alertSent"] is False
        assert body["data"]["run"]["pipelineId"] == "42"
        assert ch.sent == []

    async def test_pipeline_run_failure_alerts_all_channels(self) -> None:
        a, b = FakeChannel("email"), FakeChannel("teams")
        app, _ = _app(channels=[a, b])
        async with TestClient(TestServer(app)) as client:
            body = await (await client.post("/api/demo/pipeline-run")).json()
        assert body["data"]["alertSent"] is True
        assert body["data"]["attempted"] == ["email", "teams"]
        assert a.sent[0].pipeline_id == "demo-pipeline-1"
        assert str(a.sent[0].severity) == "high"


# ── Monitoring ──────────────────────────────────────────────────


class TestMonitoring:
    async def test_metrics_summary(self) -> None:
        app, _ = _app(channels=[FakeChannel("email")])
        async with TestClient(TestServer(app)) as client:
            await client.post("/api/alerts/system", json={"message": "hi"})
            body = await (await client.get("/api/monitoring/metrics")).json()
        delivery = body["data"]["delivery"]
        assert delivery["alerts_dispatched"] == 1
        assert delivery["channels"]["email"]["successes"] == 1
        assert body["data"]["realtime"] == {"connections": 0, "topics": {}}
