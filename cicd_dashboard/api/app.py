"""HTTP boundary — aiohttp application serving alert triggers and webhooks.

Exposes:
- ``GET  /health``                 → liveness
- ``GET  /api``                    → API index
- ``GET  /ws``                     → realtime websocket
- ``/api/demo/*``                  → demo triggers and channel status
- ``POST /api/alerts/{system,pipeline}`` → alert triggers
- ``POST /api/webhooks/{github,gitlab,jenkins}`` → CI webhooks
- ``GET  /api/monitoring/metrics`` → delivery metrics
"""

from __future__ import annotations

import json
import random
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from aiohttp import web
from pydantic import ValidationError

from cicd_dashboard import __version__
from cicd_dashboard.api.keys import BUS, DISPATCHER, EMAIL_CHANNEL, METRICS, SETTINGS, STARTED_AT
from cicd_dashboard.api.webhooks import (
    CompletedRun,
    WebhookError,
    parse_github,
    parse_gitlab,
    parse_jenkins,
    verify_github_signature,
    verify_gitlab_token,
)
from cicd_dashboard.api.websocket import handle_websocket
from cicd_dashboard.core.config import Settings
from cicd_dashboard.core.types import (
    AlertSeverity,
    AlertType,
    PipelinePlatform,
    PipelineRun,
    PipelineTrigger,
    RunStatus,
    SystemTrigger,
    new_run_id,
)
from cicd_dashboard.notify.channels import DiscordChannel, EmailChannel
from cicd_dashboard.notify.dispatcher import NotificationDispatcher
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.notify.types import AlertEvent, AlertKind, DeliveryResult
from cicd_dashboard.realtime.bus import DASHBOARD_TOPIC, BroadcastBus, pipeline_topic
from cicd_dashboard.realtime.exceptions import InvalidTopicError

logger = structlog.get_logger(__name__)

RUN_COMPLETED_EVENT = "pipeline:run:completed"


class ApiError(Exception):
    """Request failed with a known HTTP status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


def _error_response(status: int, error: str, **extra: Any) -> web.Response:
    return web.json_response({"success": False, "error": error, **extra}, status=status)


@web.middleware
async def _error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render errors as ``{"success": false, "error": ...}`` JSON."""
    try:
        return await handler(request)
    except ApiError as exc:
        logger.warning("request_rejected", path=request.path, status=exc.status, error=exc.message)
        return _error_response(exc.status, exc.message)
    except ValidationError as exc:
        logger.warning("request_invalid", path=request.path, errors=exc.error_count())
        return _error_response(
            400,
            "Validation error",
            details=json.loads(exc.json(include_url=False, include_context=False)),
        )
    except web.HTTPNotFound:
        return _error_response(
            404,
            "Route not found",
            message=f"The requested route {request.path} does not exist.",
        )
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("request_error", path=request.path, method=request.method)
        return _error_response(500, "Internal server error")


async def _read_json(request: web.Request, *, required: bool = True) -> dict[str, Any]:
    if not request.can_read_body:
        if required:
            raise ApiError(400, "Request body is required")
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise ApiError(400, "Request body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise ApiError(400, "Request body must be a JSON object")
    return body


def _delivery_summary(results: list[DeliveryResult]) -> dict[str, Any]:
    return {
        "attempted": [r.channel for r in results],
        "succeeded": [r.channel for r in results if r.success],
        "deliveries": [r.model_dump() for r in results],
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Run processing (demo + webhooks) ────────────────────────────


async def _publish_run(bus: BroadcastBus, run: PipelineRun) -> None:
    payload = run.model_dump(mode="json", by_alias=True)
    await bus.publish(DASHBOARD_TOPIC, RUN_COMPLETED_EVENT, payload)
    try:
        topic = pipeline_topic(run.pipeline_id)
    except InvalidTopicError:
        logger.warning("run_topic_invalid", pipeline_id=run.pipeline_id)
        return
    await bus.publish(topic, RUN_COMPLETED_EVENT, payload)


async def _process_run(app: web.Application, completed: CompletedRun) -> dict[str, Any]:
    """Broadcast a finished run and alert on it when the policy says so."""
    settings = app[SETTINGS]
    run = completed.run

    await _publish_run(app[BUS], run)

    should_alert = run.status == RunStatus.FAILED or (
        settings.dispatch.notify_on_success and run.status == RunStatus.SUCCESS
    )
    results: list[DeliveryResult] = []
    if should_alert:
        results = await app[DISPATCHER].dispatch_pipeline_alert(completed.trigger)

    logger.info(
        "run_processed",
        run_id=run.id,
        pipeline_id=run.pipeline_id,
        status=run.status,
        alert_sent=should_alert,
    )
    return {
        "run": run.model_dump(mode="json", by_alias=True),
        "alertSent": should_alert,
        **_delivery_summary(results),
    }


# ── Core routes ─────────────────────────────────────────────────


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "healthy",
        "timestamp": _now_iso(),
        "uptime": round(time.monotonic() - request.app[STARTED_AT], 3),
        "environment": request.app[SETTINGS].environment,
    })


async def _handle_index(request: web.Request) -> web.Response:
    return web.json_response({
        "name": "CI/CD Pipeline Health Dashboard API",
        "version": __version__,
        "description": "Alert dispatch and realtime updates for CI/CD pipeline health",
        "endpoints": {
            "alerts": "/api/alerts",
            "webhooks": "/api/webhooks",
            "demo": "/api/demo",
            "monitoring": "/api/monitoring",
            "websocket": "/ws",
        },
        "health": "/health",
    })


# ── Demo routes ─────────────────────────────────────────────────


def _demo_email_channel(request: web.Request) -> EmailChannel:
    channel = request.app.get(EMAIL_CHANNEL)
    if channel is None:
        raise ApiError(503, "Email channel is not available")
    return channel


async def _handle_demo_alert_email(request: web.Request) -> web.Response:
    channel = _demo_email_channel(request)
    demo_recipient = request.app[SETTINGS].email.demo_recipient
    recipients = [demo_recipient] if demo_recipient else channel.recipients

    event = AlertEvent(
        kind=AlertKind.PIPELINE,
        pipeline_name="Frontend CI/CD Demo Pipeline",
        alert_type=AlertType.FAILURE.value,
        severity=AlertSeverity.HIGH,
        message=(
            "Pipeline failed during test execution. "
            "The build process encountered errors in the unit test suite."
        ),
        run_id="demo-run-12345",
        branch="main",
        commit_sha="abc123def456789",
        status=RunStatus.FAILED.value,
    )
    logger.info("demo_alert_email", recipients=recipients)

    ok = await channel.deliver(channel.render(event), to=recipients)
    if not ok:
        return _error_response(
            500,
            "Failed to send demo alert email",
            message="Please check email configuration and logs",
        )
    return web.json_response({
        "success": True,
        "message": f"Demo alert email sent successfully to {', '.join(recipients)}",
        "data": {
            "recipients": recipients,
            "alertType": event.alert_type,
            "severity": str(event.severity),
            "timestamp": event.timestamp.isoformat(),
        },
    })


async def _handle_demo_pipeline_run(request: web.Request) -> web.Response:
    body = await _read_json(request, required=False)
    status = str(body.get("status") or RunStatus.FAILED.value).lower()
    pipeline_id = str(body.get("pipelineId") or "demo-pipeline-1")

    now = datetime.now(timezone.utc)
    run = PipelineRun(
        id=new_run_id("demo-run"),
        pipeline_id=pipeline_id,
        pipeline_name="Demo Frontend Pipeline",
        status=status,
        platform=PipelinePlatform.GITHUB_ACTIONS.value,
        duration=float(random.randint(60, 360)),
        branch="main",
        commit_sha=uuid.uuid4().hex[:13],
        triggered_by="demo@example.com",
        start_time=now - timedelta(minutes=5),
        end_time=now,
    )
    trigger = PipelineTrigger(
        pipeline_name=run.pipeline_name,
        status=status,
        duration=run.duration,
        platform=run.platform,
        environment="demo",
        commit=run.commit_sha,
        branch=run.branch,
        run_id=run.id,
        pipeline_id=pipeline_id,
        severity=AlertSeverity.HIGH if status == RunStatus.FAILED else None,
        message=(
            f"Pipeline run #{run.id} failed on branch {run.branch}. "
            "Please check the logs for more details."
            if status == RunStatus.FAILED
            else None
        ),
    )
    logger.info("demo_pipeline_run", status=status, pipeline_id=pipeline_id)

    data = await _process_run(request.app, CompletedRun(run=run, trigger=trigger))
    return web.json_response({
        "success": True,
        "message": "Pipeline run simulated successfully",
        "data": data,
    })


async def _handle_demo_test_email(request: web.Request) -> web.Response:
    channel = _demo_email_channel(request)
    configured = channel.is_configured()
    connection_ok = await channel.test_connection() if configured else False
    email = request.app[SETTINGS].email
    return web.json_response({
        "success": True,
        "data": {
            "emailConfigured": configured,
            "connectionTest": connection_ok,
            "recipients": channel.recipients,
            "emailHost": email.host,
        },
    })


async def _handle_demo_status(request: web.Request) -> web.Response:
    channels: dict[str, dict[str, Any]] = {}
    for ch in request.app[DISPATCHER].channels:
        entry: dict[str, Any] = {
            "configured": ch.is_configured(),
            "enabled": ch.is_enabled(),
        }
        if isinstance(ch, DiscordChannel):
            entry["state"] = ch.state.value
        channels[ch.name] = entry

    return web.json_response({
        "success": True,
        "data": {
            "environment": request.app[SETTINGS].environment,
            "channels": channels,
            "websocketConnections": request.app[BUS].connection_count,
            "timestamp": _now_iso(),
        },
    })


# ── Alert triggers ──────────────────────────────────────────────


async def _handle_system_alert(request: web.Request) -> web.Response:
    trigger = SystemTrigger.model_validate(await _read_json(request))
    results = await request.app[DISPATCHER].dispatch_system_alert(trigger)
    return web.json_response({"success": True, "data": _delivery_summary(results)})


async def _handle_pipeline_alert(request: web.Request) -> web.Response:
    trigger = PipelineTrigger.model_validate(await _read_json(request))
    results = await request.app[DISPATCHER].dispatch_pipeline_alert(trigger)
    return web.json_response({"success": True, "data": _delivery_summary(results)})


# ── Webhooks ────────────────────────────────────────────────────


async def _webhook_response(
    request: web.Request,
    platform: str,
    completed: CompletedRun | None,
) -> web.Response:
    if completed is None:
        return web.json_response({"success": True, "message": "Event ignored"})
    logger.info("webhook_run_completed", platform=platform, run_id=completed.run.id)
    data = await _process_run(request.app, completed)
    return web.json_response({
        "success": True,
        "message": "Webhook processed successfully",
        "data": data,
    })


def _decode_payload(raw: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw or b"{}")
    except json.JSONDecodeError as exc:
        raise ApiError(400, "Webhook payload is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ApiError(400, "Webhook payload must be a JSON object")
    return payload


async def _handle_github_webhook(request: web.Request) -> web.Response:
    raw = await request.read()
    secret = request.app[SETTINGS].webhooks.github_secret.get_secret_value()
    try:
        verify_github_signature(secret, raw, request.headers.get("X-Hub-Signature-256"))
    except WebhookError as exc:
        raise ApiError(exc.status, str(exc)) from exc
    completed = parse_github(request.headers.get("X-GitHub-Event"), _decode_payload(raw))
    return await _webhook_response(request, "github", completed)


async def _handle_gitlab_webhook(request: web.Request) -> web.Response:
    raw = await request.read()
    token = request.app[SETTINGS].webhooks.gitlab_token.get_secret_value()
    try:
        verify_gitlab_token(token, request.headers.get("X-Gitlab-Token"))
    except WebhookError as exc:
        raise ApiError(exc.status, str(exc)) from exc
    completed = parse_gitlab(request.headers.get("X-Gitlab-Event"), _decode_payload(raw))
    return await _webhook_response(request, "gitlab", completed)


async def _handle_jenkins_webhook(request: web.Request) -> web.Response:
    completed = parse_jenkins(_decode_payload(await request.read()))
    return await _webhook_response(request, "jenkins", completed)


# ── Monitoring ──────────────────────────────────────────────────


async def _handle_metrics(request: web.Request) -> web.Response:
    bus = request.app[BUS]
    return web.json_response({
        "success": True,
        "data": {
            "delivery": request.app[METRICS].summary(),
            "realtime": {
                "connections": bus.connection_count,
                "topics": bus.topic_counts(),
            },
            "timestamp": _now_iso(),
        },
    })


# ── Application ─────────────────────────────────────────────────


def create_app(
    settings: Settings,
    dispatcher: NotificationDispatcher,
    bus: BroadcastBus,
    metrics: DeliveryMetrics,
    email_channel: EmailChannel | None = None,
) -> web.Application:
    """Create the aiohttp application."""
    app = web.Application(middlewares=[_error_middleware])
    app[SETTINGS] = settings
    app[DISPATCHER] = dispatcher
    app[BUS] = bus
    app[METRICS] = metrics
    if email_channel is not None:
        app[EMAIL_CHANNEL] = email_channel
    app[STARTED_AT] = time.monotonic()

    app.router.add_get("/health", _handle_health)
    app.router.add_get("/api", _handle_index)
    app.router.add_get("/ws", handle_websocket)

    app.router.add_post("/api/demo/alert-email", _handle_demo_alert_email)
    app.router.add_post("/api/demo/pipeline-run", _handle_demo_pipeline_run)
    app.router.add_get("/api/demo/test-email", _handle_demo_test_email)
    app.router.add_get("/api/demo/status", _handle_demo_status)

    app.router.add_post("/api/alerts/system", _handle_system_alert)
    app.router.add_post("/api/alerts/pipeline", _handle_pipeline_alert)

    app.router.add_post("/api/webhooks/github", _handle_github_webhook)
    app.router.add_post("/api/webhooks/gitlab", _handle_gitlab_webhook)
    app.router.add_post("/api/webhooks/jenkins", _handle_jenkins_webhook)

    app.router.add_get("/api/monitoring/metrics", _handle_metrics)
    return app


async def start_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 3001,
) -> web.AppRunner:
    """Start serving *app*. Returns the runner for cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("server_started", host=host, port=port)
    return runner
