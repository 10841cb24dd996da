"""Websocket endpoint — bridges dashboard clients onto the broadcast bus.

Every frame in either direction is a JSON object ``{"event": ..., "data": ...}``.
Clients manage their topics with:

- ``subscribe:dashboard`` / ``unsubscribe:dashboard``
- ``subscribe:alerts`` / ``unsubscribe:alerts``
- ``subscribe:pipeline`` / ``unsubscribe:pipeline`` (data = pipeline id)

A malformed message gets an ``error`` event back; the connection stays open.
"""

from __future__ import annotations

import json
import uuid
from functools import partial
from typing import Any

import structlog
from aiohttp import WSMsgType, web

from cicd_dashboard.api.keys import BUS
from cicd_dashboard.realtime.bus import (
    ALERTS_TOPIC,
    DASHBOARD_TOPIC,
    BroadcastBus,
    Subscriber,
    pipeline_topic,
)
from cicd_dashboard.realtime.exceptions import RealtimeError

logger = structlog.get_logger(__name__)

_dumps = partial(json.dumps, default=str)

HEARTBEAT_SECS = 30.0


class WebSocketSubscriber(Subscriber):
    """Bus subscriber backed by an aiohttp websocket."""

    def __init__(self, ws: web.WebSocketResponse, connection_id: str | None = None) -> None:
        self._ws = ws
        self._connection_id = connection_id or uuid.uuid4().hex

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send(self, event_name: str, payload: Any) -> None:
        if self._ws.closed:
            raise ConnectionResetError("websocket is closed")
        await self._ws.send_json({"event": event_name, "data": payload}, dumps=_dumps)


def _resolve_topic(kind: str, data: Any) -> str:
    if kind == "dashboard":
        return DASHBOARD_TOPIC
    if kind == "alerts":
        return ALERTS_TOPIC
    if kind == "pipeline":
        if isinstance(data, dict):
            data = data.get("pipelineId")
        if data is None or isinstance(data, (dict, list)):
            raise ValueError("subscribe:pipeline requires a pipeline id")
        return pipeline_topic(str(data))
    raise ValueError(f"Unknown topic kind {kind!r}")


async def _handle_message(bus: BroadcastBus, sub: WebSocketSubscriber, raw: str) -> None:
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        await sub.send("error", {"message": "Message is not valid JSON"})
        return
    if not isinstance(msg, dict) or not isinstance(msg.get("event"), str):
        await sub.send("error", {"message": "Message must be an object with an 'event' string"})
        return

    event = msg["event"]
    action, _, kind = event.partition(":")
    if action not in ("subscribe", "unsubscribe"):
        await sub.send("error", {"message": f"Unknown event {event!r}"})
        return

    try:
        topic = _resolve_topic(kind, msg.get("data"))
        if action == "subscribe":
            bus.subscribe(sub.connection_id, topic)
        else:
            bus.unsubscribe(sub.connection_id, topic)
    except (ValueError, RealtimeError) as exc:
        await sub.send("error", {"message": str(exc), "event": event})
        return

    await sub.send(f"{action}d", {"topic": topic})


async def handle_websocket(request: web.Request) -> web.WebSocketResponse:
    bus = request.app[BUS]
    ws = web.WebSocketResponse(heartbeat=HEARTBEAT_SECS)
    await ws.prepare(request)

    sub = WebSocketSubscriber(ws)
    bus.connect(sub)

    reason = "client_closed"
    try:
        await sub.send("connected", {"connectionId": sub.connection_id})
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await _handle_message(bus, sub, msg.data)
            elif msg.type == WSMsgType.ERROR:
                reason = "transport_error"
                logger.warning(
                    "websocket_error",
                    connection_id=sub.connection_id,
                    error=repr(ws.exception()),
                )
            else:
                await sub.send("error", {"message": "Only text frames are supported"})
    finally:
        bus.disconnect(sub.connection_id, reason=reason)

    return ws
