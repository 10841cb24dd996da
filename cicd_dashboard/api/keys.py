"""Typed application keys shared by the route modules."""

from __future__ import annotations

from aiohttp import web

from cicd_dashboard.core.config import Settings
from cicd_dashboard.notify.channels import EmailChannel
from cicd_dashboard.notify.dispatcher import NotificationDispatcher
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.realtime.bus import BroadcastBus

SETTINGS = web.AppKey("settings", Settings)
DISPATCHER = web.AppKey("dispatcher", NotificationDispatcher)
BUS = web.AppKey("bus", BroadcastBus)
METRICS = web.AppKey("metrics", DeliveryMetrics)
EMAIL_CHANNEL = web.AppKey("email_channel", EmailChannel)
STARTED_AT = web.AppKey("started_at", float)
