"""Convenience factory for wiring the notification stack."""

from __future__ import annotations

from cicd_dashboard.core.config import Settings
from cicd_dashboard.notify.channels import (
    DiscordChannel,
    EmailChannel,
    NotificationChannel,
    TeamsChannel,
)
from cicd_dashboard.notify.dispatcher import NotificationDispatcher
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.realtime.bus import BroadcastBus


def create_notification_stack(
    settings: Settings,
    bus: BroadcastBus | None = None,
    metrics: DeliveryMetrics | None = None,
) -> NotificationDispatcher:
    """Build every channel plus a dispatcher from settings.

    All three channels are registered regardless of credentials; the
    dispatcher skips the ones that are not configured at dispatch time,
    and the status route can still report them.
    """
    dashboard_url = settings.server.frontend_url
    channels: list[NotificationChannel] = [
        EmailChannel(
            settings.email,
            production=settings.is_production,
            dashboard_url=dashboard_url,
        ),
        DiscordChannel(settings.discord),
        TeamsChannel(settings.teams, dashboard_url=dashboard_url),
    ]

    return NotificationDispatcher(
        channels=channels,
        bus=bus,
        metrics=metrics,
        timeout_secs=settings.dispatch.timeout_secs,
    )
