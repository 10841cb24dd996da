"""Alert notification subsystem — formatting, delivery and dispatch."""

from cicd_dashboard.notify.channels import (
    BotState,
    DiscordChannel,
    EmailChannel,
    NotificationChannel,
    TeamsChannel,
)
from cicd_dashboard.notify.dispatcher import NotificationDispatcher
from cicd_dashboard.notify.factory import create_notification_stack
from cicd_dashboard.notify.formatters import (
    build_pipeline_event,
    build_system_event,
    format_discord_embed,
    format_email,
    format_teams_card,
)
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.notify.types import (
    AlertEvent,
    AlertKind,
    DeliveryResult,
    Severity,
    to_channel_severity,
)

__all__ = [
    "AlertEvent",
    "AlertKind",
    "BotState",
    "DeliveryMetrics",
    "DeliveryResult",
    "DiscordChannel",
    "EmailChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "Severity",
    "TeamsChannel",
    "build_pipeline_event",
    "build_system_event",
    "create_notification_stack",
    "format_discord_embed",
    "format_email",
    "format_teams_card",
    "to_channel_severity",
]
