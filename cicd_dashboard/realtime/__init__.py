"""Realtime broadcast bus — topic-scoped pub/sub for dashboard clients."""

from cicd_dashboard.realtime.bus import (
    ALERTS_TOPIC,
    DASHBOARD_TOPIC,
    BroadcastBus,
    ConnectionState,
    Subscriber,
    pipeline_topic,
)
from cicd_dashboard.realtime.exceptions import (
    InvalidTopicError,
    RealtimeError,
    UnknownConnectionError,
)

__all__ = [
    "ALERTS_TOPIC",
    "DASHBOARD_TOPIC",
    "BroadcastBus",
    "ConnectionState",
    "InvalidTopicError",
    "RealtimeError",
    "Subscriber",
    "UnknownConnectionError",
    "pipeline_topic",
]
