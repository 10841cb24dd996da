"""HTTP and websocket boundary."""

from cicd_dashboard.api.app import ApiError, create_app, start_server
from cicd_dashboard.api.websocket import WebSocketSubscriber

__all__ = [
    "ApiError",
    "WebSocketSubscriber",
    "create_app",
    "start_server",
]
