"""Notification delivery exceptions."""

from __future__ import annotations


class NotifyError(Exception):
    """Base exception for notification delivery errors."""


class DiscordAuthError(NotifyError):
    """The Discord gateway rejected the bot token or intents."""


class DiscordGatewayError(NotifyError):
    """The Discord gateway connection failed or sent an unexpected frame."""
