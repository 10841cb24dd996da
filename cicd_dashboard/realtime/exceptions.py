"""Realtime broadcast exceptions."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base exception for the broadcast bus."""


class InvalidTopicError(RealtimeError):
    """A topic name or topic identifier is malformed."""


class UnknownConnectionError(RealtimeError):
    """The connection id is not registered with the bus."""
