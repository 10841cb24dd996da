"""Topic-scoped publish/subscribe over long-lived client connections."""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from cicd_dashboard.realtime.exceptions import InvalidTopicError, UnknownConnectionError

logger = structlog.get_logger(__name__)

DASHBOARD_TOPIC = "dashboard"
ALERTS_TOPIC = "alerts"
PIPELINE_TOPIC_PREFIX = "pipeline"
TOPIC_SEPARATOR = ":"


def pipeline_topic(pipeline_id: str) -> str:
    """Build the per-pipeline topic name, ``pipeline:<id>``.

    Raises:
        InvalidTopicError: If the id is empty or contains the separator.
    """
    pipeline_id = str(pipeline_id).strip()
    if not pipeline_id:
        raise InvalidTopicError("Pipeline id must not be empty")
    if TOPIC_SEPARATOR in pipeline_id:
        raise InvalidTopicError(
            f"Pipeline id {pipeline_id!r} must not contain {TOPIC_SEPARATOR!r}"
        )
    return f"{PIPELINE_TOPIC_PREFIX}{TOPIC_SEPARATOR}{pipeline_id}"


def validate_topic(topic: str) -> str:
    """Accept the well-known topics and well-formed pipeline topics."""
    if topic in (DASHBOARD_TOPIC, ALERTS_TOPIC):
        return topic
    prefix, sep, ident = topic.partition(TOPIC_SEPARATOR)
    if prefix == PIPELINE_TOPIC_PREFIX and sep:
        return pipeline_topic(ident)
    raise InvalidTopicError(f"Unknown topic {topic!r}")


class ConnectionState(StrEnum):
    """Lifecycle of one client connection on the bus."""

    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


class Subscriber(abc.ABC):
    """A client connection that can receive published events."""

    @property
    @abc.abstractmethod
    def connection_id(self) -> str:
        """Stable identifier for the lifetime of the connection."""

    @abc.abstractmethod
    async def send(self, event_name: str, payload: Any) -> None:
        """Push one event to the client. May raise on a dead transport."""


@dataclass
class Subscription:
    """Bus-owned subscription record for one connection."""

    subscriber: Subscriber
    topics: set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTED


class BroadcastBus:
    """Delivers published events to every connection subscribed to a topic.

    - A connection's topic set changes only through its own
      subscribe/unsubscribe calls and is dropped on disconnect.
    - ``publish`` reaches exactly the connections subscribed at publish
      time; nothing is buffered for late subscribers.
    - Delivery is at most once per connection, without retry. A connection
      whose send fails or exceeds the send timeout is disconnected.

    All methods run on one event loop, so the table needs no lock.
    """

    def __init__(self, send_timeout_secs: float = 5.0) -> None:
        self._subs: dict[str, Subscription] = {}
        self._send_timeout_secs = send_timeout_secs

    # ── Connection lifecycle ────────────────────────────────────

    def connect(self, subscriber: Subscriber) -> None:
        cid = subscriber.connection_id
        self._subs[cid] = Subscription(subscriber=subscriber)
        logger.info("client_connected", connection_id=cid)

    def disconnect(self, connection_id: str, reason: str = "client_closed") -> None:
        sub = self._subs.pop(connection_id, None)
        if sub is None:
            return
        sub.state = ConnectionState.DISCONNECTED
        sub.topics.clear()
        logger.info("client_disconnected", connection_id=connection_id, reason=reason)

    def subscribe(self, connection_id: str, topic: str) -> None:
        sub = self._get(connection_id)
        sub.topics.add(validate_topic(topic))
        sub.state = ConnectionState.SUBSCRIBED
        logger.debug("client_subscribed", connection_id=connection_id, topic=topic)

    def unsubscribe(self, connection_id: str, topic: str) -> None:
        sub = self._get(connection_id)
        sub.topics.discard(topic)
        if not sub.topics:
            sub.state = ConnectionState.CONNECTED
        logger.debug("client_unsubscribed", connection_id=connection_id, topic=topic)

    # ── Queries ─────────────────────────────────────────────────

    @property
    def connection_count(self) -> int:
        return len(self._subs)

    def state_of(self, connection_id: str) -> ConnectionState:
        sub = self._subs.get(connection_id)
        return sub.state if sub is not None else ConnectionState.DISCONNECTED

    def topics_of(self, connection_id: str) -> frozenset[str]:
        sub = self._subs.get(connection_id)
        return frozenset(sub.topics) if sub is not None else frozenset()

    def subscribers_of(self, topic: str) -> list[str]:
        return [cid for cid, sub in self._subs.items() if topic in sub.topics]

    def topic_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for sub in self._subs.values():
            for topic in sub.topics:
                counts[topic] = counts.get(topic, 0) + 1
        return counts

    # ── Publish ─────────────────────────────────────────────────

    async def publish(
        self,
        topic: str,
        event_name: str,
        payload: Any,
        timeout_secs: float | None = None,
    ) -> int:
        """Send ``(event_name, payload)`` to every subscriber of *topic*.

        Each send is bounded by *timeout_secs* (the bus default when None);
        a subscriber that times out is disconnected like one whose send fails.

        Returns:
            Number of connections the event was delivered to.
        """
        targets = [sub.subscriber for sub in self._subs.values() if topic in sub.topics]
        if not targets:
            return 0

        timeout = self._send_timeout_secs if timeout_secs is None else timeout_secs
        results = await asyncio.gather(
            *(asyncio.wait_for(t.send(event_name, payload), timeout) for t in targets),
            return_exceptions=True,
        )

        delivered = 0
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                timed_out = isinstance(result, TimeoutError)
                logger.warning(
                    "publish_send_failed",
                    connection_id=target.connection_id,
                    topic=topic,
                    event_name=event_name,
                    error=f"timeout after {timeout}s" if timed_out else repr(result),
                )
                self.disconnect(
                    target.connection_id,
                    reason="send_timeout" if timed_out else "send_error",
                )
            else:
                delivered += 1

        logger.debug("published", topic=topic, event_name=event_name, delivered=delivered)
        return delivered

    async def close(self) -> None:
        """Disconnect every connection (shutdown)."""
        for cid in list(self._subs):
            self.disconnect(cid, reason="server_shutdown")

    # ── Internal ────────────────────────────────────────────────

    def _get(self, connection_id: str) -> Subscription:
        sub = self._subs.get(connection_id)
        if sub is None:
            raise UnknownConnectionError(f"Connection {connection_id!r} is not registered")
        return sub
