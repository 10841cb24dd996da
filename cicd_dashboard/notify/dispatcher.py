"""Central alert dispatcher — fans one alert out to every configured channel."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from cicd_dashboard.core.logging import DELIVERY_LOGGER
from cicd_dashboard.core.types import PipelineTrigger, SystemTrigger
from cicd_dashboard.notify.channels import NotificationChannel
from cicd_dashboard.notify.formatters import build_pipeline_event, build_system_event
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.notify.types import AlertEvent, DeliveryResult
from cicd_dashboard.realtime.bus import ALERTS_TOPIC, BroadcastBus

# Dedicated structured logger for delivery records.
delivery_logger = structlog.get_logger(DELIVERY_LOGGER)

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Routes alerts to notification channels.

    - Channels that are not configured are skipped and not reported.
    - Every remaining channel gets its own task, bounded by *timeout_secs*.
      A raising, hanging or refusing channel becomes a failed entry and
      never affects the others.
    - Results come back in channel registration order.
    - With a bus attached, each dispatched alert is published to the
      ``alerts`` topic as ``alert:triggered``; each subscriber send is held
      to the same *timeout_secs*.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        bus: BroadcastBus | None = None,
        metrics: DeliveryMetrics | None = None,
        timeout_secs: float = 10.0,
    ) -> None:
        self._channels: list[NotificationChannel] = channels or []
        self._bus = bus
        self._metrics = metrics
        self._timeout_secs = timeout_secs
        self._in_flight: set[asyncio.Task[DeliveryResult]] = set()

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def channel(self, name: str) -> NotificationChannel | None:
        for ch in self._channels:
            if ch.name == name:
                return ch
        return None

    async def start(self) -> None:
        """Open long-lived channel sessions (the Discord bot login)."""
        for ch in self._channels:
            if not ch.is_configured():
                continue
            try:
                await ch.start()
            except Exception:
                logger.exception("channel_start_error", channel=ch.name)

    # ── Trigger entry points ────────────────────────────────────

    async def dispatch_pipeline_alert(self, trigger: PipelineTrigger) -> list[DeliveryResult]:
        return await self.dispatch(build_pipeline_event(trigger))

    async def dispatch_system_alert(self, trigger: SystemTrigger) -> list[DeliveryResult]:
        return await self.dispatch(build_system_event(trigger))

    # ── Fan-out ─────────────────────────────────────────────────

    async def dispatch(self, event: AlertEvent) -> list[DeliveryResult]:
        """Deliver *event* to every configured channel concurrently."""
        targets: list[NotificationChannel] = []
        for ch in self._channels:
            if ch.is_configured():
                targets.append(ch)
            else:
                logger.debug("channel_skipped", channel=ch.name, reason="not_configured")

        if self._metrics is not None:
            self._metrics.record_alert(event.alert_type)

        tasks = [asyncio.create_task(self._attempt(ch, event)) for ch in targets]
        self._in_flight.update(tasks)
        for task in tasks:
            task.add_done_callback(self._in_flight.discard)

        results: list[DeliveryResult] = list(await asyncio.gather(*tasks)) if tasks else []

        logger.info(
            "alert_dispatched",
            pipeline=event.pipeline_name,
            alert_type=event.alert_type,
            attempted=[r.channel for r in results],
            succeeded=[r.channel for r in results if r.success],
        )

        if self._bus is not None:
            await self._bus.publish(
                ALERTS_TOPIC,
                "alert:triggered",
                self._alert_payload(event, results),
                timeout_secs=self._timeout_secs,
            )
        return results

    async def _attempt(self, ch: NotificationChannel, event: AlertEvent) -> DeliveryResult:
        started = time.monotonic()
        error: str | None = None
        timed_out = False
        try:
            message = ch.render(event)
            ok = await asyncio.wait_for(ch.deliver(message), timeout=self._timeout_secs)
            if not ok:
                error = "delivery_failed"
        except TimeoutError:
            ok = False
            timed_out = True
            error = f"timeout after {self._timeout_secs}s"
        except Exception as exc:
            ok = False
            error = f"{type(exc).__name__}: {exc}"
            logger.exception("channel_dispatch_error", channel=ch.name, title=event.pipeline_name)

        latency = time.monotonic() - started
        if self._metrics is not None:
            self._metrics.record_delivery(
                ch.name,
                event.alert_type,
                success=ok,
                latency_secs=latency,
                error=error,
                timed_out=timed_out,
            )
        delivery_logger.info(
            "delivery",
            channel=ch.name,
            success=ok,
            error=error,
            latency_secs=round(latency, 4),
            kind=event.kind.value,
            pipeline=event.pipeline_name,
            alert_type=event.alert_type,
            severity=str(event.severity),
            run_id=event.run_id,
        )
        return DeliveryResult(channel=ch.name, success=ok, error=error)

    @staticmethod
    def _alert_payload(event: AlertEvent, results: list[DeliveryResult]) -> dict[str, Any]:
        return {
            "id": f"alert-{int(event.timestamp.timestamp() * 1000)}",
            "pipelineName": event.pipeline_name,
            "pipelineId": event.pipeline_id,
            "alertType": event.alert_type,
            "severity": str(event.severity),
            "message": event.message,
            "timestamp": event.timestamp.isoformat(),
            "deliveries": [r.model_dump() for r in results],
        }

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        """Drain in-flight attempts (bounded), then close every channel."""
        pending = set(self._in_flight)
        if pending:
            _, still_pending = await asyncio.wait(pending, timeout=self._timeout_secs)
            for task in still_pending:
                task.cancel()
            if still_pending:
                await asyncio.gather(*still_pending, return_exceptions=True)
                logger.warning("dispatch_drain_cancelled", count=len(still_pending))

        for ch in self._channels:
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=ch.name)
