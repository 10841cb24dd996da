#!/usr/bin/env python3
"""Service entrypoint — wires the notification stack, bus and HTTP server.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level / bind port
    python scripts/run.py --log-level DEBUG --port 8080
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from cicd_dashboard.api.app import create_app, start_server
from cicd_dashboard.core.config import load_settings
from cicd_dashboard.core.logging import setup_logging
from cicd_dashboard.notify.channels import EmailChannel
from cicd_dashboard.notify.factory import create_notification_stack
from cicd_dashboard.notify.metrics import DeliveryMetrics
from cicd_dashboard.realtime.bus import BroadcastBus

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    # ── Realtime bus + delivery metrics ──────────────────────────
    bus = BroadcastBus(send_timeout_secs=settings.dispatch.timeout_secs)
    metrics = DeliveryMetrics()

    # ── Notification channels + dispatcher ───────────────────────
    dispatcher = create_notification_stack(settings, bus=bus, metrics=metrics)
    email_channel = dispatcher.channel(EmailChannel.name)

    for ch in dispatcher.channels:
        if ch.is_configured():
            logger.info("channel_configured", channel=ch.name)
        else:
            logger.warning("channel_not_configured", channel=ch.name)

    logger.info(
        "service_starting",
        environment=settings.environment,
        channels=[ch.name for ch in dispatcher.channels if ch.is_configured()],
    )

    # ── Start everything ─────────────────────────────────────────
    await dispatcher.start()

    app = create_app(
        settings,
        dispatcher,
        bus,
        metrics,
        email_channel=email_channel if isinstance(email_channel, EmailChannel) else None,
    )
    host = settings.server.host
    port = args.port or settings.server.port
    try:
        runner = await start_server(app, host=host, port=port)
    except OSError:
        logger.exception("server_bind_failed", host=host, port=port)
        await dispatcher.close()
        return 1

    logger.info("service_running", health=f"http://localhost:{port}/health")

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("service_shutting_down")

    await runner.cleanup()
    await dispatcher.close()
    await bus.close()

    # ── Final summary ────────────────────────────────────────────
    summary = metrics.summary()
    logger.info(
        "service_stopped",
        alerts_dispatched=summary["alerts_dispatched"],
        deliveries_attempted=summary["deliveries_attempted"],
        deliveries_failed=summary["deliveries_failed"],
    )

    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the CI/CD pipeline alert service.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port override (default: server.port from settings)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
