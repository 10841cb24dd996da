"""Notification channels — email (SMTP), Discord bot and Teams webhook delivery."""

from __future__ import annotations

import abc
import asyncio
import json
import smtplib
import ssl
import sys
from email.message import EmailMessage
from enum import StrEnum
from functools import partial
from typing import Any

import aiohttp
import httpx
import structlog
import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from cicd_dashboard.core.config import DiscordConfig, EmailConfig, TeamsConfig
from cicd_dashboard.notify.exceptions import DiscordAuthError, DiscordGatewayError
from cicd_dashboard.notify.formatters import (
    format_discord_embed,
    format_email,
    format_teams_card,
)
from cicd_dashboard.notify.types import AlertEvent, DiscordEmbed, EmailContent, TeamsCard

logger = structlog.get_logger(__name__)


class NotificationChannel(abc.ABC):
    """Base class for alert delivery channels.

    ``render`` turns an AlertEvent into the channel's message type and
    ``deliver`` sends it. ``deliver`` reports failure by returning False;
    transport errors are logged, never raised.
    """

    name: str = ""

    @abc.abstractmethod
    def is_configured(self) -> bool:
        """True when the static configuration has every required credential."""

    def is_enabled(self) -> bool:
        return self.is_configured()

    @abc.abstractmethod
    def render(self, event: AlertEvent) -> Any:
        """Format an event for this channel."""

    @abc.abstractmethod
    async def deliver(self, message: Any) -> bool:
        """Send a rendered message. Returns True on success."""

    async def send(self, event: AlertEvent) -> bool:
        return await self.deliver(self.render(event))

    async def start(self) -> None:
        """Open long-lived sessions, if the channel has any."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


# ── Email ───────────────────────────────────────────────────────


class EmailChannel(NotificationChannel):
    """Delivers alerts over SMTP.

    smtplib is blocking, so the exchange runs in the default executor.
    Outside production the message is logged and reported as delivered
    without opening a connection.
    """

    name = "email"

    def __init__(
        self,
        config: EmailConfig,
        production: bool = False,
        dashboard_url: str | None = None,
    ) -> None:
        self._config = config
        self._password = config.password.get_secret_value()
        self._production = production
        self._dashboard_url = dashboard_url

    @property
    def recipients(self) -> list[str]:
        return list(self._config.recipients)

    def is_configured(self) -> bool:
        return self._config.configured

    def render(self, event: AlertEvent) -> EmailContent:
        return format_email(event, self._dashboard_url)

    async def deliver(self, message: EmailContent, to: list[str] | None = None) -> bool:
        recipients = to or self.recipients
        if not recipients:
            logger.warning("email_no_recipients", subject=message.subject)
            return False

        if not self._production:
            logger.info(
                "email_demo_delivery",
                to=recipients,
                subject=message.subject,
                content=message.text[:500],
            )
            return True

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, partial(self._send_sync, recipients, message)
            )
        except Exception:
            logger.exception("email_send_error", to=recipients, subject=message.subject)
            return False

        logger.info("email_sent", to=recipients, subject=message.subject)
        return True

    async def test_connection(self) -> bool:
        """Check SMTP reachability and credentials without sending mail."""
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._verify_sync)
            return True
        except Exception:
            logger.exception("email_connection_test_failed", host=self._config.host)
            return False

    async def close(self) -> None:
        return None

    # ── Blocking helpers (executor only) ────────────────────────

    def _build_message(self, recipients: list[str], content: EmailContent) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = content.subject
        msg["From"] = self._config.from_address
        msg["To"] = ", ".join(recipients)
        msg.set_content(content.text)
        msg.add_alternative(content.html, subtype="html")
        return msg

    def _open(self) -> smtplib.SMTP:
        cfg = self._config
        context = ssl.create_default_context()
        if cfg.implicit_tls:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                cfg.host, cfg.port, timeout=cfg.timeout_secs, context=context
            )
        else:
            server = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_secs)
        try:
            if not cfg.implicit_tls:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=context)
                    server.ehlo()
                else:
                    logger.warning("email_starttls_unavailable", host=cfg.host)
            if cfg.username:
                server.login(cfg.username, self._password)
        except Exception:
            server.close()
            raise
        return server

    def _send_sync(self, recipients: list[str], content: EmailContent) -> None:
        with self._open() as server:
            server.send_message(self._build_message(recipients, content))

    def _verify_sync(self) -> None:
        with self._open() as server:
            server.noop()


# ── Discord ─────────────────────────────────────────────────────


class BotState(StrEnum):
    """Discord bot session lifecycle."""

    UNINITIALIZED = "uninitialized"
    LOGGING_IN = "logging_in"
    READY = "ready"
    FAILED = "failed"


# Gateway opcodes.
_OP_DISPATCH = 0
_OP_HEARTBEAT = 1
_OP_IDENTIFY = 2
_OP_RECONNECT = 7
_OP_INVALID_SESSION = 9
_OP_HELLO = 10
_OP_HEARTBEAT_ACK = 11

# GUILDS | GUILD_MESSAGES
_INTENTS = (1 << 0) | (1 << 9)

# Close codes after which reconnecting cannot succeed.
_FATAL_CLOSE_CODES = frozenset({4004, 4010, 4011, 4012, 4013, 4014})


class DiscordChannel(NotificationChannel):
    """Delivers alerts as embeds through a Discord bot.

    A background task holds the gateway session (HELLO → IDENTIFY → READY,
    heartbeats, reconnect with backoff). Messages go out over the REST API
    and only while the session is READY; delivery never waits for login.
    """

    name = "discord"

    def __init__(self, config: DiscordConfig) -> None:
        self._token = config.bot_token.get_secret_value()
        self._channel_id = config.channel_id
        self._gateway_url = config.gateway_url
        self._api_base = config.api_base.rstrip("/")
        self._reconnect_base = config.reconnect_base_secs
        self._reconnect_cap = config.reconnect_cap_secs
        self._reconnect_delay = config.reconnect_base_secs

        self._state = BotState.UNINITIALIZED
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._ws: ClientConnection | None = None
        self._session: aiohttp.ClientSession | None = None
        self._seq: int | None = None
        self._heartbeat_acked = True
        self._resolved_channel_id: str | None = None
        self.bot_user: str | None = None

    @property
    def state(self) -> BotState:
        return self._state

    def is_configured(self) -> bool:
        return bool(self._token and self._channel_id)

    def is_enabled(self) -> bool:
        return self.is_configured() and self._state == BotState.READY

    def render(self, event: AlertEvent) -> DiscordEmbed:
        return format_discord_embed(event)

    # ── Gateway session ─────────────────────────────────────────

    async def start(self) -> None:
        """Begin logging in. Returns immediately; READY is reached asynchronously."""
        if not self._token:
            logger.warning("discord_token_missing")
            return
        if self._running:
            return
        self._running = True
        self._state = BotState.LOGGING_IN
        self._task = asyncio.create_task(self._run_loop())

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self._connect_and_listen()
            except asyncio.CancelledError:
                break
            except DiscordAuthError as exc:
                logger.error("discord_login_failed", reason=str(exc))
                self._state = BotState.FAILED
                self._running = False
                break
            except Exception:
                if not self._running:
                    break
                self._state = BotState.LOGGING_IN
                logger.warning("discord_reconnecting", delay=self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(
                    self._reconnect_delay * 2, self._reconnect_cap
                )

    async def _connect_and_listen(self) -> None:
        try:
            self._ws = await websockets.connect(self._gateway_url)
        except Exception as exc:
            raise DiscordGatewayError(f"Failed to connect to {self._gateway_url}") from exc

        heartbeat_task: asyncio.Task[None] | None = None
        try:
            hello = json.loads(await self._ws.recv())
            if hello.get("op") != _OP_HELLO:
                raise DiscordGatewayError(f"Expected HELLO, got op {hello.get('op')}")
            interval = hello["d"]["heartbeat_interval"] / 1000.0
            self._heartbeat_acked = True
            heartbeat_task = asyncio.create_task(self._heartbeat_loop(interval))

            await self._ws.send(json.dumps(self._identify_payload()))

            async for raw in self._ws:
                await self._handle_frame(json.loads(raw))
        except ConnectionClosed as exc:
            code = exc.rcvd.code if exc.rcvd is not None else None
            if code in _FATAL_CLOSE_CODES:
                raise DiscordAuthError(f"Gateway closed with code {code}") from exc
            raise DiscordGatewayError(f"Gateway closed with code {code}") from exc
        finally:
            if heartbeat_task is not None:
                heartbeat_task.cancel()
                try:
                    await heartbeat_task
                except asyncio.CancelledError:
                    pass
                except Exception as exc:
                    logger.warning("discord_heartbeat_stopped", error=str(exc))
            if self._state == BotState.READY:
                self._state = BotState.LOGGING_IN
            if self._ws is not None:
                await self._ws.close()
                self._ws = None

        raise DiscordGatewayError("Gateway connection ended")

    def _identify_payload(self) -> dict[str, Any]:
        return {
            "op": _OP_IDENTIFY,
            "d": {
                "token": self._token,
                "intents": _INTENTS,
                "properties": {
                    "os": sys.platform,
                    "browser": "cicd-dashboard",
                    "device": "cicd-dashboard",
                },
            },
        }

    async def _handle_frame(self, frame: dict[str, Any]) -> None:
        op = frame.get("op")
        if frame.get("s") is not None:
            self._seq = frame["s"]

        if op == _OP_DISPATCH and frame.get("t") == "READY":
            user = (frame.get("d") or {}).get("user") or {}
            self.bot_user = user.get("username")
            self._state = BotState.READY
            self._reconnect_delay = self._reconnect_base
            logger.info("discord_ready", bot_user=self.bot_user)
        elif op == _OP_HEARTBEAT:
            await self._send_heartbeat()
        elif op == _OP_HEARTBEAT_ACK:
            self._heartbeat_acked = True
        elif op in (_OP_RECONNECT, _OP_INVALID_SESSION):
            raise DiscordGatewayError(f"Gateway requested reconnect (op {op})")

    async def _heartbeat_loop(self, interval: float) -> None:
        """Beat every *interval* seconds; a beat left unacknowledged drops the session."""
        while True:
            await asyncio.sleep(interval)
            if not self._heartbeat_acked:
                logger.warning("discord_heartbeat_unacked", interval=interval)
                if self._ws is not None:
                    await self._ws.close()
                raise DiscordGatewayError("Heartbeat was not acknowledged")
            await self._send_heartbeat()

    async def _send_heartbeat(self) -> None:
        if self._ws is not None:
            self._heartbeat_acked = False
            await self._ws.send(json.dumps({"op": _OP_HEARTBEAT, "d": self._seq}))

    # ── REST delivery ───────────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bot {self._token}"},
            )
        return self._session

    async def _resolve_channel(self, session: aiohttp.ClientSession) -> str | None:
        if self._resolved_channel_id is not None:
            return self._resolved_channel_id
        url = f"{self._api_base}/channels/{self._channel_id}"
        async with session.get(url) as resp:
            if resp.status != 200:
                body = await resp.text()
                logger.warning(
                    "discord_channel_lookup_failed",
                    channel_id=self._channel_id,
                    status=resp.status,
                    body=body[:200],
                )
                return None
            data = await resp.json()
        self._resolved_channel_id = str(data.get("id", self._channel_id))
        return self._resolved_channel_id

    async def deliver(self, message: DiscordEmbed) -> bool:
        if self._state != BotState.READY or not self._channel_id:
            logger.warning(
                "discord_not_ready",
                state=self._state.value,
                channel_configured=bool(self._channel_id),
            )
            return False

        try:
            session = self._get_session()
            channel_id = await self._resolve_channel(session)
            if channel_id is None:
                return False
            url = f"{self._api_base}/channels/{channel_id}/messages"
            async with session.post(url, json=message.to_payload()) as resp:
                if resp.status in (200, 201):
                    logger.info("discord_alert_sent", title=message.title)
                    return True
                body = await resp.text()
                logger.warning(
                    "discord_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception("discord_send_error", title=message.title)
            return False

    async def close(self) -> None:
        self._running = False
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        self._state = BotState.UNINITIALIZED


# ── Teams ───────────────────────────────────────────────────────


class TeamsChannel(NotificationChannel):
    """Posts message cards to a Teams incoming webhook."""

    name = "teams"

    def __init__(self, config: TeamsConfig, dashboard_url: str | None = None) -> None:
        self._webhook_url = config.webhook_url.get_secret_value()
        self._timeout = config.timeout_secs
        self._dashboard_url = dashboard_url
        self._client: httpx.AsyncClient | None = None

    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    def render(self, event: AlertEvent) -> TeamsCard:
        return format_teams_card(event, self._dashboard_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def deliver(self, message: TeamsCard) -> bool:
        if not self._webhook_url:
            logger.warning("teams_not_configured")
            return False

        try:
            client = self._get_client()
            resp = await client.post(self._webhook_url, json=message.to_payload())
        except Exception:
            logger.exception("teams_send_error", title=message.title)
            return False

        if resp.status_code == 200:
            logger.info("teams_alert_sent", title=message.title)
            return True
        logger.error(
            "teams_send_failed",
            status=resp.status_code,
            body=resp.text[:200],
        )
        return False

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
