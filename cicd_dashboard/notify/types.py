"""Domain types for the notification / alerting subsystem."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cicd_dashboard.core.types import AlertSeverity


class Severity(StrEnum):
    """Channel-level severity used by the chat and webhook formatters."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class AlertKind(StrEnum):
    """Origin of an alert."""

    PIPELINE = "pipeline"
    SYSTEM = "system"


# The one mapping between the alert-history taxonomy and channel severity.
SEVERITY_MAP: dict[AlertSeverity | Severity, Severity] = {
    AlertSeverity.CRITICAL: Severity.ERROR,
    AlertSeverity.HIGH: Severity.ERROR,
    AlertSeverity.MEDIUM: Severity.WARNING,
    AlertSeverity.LOW: Severity.INFO,
    Severity.ERROR: Severity.ERROR,
    Severity.WARNING: Severity.WARNING,
    Severity.INFO: Severity.INFO,
    Severity.SUCCESS: Severity.SUCCESS,
}


def to_channel_severity(severity: AlertSeverity | Severity) -> Severity:
    """Map either severity taxonomy onto the four channel severities."""
    return SEVERITY_MAP[severity]


def severity_for_status(status: str) -> Severity:
    """Derive the channel severity of a pipeline run from its status."""
    if status == "success":
        return Severity.SUCCESS
    if status == "failed":
        return Severity.ERROR
    return Severity.WARNING


class AlertEvent(BaseModel):
    """Normalised, immutable alert ready for formatting and delivery."""

    model_config = ConfigDict(frozen=True)

    kind: AlertKind = AlertKind.PIPELINE
    pipeline_name: str = "Unknown"
    alert_type: str
    severity: AlertSeverity | Severity
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str | None = None
    branch: str | None = None
    commit_sha: str | None = None
    duration: float | None = None
    status: str | None = None
    platform: str | None = None
    environment: str | None = None
    pipeline_id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def channel_severity(self) -> Severity:
        return to_channel_severity(self.severity)

    @property
    def short_sha(self) -> str | None:
        return self.commit_sha[:8] if self.commit_sha else None


class DeliveryResult(BaseModel):
    """Outcome of one channel's delivery attempt."""

    channel: str
    success: bool
    error: str | None = None


# ── Channel messages ────────────────────────────────────────────


class EmailContent(BaseModel):
    """Rendered email body; recipients are added by the transport."""

    subject: str
    html: str
    text: str


class EmbedField(BaseModel):
    name: str
    value: str
    inline: bool = True


class DiscordEmbed(BaseModel):
    """Chat embed in the shape of Discord's embed object."""

    title: str
    description: str = ""
    color: int
    fields: list[EmbedField] = Field(default_factory=list)
    footer: str = "CI/CD Dashboard Alert"
    timestamp: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        embed: dict[str, Any] = {
            "title": self.title,
            "color": self.color,
            "footer": {"text": self.footer},
        }
        if self.description:
            embed["description"] = self.description
        if self.fields:
            embed["fields"] = [f.model_dump() for f in self.fields]
        if self.timestamp is not None:
            embed["timestamp"] = self.timestamp.isoformat()
        return {"embeds": [embed]}


class CardFact(BaseModel):
    name: str
    value: str


class CardAction(BaseModel):
    text: str
    url: str


class TeamsCard(BaseModel):
    """Incoming-webhook message card."""

    title: str
    text: str
    theme_color: str
    facts: list[CardFact] = Field(default_factory=list)
    action: CardAction | None = None

    def to_payload(self) -> dict[str, Any]:
        card: dict[str, Any] = {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "title": self.title,
            "text": self.text,
            "themeColor": self.theme_color,
        }
        if self.facts:
            card["sections"] = [{"facts": [f.model_dump() for f in self.facts]}]
        if self.action is not None:
            card["potentialAction"] = [
                {
                    "@type": "OpenUri",
                    "name": self.action.text,
                    "targets": [{"os": "default", "uri": self.action.url}],
                }
            ]
        return card
