"""Pure functions that render an AlertEvent into channel-specific messages."""

from __future__ import annotations

from datetime import datetime, timezone
from html import escape as html_escape

from cicd_dashboard.core.types import AlertType, PipelineTrigger, SystemTrigger
from cicd_dashboard.notify.types import (
    AlertEvent,
    AlertKind,
    CardAction,
    CardFact,
    DiscordEmbed,
    EmailContent,
    EmbedField,
    Severity,
    TeamsCard,
    severity_for_status,
)

# ── Colour / emoji tables ───────────────────────────────────────

EMAIL_SEVERITY_COLORS: dict[str, str] = {
    "critical": "#d32f2f",
    "high": "#f57c00",
    "medium": "#fbc02d",
    "low": "#388e3c",
}
EMAIL_DEFAULT_COLOR = "#757575"

DISCORD_COLORS: dict[Severity, int] = {
    Severity.SUCCESS: 0x00FF00,
    Severity.WARNING: 0xFFFF00,
    Severity.ERROR: 0xFF0000,
    Severity.INFO: 0x0099FF,
}

TEAMS_COLORS: dict[Severity, str] = {
    Severity.SUCCESS: "00FF00",
    Severity.WARNING: "FFA500",
    Severity.ERROR: "FF0000",
    Severity.INFO: "0078D4",
}

SEVERITY_EMOJI: dict[Severity, str] = {
    Severity.SUCCESS: "✅",
    Severity.WARNING: "⚠️",
    Severity.ERROR: "❌",
    Severity.INFO: "ℹ️",
}

DEFAULT_DASHBOARD_URL = "http://localhost:3000"


# ── Helpers ─────────────────────────────────────────────────────


def humanize_key(key: str) -> str:
    """``disk_usage`` → ``Disk usage``: first letter upper-cased, underscores to spaces."""
    return key[:1].upper() + key[1:].replace("_", " ")


def email_color(severity: str) -> str:
    return EMAIL_SEVERITY_COLORS.get(str(severity).lower(), EMAIL_DEFAULT_COLOR)


def _local_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone().isoformat(sep=" ", timespec="seconds")


def _status_label(event: AlertEvent) -> str:
    return (event.status or "unknown").upper()


def _duration_label(event: AlertEvent) -> str:
    return f"{event.duration:g}s" if event.duration else "N/A"


def _title(event: AlertEvent) -> str:
    if event.kind == AlertKind.SYSTEM:
        return f"System Alert: {event.alert_type}"
    return f"Pipeline {_status_label(event)}"


def _pipeline_description(event: AlertEvent) -> str:
    emoji = SEVERITY_EMOJI[event.channel_severity]
    status = event.status or "unknown"
    return f"{emoji} Pipeline **{event.pipeline_name}** has {status}"


def _detail_lines(event: AlertEvent) -> list[tuple[str, str]]:
    """Optional correlation lines; absent values are omitted entirely."""
    lines: list[tuple[str, str]] = []
    if event.run_id:
        lines.append(("Run ID", event.run_id))
    if event.branch:
        lines.append(("Branch", event.branch))
    if event.short_sha:
        lines.append(("Commit", event.short_sha))
    for key, value in event.metadata.items():
        lines.append((humanize_key(key), value))
    return lines


# ── Email ───────────────────────────────────────────────────────


def format_email(event: AlertEvent, dashboard_url: str | None = None) -> EmailContent:
    """Render an HTML document plus plain-text fallback."""
    url = dashboard_url or DEFAULT_DASHBOARD_URL
    alert_type = event.alert_type.replace("_", " ").upper()
    severity = str(event.severity).upper()
    color = email_color(event.severity)
    when = _local_iso(event.timestamp)
    generated = _local_iso(datetime.now(timezone.utc))
    details = _detail_lines(event)

    subject = f"🚨 CI/CD Alert: {event.pipeline_name} - {event.alert_type}"

    esc = html_escape
    detail_html = "".join(
        f"<p><strong>{esc(label)}:</strong> {esc(value)}</p>\n" for label, value in details
    )
    html = f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  .container {{ font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; }}
  .header {{ background-color: {color}; color: white; padding: 20px; text-align: center; }}
  .content {{ padding: 20px; }}
  .details {{ background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 15px 0; }}
  .footer {{ background-color: #333; color: white; padding: 15px; text-align: center; font-size: 12px; }}
  .severity {{ display: inline-block; padding: 5px 15px; border-radius: 3px; color: white; background-color: {color}; }}
</style>
</head>
<body>
<div class="container">
  <div class="header">
    <h1>🚨 CI/CD Pipeline Alert</h1>
    <h2>{esc(event.pipeline_name)}</h2>
  </div>
  <div class="content">
    <p><strong>Alert Type:</strong> {esc(alert_type)}</p>
    <p><strong>Severity:</strong> <span class="severity">{esc(severity)}</span></p>
    <p><strong>Time:</strong> {esc(when)}</p>
    <div class="details">
      <h3>Details</h3>
      <p>{esc(event.message)}</p>
{detail_html}    </div>
    <p>Please check the CI/CD Dashboard for more details:</p>
    <p><a href="{esc(url)}" style="background-color: #1976d2; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">View Dashboard</a></p>
  </div>
  <div class="footer">
    <p>This is an automated message from CI/CD Pipeline Health Dashboard</p>
    <p>Generated at {esc(generated)}</p>
  </div>
</div>
</body>
</html>"""

    text_lines = [
        f"CI/CD Pipeline Alert: {event.pipeline_name}",
        "",
        f"Alert Type: {alert_type}",
        f"Severity: {severity}",
        f"Time: {when}",
        "",
        "Details:",
        event.message,
        *(f"{label}: {value}" for label, value in details),
        "",
        "Please check the CI/CD Dashboard for more details:",
        url,
        "",
        "---",
        "This is an automated message from CI/CD Pipeline Health Dashboard",
        f"Generated at {generated}",
    ]

    return EmailContent(subject=subject, html=html, text="\n".join(text_lines))


# ── Discord ─────────────────────────────────────────────────────


def format_discord_embed(event: AlertEvent) -> DiscordEmbed:
    """Render a colour-coded chat embed."""
    severity = event.channel_severity
    fields: list[EmbedField] = []
    metadata: dict[str, str]

    if event.kind == AlertKind.SYSTEM:
        description = event.message
        metadata = dict(event.metadata)
    else:
        description = _pipeline_description(event)
        fields = [
            EmbedField(name="Pipeline", value=event.pipeline_name),
            EmbedField(name="Status", value=_status_label(event)),
            EmbedField(name="Duration", value=_duration_label(event)),
        ]
        metadata = {
            "platform": event.platform or "Unknown",
            "environment": event.environment or "Unknown",
            "commit": event.short_sha or "N/A",
            "branch": event.branch or "N/A",
        }

    fields.extend(
        EmbedField(name=humanize_key(k), value=str(v), inline=True)
        for k, v in metadata.items()
    )

    return DiscordEmbed(
        title=f"🔔 {_title(event)}",
        description=description,
        color=DISCORD_COLORS[severity],
        fields=fields,
        timestamp=event.timestamp,
    )


# ── Teams ───────────────────────────────────────────────────────


def format_teams_card(event: AlertEvent, dashboard_url: str | None = None) -> TeamsCard:
    """Render a webhook message card."""
    severity = event.channel_severity
    facts: list[CardFact]
    action: CardAction | None = None

    if event.kind == AlertKind.SYSTEM:
        text = event.message
        facts = [CardFact(name=humanize_key(k), value=str(v)) for k, v in event.metadata.items()]
        if dashboard_url:
            action = CardAction(text="View Monitoring", url=f"{dashboard_url.rstrip('/')}/monitoring")
    else:
        text = f"Pipeline **{event.pipeline_name}** has {event.status or 'unknown'}"
        facts = [
            CardFact(name="Pipeline", value=event.pipeline_name),
            CardFact(name="Status", value=_status_label(event)),
            CardFact(name="Duration", value=_duration_label(event)),
            CardFact(name="Platform", value=event.platform or "Unknown"),
            CardFact(name="Environment", value=event.environment or "Unknown"),
        ]
        if event.short_sha:
            facts.append(CardFact(name="Commit", value=event.short_sha))
        if event.branch:
            facts.append(CardFact(name="Branch", value=event.branch))
        if dashboard_url:
            action = CardAction(text="View Dashboard", url=f"{dashboard_url.rstrip('/')}/pipelines")

    return TeamsCard(
        title=f"{SEVERITY_EMOJI[severity]} {_title(event)}",
        text=text,
        theme_color=TEAMS_COLORS[severity],
        facts=facts,
        action=action,
    )


# ── Trigger → AlertEvent ────────────────────────────────────────


def build_pipeline_event(trigger: PipelineTrigger) -> AlertEvent:
    """Convert a pipeline alert trigger into an AlertEvent.

    Severity follows the run status unless the caller supplied an
    alert-history severity explicitly.
    """
    status = trigger.status
    severity = trigger.severity or severity_for_status(status)
    alert_type = AlertType.FAILURE.value if status == "failed" else status

    message = trigger.message
    if not message:
        message = f"Pipeline {trigger.pipeline_name} has {status}"
        if trigger.branch:
            message += f" on branch {trigger.branch}"

    return AlertEvent(
        kind=AlertKind.PIPELINE,
        pipeline_name=trigger.pipeline_name,
        alert_type=alert_type,
        severity=severity,
        message=message,
        run_id=trigger.run_id,
        branch=trigger.branch,
        commit_sha=trigger.commit,
        duration=trigger.duration,
        status=status,
        platform=trigger.platform,
        environment=trigger.environment,
        pipeline_id=trigger.pipeline_id,
    )


def build_system_event(trigger: SystemTrigger) -> AlertEvent:
    """Convert a system alert trigger into an AlertEvent (always WARNING)."""
    return AlertEvent(
        kind=AlertKind.SYSTEM,
        pipeline_name="System",
        alert_type=trigger.alert_type,
        severity=Severity.WARNING,
        message=trigger.message,
        metadata={str(k): str(v) for k, v in trigger.data.items()},
    )
