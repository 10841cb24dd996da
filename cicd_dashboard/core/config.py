"""Pydantic settings loaded from YAML configuration and the environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

# Environment variable → (section, key). Section None means a root field.
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "APP_ENV": (None, "environment"),
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
    "FRONTEND_URL": ("server", "frontend_url"),
    "EMAIL_HOST": ("email", "host"),
    "EMAIL_PORT": ("email", "port"),
    "EMAIL_USER": ("email", "username"),
    "EMAIL_PASSWORD": ("email", "password"),
    "EMAIL_SECURE": ("email", "implicit_tls"),
    "EMAIL_FROM": ("email", "from_address"),
    "ALERT_EMAIL_RECIPIENTS": ("email", "recipients"),
    "DEMO_EMAIL_RECIPIENT": ("email", "demo_recipient"),
    "DISCORD_BOT_TOKEN": ("discord", "bot_token"),
    "DISCORD_CHANNEL_ID": ("discord", "channel_id"),
    "TEAMS_WEBHOOK_URL": ("teams", "webhook_url"),
    "GITHUB_WEBHOOK_SECRET": ("webhooks", "github_secret"),
    "GITLAB_WEBHOOK_TOKEN": ("webhooks", "gitlab_token"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
    "DELIVERY_LOG_FILE": ("logging", "delivery_file"),
}


class ServerConfig(BaseModel):
    """HTTP / websocket server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 3001
    frontend_url: str = "http://localhost:3000"


class EmailConfig(BaseModel):
    """SMTP delivery configuration.

    ``implicit_tls`` connects with SMTPS (port 465). Otherwise the session
    upgrades with STARTTLS whenever the server offers it.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "smtp.gmail.com"
    port: int = 587
    username: str = ""
    password: SecretStr = SecretStr("")
    implicit_tls: bool = False
    from_address: str = "CI/CD Dashboard <noreply@cicd-dashboard.com>"
    recipients: list[str] = []
    demo_recipient: str = ""
    timeout_secs: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(
            self.username
            and self.password.get_secret_value()
            and self.recipients
        )


class DiscordConfig(BaseModel):
    """Discord bot configuration — gateway session plus REST delivery."""

    model_config = ConfigDict(frozen=True)

    bot_token: SecretStr = SecretStr("")
    channel_id: str = ""
    gateway_url: str = "wss://gateway.discord.gg/?v=10&encoding=json"
    api_base: str = "https://discord.com/api/v10"
    reconnect_base_secs: float = 1.0
    reconnect_cap_secs: float = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.bot_token.get_secret_value() and self.channel_id)


class TeamsConfig(BaseModel):
    """Microsoft Teams incoming-webhook configuration."""

    model_config = ConfigDict(frozen=True)

    webhook_url: SecretStr = SecretStr("")
    timeout_secs: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url.get_secret_value())


class DispatchConfig(BaseModel):
    """Notification dispatch policy."""

    model_config = ConfigDict(frozen=True)

    timeout_secs: float = 10.0
    notify_on_success: bool = False


class WebhooksConfig(BaseModel):
    """Inbound CI webhook verification secrets (empty disables the check)."""

    model_config = ConfigDict(frozen=True)

    github_secret: SecretStr = SecretStr("")
    gitlab_token: SecretStr = SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    format: str = "json"
    delivery_file: str = ""


class Settings(BaseModel):
    """Root settings container."""

    model_config = ConfigDict(frozen=True)

    environment: str = "development"
    server: ServerConfig = ServerConfig()
    email: EmailConfig = EmailConfig()
    discord: DiscordConfig = DiscordConfig()
    teams: TeamsConfig = TeamsConfig()
    dispatch: DispatchConfig = DispatchConfig()
    webhooks: WebhooksConfig = WebhooksConfig()
    logging: LoggingConfig = LoggingConfig()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _apply_env_overrides(data: dict[str, Any], env: dict[str, str]) -> dict[str, Any]:
    """Overlay environment variables onto the raw YAML mapping."""
    merged: dict[str, Any] = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    for var, (section, key) in _ENV_OVERRIDES.items():
        value: Any = env.get(var)
        if value is None or value == "":
            continue
        if key == "recipients":
            value = [r.strip() for r in value.split(",") if r.strip()]
        if section is None:
            merged[key] = value
        else:
            merged.setdefault(section, {})
            merged[section][key] = value
    return merged


def load_settings(
    path: str | Path | None = None,
    env: dict[str, str] | None = None,
) -> Settings:
    """Load settings from a YAML file, overlay the environment and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.
        env: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    data = _apply_env_overrides(data, dict(os.environ) if env is None else env)
    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
