"""Core module — config, types, logging."""

from cicd_dashboard.core.config import Settings, get_settings, load_settings, reset_settings
from cicd_dashboard.core.logging import setup_logging
from cicd_dashboard.core.types import (
    AlertSeverity,
    AlertType,
    PipelinePlatform,
    PipelineRun,
    PipelineTrigger,
    RunStatus,
    SystemTrigger,
)

__all__ = [
    "AlertSeverity",
    "AlertType",
    "PipelinePlatform",
    "PipelineRun",
    "PipelineTrigger",
    "RunStatus",
    "Settings",
    "SystemTrigger",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
