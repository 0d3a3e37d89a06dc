"""Configuration loading for the site monitor."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from site_monitor.pushplus import PushplusConfig


DEFAULT_CONFIG_PATH = "conf.yaml"
DEFAULT_LOG_FILE = "app.log"


class ConfigError(Exception):
    """Raised when the settings file is missing, unreadable or invalid."""


class PushplusSettings(BaseModel):
    """PushPlus notifier settings."""
    model_config = ConfigDict(frozen=True)

    token: str = Field(description="PushPlus user token")
    title: str = Field(default="Site monitor", description="Notification title")
    topic: int = Field(default=0, description="PushPlus group (topic) code")


class MonitorSettings(BaseModel):
    """Settings for the polling loop, loaded once at startup."""
    model_config = ConfigDict(frozen=True)

    url: tuple[str, ...] = Field(min_length=1, description="URLs to check, in order")
    timeout: int = Field(gt=0, description="Acceptable page load time in seconds")
    polling: int = Field(gt=0, description="Seconds between check cycles")
    chrome: str | None = Field(default=None, description="Path to the Chromium/Chrome binary")
    navigation_timeout: float = Field(default=20.0, gt=0, description="Hard navigation timeout in seconds")
    log_file: str = Field(default=DEFAULT_LOG_FILE, description="File that log lines are appended to")
    pushplus: PushplusSettings

    def polling_config(self) -> PollingConfig:
        return PollingConfig(
            timeout_threshold_seconds=float(self.timeout),
            interval_seconds=float(self.polling),
        )

    def pushplus_config(self) -> PushplusConfig:
        return PushplusConfig(
            token=self.pushplus.token,
            title=self.pushplus.title,
            topic=self.pushplus.topic,
        )


@dataclass(frozen=True)
class PollingConfig:
    timeout_threshold_seconds: float
    interval_seconds: float

    def __post_init__(self) -> None:
        if self.timeout_threshold_seconds <= 0:
            raise ValueError("timeout_threshold_seconds must be > 0")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")


def load_settings(config_path: str | Path | None = None) -> MonitorSettings:
    """Load settings from YAML.

    The document must hold a ``config`` mapping. The path defaults to the
    ``SITE_MONITOR_CONFIG`` environment variable, then ``conf.yaml``.
    """
    if config_path is None:
        config_path = os.getenv("SITE_MONITOR_CONFIG", DEFAULT_CONFIG_PATH)
    path = Path(config_path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse config {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("config"), dict):
        raise ConfigError(f"config {path} must contain a 'config' mapping")

    try:
        return MonitorSettings(**data["config"])
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {e}") from e
