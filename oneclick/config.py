"""
Configuration for the OneClick rule engine.

Settings are loaded from environment variables prefixed with
``ONECLICK_`` or from a ``.env`` file next to the working directory.
Defaults are suitable for running the engine against the in-memory
storage used by the CLI simulator.
"""

from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(os.getenv("ONECLICK_ENV_FILE", ".env"))


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Base URL of the rule storage REST API; empty means in-memory storage.
    api_url: Optional[str] = Field(default=None)
    api_token: Optional[str] = Field(default=None)
    request_timeout_sec: float = Field(default=5.0)
    # Directory holding the per-user local documents (rule cache, rule order).
    local_store_dir: str = Field(default="~/.oneclick")
    user_id: str = Field(default="local-user")
    team_id: Optional[str] = Field(default=None)
    timezone: str = Field(default="UTC")
    rules_cache_key_prefix: str = Field(default="OneClick_Rules")
    rule_order_key_prefix: str = Field(default="OneClick_RuleOrder")
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="ONECLICK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def local_store_path(self) -> Path:
        return Path(self.local_store_dir).expanduser()

    def tzinfo(self) -> datetime.tzinfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return datetime.timezone.utc


def load_settings(**overrides) -> Settings:
    """
    Load settings from the environment, applying keyword overrides last.
    """
    load_dotenv(ENV_PATH, override=False)
    return Settings(**overrides)


def validate_runtime_settings(settings: Settings) -> None:
    logger = logging.getLogger("config")
    if settings.api_url and not (settings.api_token or "").strip():
        logger.warning("ONECLICK_API_URL is set but ONECLICK_API_TOKEN is missing; requests will be anonymous.")
    if settings.api_url and not settings.api_url.lower().startswith(("http://", "https://")):
        logger.error("ONECLICK_API_URL=%s is not an http(s) URL.", settings.api_url)
    try:
        ZoneInfo(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown ONECLICK_TIMEZONE=%s; defaulting to UTC", settings.timezone)
    if settings.request_timeout_sec <= 0:
        logger.warning("ONECLICK_REQUEST_TIMEOUT_SEC must be positive; got %s", settings.request_timeout_sec)


__all__ = ["Settings", "load_settings", "validate_runtime_settings"]
