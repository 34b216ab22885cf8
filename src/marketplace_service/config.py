"""
Configuration management for the marketplace service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_jws_path: str
    timeout_seconds: int


class MailConfig(BaseModel):
    """Mail relay connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    send_path: str
    timeout_seconds: int
    frontend_url: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class AuthConfig(BaseModel):
    """Authorization configuration: who holds the admin role."""

    model_config = ConfigDict(extra="forbid")
    admin_user_ids: list[str]


class LimitsConfig(BaseModel):
    """Quotas, windows and field limits for the lifecycle engine."""

    model_config = ConfigDict(extra="forbid")
    max_tasks_per_day: int
    max_bids_per_day: int
    reopen_window_days: int
    max_title_length: int
    max_description_length: int
    max_message_length: int
    max_comment_length: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    mail: MailConfig
    request: RequestConfig
    auth: AuthConfig
    limits: LimitsConfig


def get_config_path() -> Path:
    """Determine configuration file path (CONFIG_PATH or ./config.yaml)."""
    configured = os.environ.get("CONFIG_PATH")
    if configured:
        return Path(configured)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and validate settings from the YAML config file.

    Raises:
        FileNotFoundError: If the config file does not exist
        pydantic.ValidationError: If a section or key is missing or unknown
    """
    config_path = get_config_path()
    if not config_path.is_file():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a YAML mapping: {config_path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Drop the cached settings so the next call reloads the file."""
    get_settings.cache_clear()
