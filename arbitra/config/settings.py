"""
Configuration Management for Arbitra

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Components receive their settings object explicitly, falling back to
get_settings() only when the caller passes nothing.
"""

import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_app_data_root() -> Path:
    """
    Platform application-data directory.

    Mirrors where desktop shells keep per-user app data:
    %APPDATA% on Windows, ~/Library/Application Support on macOS,
    $XDG_CONFIG_HOME (or ~/.config) elsewhere.
    """
    if sys.platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata)
        return Path.home() / "AppData" / "Roaming"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".config"


class StoreSettings(BaseSettings):
    """Local record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ARBITRA_STORE_",
        extra="ignore"
    )

    app_data_root: Path = Field(
        default_factory=default_app_data_root,
        description="Root application-data directory"
    )
    app_namespace: str = Field(
        default="arbitra-client",
        min_length=1,
        description="Directory under app_data_root holding the documents"
    )
    serialize_writes: bool = Field(
        default=True,
        description="Serialize read-modify-write cycles per file name"
    )

    # Document names used by the flows
    recent_tx_document: str = Field(
        default="recenttx",
        description="List document holding locally created transactions"
    )
    received_tx_document: str = Field(
        default="receivedtx",
        description="List document holding verified incoming transactions"
    )
    audit_document: str = Field(
        default="auditlog",
        description="List document holding audit events"
    )

    @property
    def data_dir(self) -> Path:
        """Directory where documents live."""
        return Path(self.app_data_root) / self.app_namespace


class ChannelSettings(BaseSettings):
    """Peer messaging and hash oracle configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ARBITRA_CHANNEL_",
        extra="ignore"
    )

    host: str = Field(
        default="127.0.0.1",
        description="Loopback address the endpoints bind to"
    )
    oracle_port: int = Field(
        default=80,
        ge=0,
        le=65535,
        description="Port of the hash oracle endpoint"
    )
    message_port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="Port of the structured message endpoint"
    )
    origin_address: str = Field(
        default="127.0.0.1",
        description="Value placed in header.from on outgoing messages"
    )

    # Transport limits
    max_frame_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Largest accepted message frame"
    )
    chunk_size: int = Field(
        default=65536,
        ge=1,
        description="Read size used by the hash oracle"
    )
    connect_timeout: Optional[float] = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for a connection (None waits forever)"
    )
    connect_attempts: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Connection attempts before giving up"
    )

    # Protocol extension
    acknowledge_messages: bool = Field(
        default=False,
        description="Answer each received frame with an ack/nack message"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Only accept stdlib level names."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def channel(self) -> ChannelSettings:
        return ChannelSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("store", "channel", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
