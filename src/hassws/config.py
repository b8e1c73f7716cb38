"""hassws Configuration Management.

Uses Pydantic Settings for type-safe configuration with environment variable support.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

WEBSOCKET_PATH = "/api/websocket"
REST_PATH = "/api/"
DEFAULT_PORT = 8123


class ClientSettings(BaseSettings):
    """Connection, heartbeat and dispatch settings for the client."""

    model_config = SettingsConfigDict(
        env_prefix="HASSWS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Target hub
    host: str = ""
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    token: str = ""
    secure: bool = False

    # Commands
    request_timeout: float = Field(default=10.0, gt=0)

    # Heartbeat
    heartbeat_interval: float = Field(default=30.0, gt=0)
    heartbeat_timeout: float = Field(default=10.0, gt=0)
    max_missed_heartbeats: int = Field(default=3, ge=1)

    # Authentication / reconnect
    auth_attempts: int = Field(default=5, ge=1)
    auth_retry_delay: float = Field(default=2.0, ge=0)
    reconnect_delay: float = Field(default=5.0, ge=0)
    minimum_version: str = "2024.1.0"

    # Dispatch
    max_workers: int = Field(default=64, ge=1)
    ordered_delivery: bool = True

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = False

    @field_validator("host", "token", mode="before")
    @classmethod
    def strip(cls, v: str | None) -> str:
        """Strip surrounding whitespace."""
        return (v or "").strip()

    def _netloc(self) -> str:
        host = self.host
        if "://" not in host:
            host = f"//{host}"
        parts = urlsplit(host)
        hostname = parts.hostname or ""
        if ":" in hostname:
            hostname = f"[{hostname}]"
        return f"{hostname}:{parts.port or self.port}"

    @property
    def websocket_url(self) -> str:
        """Build the websocket URL (ws://host:8123/api/websocket)."""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self._netloc()}{WEBSOCKET_PATH}"

    @property
    def http_url(self) -> str:
        """Build the REST base URL (http://host:8123/api/)."""
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self._netloc()}{REST_PATH}"


@lru_cache
def get_settings() -> ClientSettings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return ClientSettings()
