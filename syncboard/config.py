"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SyncBoard application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False
    app_version: str = "1.0.0"

    # Database
    database_url: str = "sqlite+aiosqlite:///data/syncboard.db"

    # Paths
    data_dir: Path = Path("./data")

    # Server
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=list)

    # Transfer engine
    rclone_binary: str = "rclone"
    rclone_config: Path | None = None

    # Runtime limits
    log_buffer_capacity: int = Field(default=5000, ge=1)
    sync_log_queue_size: int = Field(default=100, ge=100)
    history_limit: int = Field(default=1000, ge=1)
    event_queue_size: int = Field(default=1000, ge=1)
    event_ping_seconds: float = Field(default=15.0, gt=0)

    def validate_runtime_security(self) -> None:
        """Refuse unsafe settings when the server is reachable beyond localhost."""
        if self.host in ("127.0.0.1", "localhost", "::1"):
            return

        violations: list[str] = []
        if self.debug:
            violations.append("DEBUG must be disabled when binding to a non-loopback host")
        if "*" in self.cors_origins:
            violations.append("CORS_ORIGINS must list explicit origins, not \"*\"")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
