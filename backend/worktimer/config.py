from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "WorkTimer"
    host: str = os.getenv("WT_HOST", "127.0.0.1")
    port: int = int(os.getenv("WT_PORT", "8080"))

    sqlite_path: Path = Path(os.getenv("WT_SQLITE_PATH", "./data/worktimer.db"))
    database_url: Optional[str] = os.getenv("WT_DATABASE_URL")

    # Empty means the host zone, taken from TZ or /etc/localtime.
    timezone: Optional[str] = os.getenv("WT_TIMEZONE") or None

    log_level: str = os.getenv("WT_LOG_LEVEL", "INFO")

    @field_validator("timezone", mode="before")
    @classmethod
    def _blank_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.sqlite_path}"


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
