from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "Gestor OM"
    environment: str = os.getenv("GOM_ENVIRONMENT", "development")
    host: str = os.getenv("GOM_HOST", "127.0.0.1")
    port: int = int(os.getenv("GOM_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("GOM_CORS_ORIGINS", "http://localhost:5173").split(",")
            if origin.strip()
        ]
    )

    storage_backend: str = os.getenv("GOM_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("GOM_SQLITE_PATH", "./data/gestor_om.db"))
    json_dir: Path = Path(os.getenv("GOM_JSON_DIR", "./data/state"))

    timezone: str = os.getenv("TZ", "America/Sao_Paulo")
    alert_window_days: int = int(os.getenv("GOM_ALERT_WINDOW_DAYS", "2"))

    log_level: str = os.getenv("GOM_LOG_LEVEL", "INFO")
    log_dir: Path = Path(os.getenv("GOM_LOG_DIR", "./data/logs"))

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.json_dir.mkdir(parents=True, exist_ok=True)
settings.log_dir.mkdir(parents=True, exist_ok=True)
