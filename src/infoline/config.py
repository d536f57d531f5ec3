"""Configuration management for İnfoLine."""

import logging
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ENV_CONFIG = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class DatabaseConfig(BaseSettings):
    """Database configuration settings."""

    model_config = ENV_CONFIG

    url: Optional[str] = Field(None, validation_alias="DATABASE_URL")
    pool_min_size: int = Field(1, validation_alias="DATABASE_POOL_MIN_SIZE")
    pool_max_size: int = Field(10, validation_alias="DATABASE_POOL_MAX_SIZE")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        """Validate database URL format."""
        if v is None:
            return v
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL connection string")
        if "[PASSWORD]" in v:
            raise ValueError("DATABASE_URL contains placeholder password - please set actual password")
        return v


class NotificationConfig(BaseSettings):
    """Notification and deadline settings."""

    model_config = ENV_CONFIG

    retention_days: int = Field(90, validation_alias="NOTIFICATION_RETENTION_DAYS")
    frontend_url: str = Field("https://infoline.edu.az", validation_alias="FRONTEND_URL")


class AppConfig(BaseSettings):
    """Application configuration settings."""

    model_config = ENV_CONFIG

    name: str = Field("infoline", validation_alias="APP_NAME")
    version: str = Field("0.1.0", validation_alias="APP_VERSION")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    debug: bool = Field(False, validation_alias="DEBUG")
    storage: str = Field("postgres", validation_alias="INFOLINE_STORAGE")
    cors_origins: str = Field("*", validation_alias="CORS_ORIGINS")

    @field_validator("storage")
    @classmethod
    def validate_storage(cls, v):
        v = v.lower()
        if v not in ("postgres", "memory"):
            raise ValueError("INFOLINE_STORAGE must be 'postgres' or 'memory'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return v

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class Settings(BaseSettings):
    """Main application settings."""

    model_config = ENV_CONFIG

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment."""
        return cls()


_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """Get the global settings instance, loading it on first use."""
    global _settings

    if _settings is None or reload:
        _settings = Settings.load()

    return _settings


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for entry points (CLI, API server)."""
    level = level or get_settings().app.log_level
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
