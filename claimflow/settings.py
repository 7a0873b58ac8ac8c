# ==== APPLICATION SETTINGS CONFIGURATION ==== #

"""
Application settings configuration for claimflow.

This module provides centralized configuration management using Pydantic Settings
with environment variable loading and validation for the workflow engine, its
storage, the HTTP surface and observability.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


# ==== MAIN SETTINGS CLASS ==== #


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    
    Covers database connectivity, token verification, logging and
    observability. Every field has a development default so the service
    and the test suite start without a populated environment.
    """
    
    model_config = SettingsConfigDict(
        env_file='.env', 
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore'
    )
    
    # --► CORE APPLICATION SETTINGS
    APP_ENV: str = "dev"
    SERVICE_NAME: str = "claimflow"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILES: bool = False
    
    # --► DATABASE CONFIGURATION
    # SQLite (aiosqlite) for local runs, postgresql+asyncpg:// in deployments
    DATABASE_URL: str = "sqlite+aiosqlite:///./claimflow.db"
    DATABASE_ECHO: bool = False
    
    # --► AUTHENTICATION SETTINGS
    JWT_SECRET: str = "change-me-please-and-keep-long-random"
    JWT_ALGORITHM: str = "HS256"
    
    # --► OBSERVABILITY CONFIGURATION
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = None
    OTEL_SERVICE_NAME: str | None = None
    OTEL_RESOURCE_ATTRIBUTES: str | None = None
    
    # --► METRICS CONFIGURATION
    PROMETHEUS_SCRAPE_PATH: str = "/metrics"
    
    # --► HTTP CONFIGURATION
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]


# ==== GLOBAL SETTINGS INSTANCE ==== #


# Global settings instance for application-wide access
settings = Settings()


def get_settings() -> Settings:
    """
    Get global settings instance.
    
    Returns:
        Settings: Global application settings instance
    """
    return settings
