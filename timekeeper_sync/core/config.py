"""Configuration settings for the timekeeper sync service."""

from typing import Optional, Dict, Any, List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = "timekeeper-sync"
    port: int = 8005
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./timekeeper.db"

    # Security
    encryption_key: Optional[str] = None
    encryption_salt: str = "timekeeper-sync"

    # Scheduling
    default_max_age_seconds: int = 3600  # 1 hour
    recently_failed_window_seconds: int = 86400  # 1 day
    sync_interval_seconds: int = 0  # periodic trigger, 0 disables

    # Provider calls
    provider_concurrency: int = 2
    provider_concurrency_limits: Dict[str, int] = {}  # per-provider override, e.g. {"GitHub": 4}
    connect_timeout_seconds: float = 15.0
    fetch_timeout_seconds: float = 120.0
    http_timeout_seconds: float = 30.0
    max_work_items: int = 500
    closed_states: List[str] = ["closed", "done", "completed"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        env_prefix = "TIMEKEEPER_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Provider specific configurations
PROVIDER_CONFIGS: Dict[str, Dict[str, Any]] = {
    "GitHub": {
        "name": "GitHub",
        "auth": "bearer",
        "api_base_url": "https://api.github.com",
        "page_size": 100,
    },
    "AzureDevOps": {
        "name": "Azure DevOps",
        "auth": "basic",
        "api_version": "7.0",
        "batch_size": 200,
        # Removed items never reach the local task list
        "excluded_states": ["Removed"],
    },
}
