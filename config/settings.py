"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Cache settings
    cache_namespace: str = "app_cache"
    cache_backend: str = "memory"  # "memory" or "sqlite"
    cache_db_url: str = "sqlite:///./cache/community_hub_cache.db"
    cache_default_ttl_seconds: int = 900  # 15 minutes
    cache_refresh_window: float = 0.2  # Last 20% of a TTL counts as near expiry
    coalesce_timeout_seconds: float = 30.0

    # Remote data source
    remote_backend: str = "memory"  # "memory" or "rest"
    remote_base_url: str = "http://localhost:54321"
    remote_api_key: Optional[str] = None
    remote_timeout_seconds: float = 30.0
    realtime_poll_interval_seconds: float = 5.0
    realtime_on_startup: bool = True  # Follow marketplace and feed changes

    # Acting user (provided by the auth layer)
    current_user_id: str = "current-user"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
