"""Application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./clickstream.db"
    auto_create_tables: bool = True  # in production, use migrations

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    environment: str = "development"
    log_level: str = ""  # DEBUG|INFO|WARNING..., empty means by environment

    # Security
    api_key_salt: str = "change-me"
    admin_api_key: str = ""

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:3001"

    # Redis (cache, rate limiting and ARQ worker)
    redis_url: str = "redis://127.0.0.1:6379"

    # Cache
    cache_driver: str = "memory"  # memory|redis
    cache_ttl: int = 3600
    aggregation_cache_ttl: int = 300
    rolling_cache_size: int = 1000
    rolling_cache_ttl: int = 3600

    # Tracking
    anonymize_ip: bool = True
    trust_proxy_headers: bool = False
    session_timeout_seconds: int = 30 * 60
    retention_days: int = 365

    # Background jobs (ARQ)
    idle_sweep_interval_minutes: int = 5
    purge_hour_utc: int = 3

    # Rate limiting
    rate_limit_driver: str = "memory"  # memory|redis
    rate_limit_window_seconds: int = 60
    tracking_rate_limit: int = 60
    analytics_rate_limit: int = 30
    rate_limit_whitelist: str = ""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def whitelisted_ips(self) -> List[str]:
        """Parse rate limit whitelist from comma-separated string."""
        return [ip.strip() for ip in self.rate_limit_whitelist.split(",") if ip.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
