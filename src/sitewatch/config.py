from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    app_name: str = "SiteWatch"
    app_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./sitewatch.db"

    # Status cache (empty = in-process memory cache)
    cache_url: Optional[str] = None

    # JWT issued by the auth provider
    secret_key: str = "change-me-in-production-use-a-real-secret-key"
    jwt_algorithm: str = "HS256"

    # Bearer secret for the cron trigger
    cron_secret: str = ""

    # Checks
    check_interval_seconds: int = 300  # scheduled check cadence
    manual_check_timeout: int = 15  # seconds, "check now"
    scheduled_check_timeout: int = 10  # seconds, bulk checks
    rate_limit_window_seconds: int = 60
    max_concurrent_checks: int = 20
    scheduler_enabled: bool = False
    user_agent: str = "SiteWatch-Monitor/1.0"

    # Outbound URL guard
    allowed_ports: list[int] = [80, 443, 8080, 8443]
    allow_private_targets: bool = False
    max_redirects: int = 3

    # Cache lifetimes
    cache_ttl_multiplier: int = 3  # primary ttl = interval * multiplier
    cache_fallback_ttl: int = 120

    # Reports
    incident_report_limit: int = 25
    max_report_days: int = 90

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def status_cache_ttl(self) -> int:
        return self.check_interval_seconds * self.cache_ttl_multiplier


@lru_cache
def get_settings() -> Settings:
    return Settings()
