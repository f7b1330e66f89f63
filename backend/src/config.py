"""
Configuration management for the Cricket Fantasy Leaderboard Service.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Supabase Configuration
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY", None)

    # SportMonks Cricket API Configuration
    sportmonks_api_base_url: str = os.getenv(
        "SPORTMONKS_API_BASE_URL", "https://cricket.sportmonks.com/api/v2.0"
    )
    sportmonks_api_token: str = os.getenv("SPORTMONKS_API_TOKEN", "")
    # Optional league filter for the fixtures list (e.g. 1 = IPL)
    sportmonks_league_id: Optional[str] = os.getenv("SPORTMONKS_LEAGUE_ID", None)

    # Rate Limiting
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "60"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.2"))

    # Retry Configuration
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    max_retry_delay: int = int(os.getenv("MAX_RETRY_DELAY", "60"))
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "30.0"))

    # Fixture window: yesterday through the day after tomorrow
    fixtures_days_back: int = int(os.getenv("FIXTURES_DAYS_BACK", "1"))
    fixtures_days_ahead: int = int(os.getenv("FIXTURES_DAYS_AHEAD", "2"))

    # Cache Configuration (seconds)
    fixtures_cache_ttl: int = int(os.getenv("FIXTURES_CACHE_TTL", "360"))
    squad_cache_ttl: int = int(os.getenv("SQUAD_CACHE_TTL", "86400"))  # 24 hours
    # Lock status reads for display may be this stale; submissions always re-read
    lock_status_cache_ttl: int = int(os.getenv("LOCK_STATUS_CACHE_TTL", "5"))

    # Leaderboard job
    stats_fetch_concurrency: int = int(os.getenv("STATS_FETCH_CONCURRENCY", "4"))
    # 0 = run once and exit; otherwise seconds between runs
    leaderboard_interval: int = int(os.getenv("LEADERBOARD_INTERVAL", "0"))
    # Give every known league participant a row in every window (zero when idle)
    include_inactive_users: bool = _env_bool("INCLUDE_INACTIVE_USERS", "true")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key and not self.supabase_service_key:
            errors.append("SUPABASE_KEY or SUPABASE_SERVICE_ROLE_KEY is required")
        if self.stats_fetch_concurrency < 1:
            errors.append("STATS_FETCH_CONCURRENCY must be at least 1")
        if self.fixtures_days_back < 0 or self.fixtures_days_ahead < 0:
            errors.append("FIXTURES_DAYS_BACK and FIXTURES_DAYS_AHEAD must not be negative")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Validate after initialization."""
        self.validate()
