"""
Configuration management for the agency reports lifecycle engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Agency Reports Lifecycle Engine"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # Database
    database_url: str = "sqlite:///./agency_reports.db"

    # Upstream connectors, "package.module:factory" returning {platform: connector}
    connector_factory: str = ""

    # Period boundaries are computed in this timezone
    reporting_timezone: str = "Europe/Warsaw"

    # Smart cache
    cache_stale_threshold_hours: float = 3.0
    single_flight_enabled: bool = True

    # Upstream retry policy
    retry_max_retries: int = 3  # Retries after the first attempt
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 60.0
    retry_jitter: bool = True

    # Gap-fill collection
    gap_fill_lookback_weeks: int = 53
    gap_fill_lookback_months: int = 13
    gap_fill_batch_size: int = 5  # Periods per invocation
    gap_fill_inter_call_delay_seconds: float = 1.0

    # Batch jobs over the client list
    client_batch_size: int = 3  # 2-5 clients in flight
    inter_batch_delay_seconds: float = 2.0

    # Retention horizons
    retention_daily_days: int = 90  # Use 7 for a fast-access daily window
    retention_weekly_weeks: int = 54
    retention_monthly_months: int = 14

    # Trigger schedules (cron, reporting timezone)
    schedule_cache_refresh: str = "0 */3 * * *"
    schedule_month_archive: str = "5 0 1 * *"
    schedule_week_archive: str = "5 0 * * mon"
    schedule_gap_fill: str = "0 2 * * sun"
    schedule_retention: str = "30 3 * * *"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
