from pydantic_settings import BaseSettings
from pydantic import BaseModel, validator
from functools import lru_cache
from typing import List, Optional


class FeatureFlags(BaseModel):
    """Feature toggles handed to the ingestion orchestrator at construction"""

    incremental_sync: bool = True
    notifications: bool = True
    analytics_refresh: bool = True
    auto_geocoding: bool = False


class Settings(BaseSettings):
    """Application configuration settings"""

    # Application Configuration
    APP_NAME: str = "PMPulse Sync"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE_PATH: Optional[str] = None
    API_V1_STR: str = "/api/v1"

    # Database Configuration
    DATABASE_URL: str = "postgresql://pmpulse:pmpulse@db:5432/pmpulse"

    # Redis Configuration
    REDIS_URL: str = "redis://redis:6379/0"

    # Security Configuration
    ENCRYPTION_KEY: str = ""

    # AppFolio API Configuration
    APPFOLIO_HOST_SUFFIX: str = "appfolio.com"
    APPFOLIO_REQUEST_TIMEOUT_SECONDS: int = 30
    APPFOLIO_USER_AGENT: str = "PMPulse/1.0"

    # Rate Limiting / Retry
    RATE_LIMIT_REQUESTS_PER_MINUTE: int = 60
    MAX_RETRIES: int = 5
    INITIAL_BACKOFF_SECONDS: float = 1.0
    BACKOFF_MULTIPLIER: float = 2.0
    MAX_BACKOFF_SECONDS: float = 60.0

    # Sync Configuration
    SYNC_BATCH_SIZE: int = 100
    INCREMENTAL_LOOKBACK_DAYS: int = 7
    FULL_SYNC_LOOKBACK_DAYS: int = 365  # 0 means unbounded
    SYNC_RESOURCES: str = "properties,units,vendors,work_orders,expenses"
    SYNC_TIMEOUT_SECONDS: int = 600
    SYNC_LOCK_NAME: str = "pmpulse:sync:appfolio"
    STALE_RUN_HOURS: int = 2

    # Schedule Configuration
    FULL_SYNC_TIME: str = "02:00"
    INCREMENTAL_SYNC_INTERVAL: int = 15
    BUSINESS_HOURS_ENABLED: bool = True
    BUSINESS_HOURS_TIMEZONE: str = "America/Los_Angeles"
    BUSINESS_HOURS_START: int = 9
    BUSINESS_HOURS_END: int = 17
    BUSINESS_HOURS_WEEKDAYS_ONLY: bool = True
    BUSINESS_HOURS_INTERVAL: int = 15
    OFF_HOURS_INTERVAL: int = 60

    # Failure Alerts
    ALERT_FAILURE_THRESHOLD: int = 3
    ALERT_COOLDOWN_MINUTES: int = 60
    ALERT_HISTORY_SIZE: int = 10
    ALERT_RECIPIENTS: str = ""  # comma-separated
    ALERT_FROM_ADDRESS: str = "noreply@pmpulse.local"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    DASHBOARD_URL: str = "http://localhost:8000/admin"

    # Feature Flags
    FEATURE_INCREMENTAL_SYNC: bool = True
    FEATURE_NOTIFICATIONS: bool = True
    FEATURE_ANALYTICS_REFRESH: bool = True
    FEATURE_AUTO_GEOCODING: bool = False

    # Follow-up tasks consumed by the analytics and geocoding workers
    ANALYTICS_REFRESH_TASK: str = "tasks.analytics.refresh_analytics"
    GEOCODING_TASK: str = "tasks.geocoding.geocode_properties"

    @validator("DATABASE_URL", pre=True)
    def fix_database_url(cls, v):
        """
        Hosted Postgres providers hand out postgres:// but SQLAlchemy 1.4+ requires postgresql://
        """
        if v and isinstance(v, str) and v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @validator("BUSINESS_HOURS_END")
    def end_after_start(cls, v, values):
        start = values.get("BUSINESS_HOURS_START", 0)
        if v <= start:
            raise ValueError("BUSINESS_HOURS_END must be later than BUSINESS_HOURS_START")
        return v

    @property
    def sync_resources(self) -> List[str]:
        return _split_csv(self.SYNC_RESOURCES)

    @property
    def alert_recipients(self) -> List[str]:
        return _split_csv(self.ALERT_RECIPIENTS)

    def feature_flags(self) -> FeatureFlags:
        return FeatureFlags(
            incremental_sync=self.FEATURE_INCREMENTAL_SYNC,
            notifications=self.FEATURE_NOTIFICATIONS,
            analytics_refresh=self.FEATURE_ANALYTICS_REFRESH,
            auto_geocoding=self.FEATURE_AUTO_GEOCODING,
        )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
