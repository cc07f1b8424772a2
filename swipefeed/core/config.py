from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "swipefeed"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Candidate API
    CANDIDATE_API_URL: str = "http://localhost:5000/api"
    CANDIDATE_API_TIMEOUT_SECONDS: float = 15.0

    # Pool
    PAGE_SIZE: int = 10
    PRELOAD_THRESHOLD: int = 3

    # Retry
    RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_JITTER_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 10000

    # Swipes
    SWIPE_TIMEOUT_SECONDS: float = 10.0

    # Match delivery
    MATCH_BATCH_SIZE: int = 3
    MATCH_STAGGER_MS: int = 800
    MATCH_RESCHEDULE_MS: int = 1000

    # Images
    IMAGE_PRIORITY_COUNT: int = 3
    IMAGE_IDLE_DELAY_MS: int = 200

    # Pull to refresh
    PULL_THRESHOLD_PX: float = 100.0
    PULL_RESISTANCE: float = 0.5
    PULL_MAX_FACTOR: float = 1.5

    # Analytics
    ANALYTICS_ENABLED: bool = False
    ANALYTICS_URL: str = "http://localhost:5000/api/analytics/events"
    ANALYTICS_BUFFER_SIZE: int = 1000

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"

    # App
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
