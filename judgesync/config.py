from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    DEBUG: bool = False

    # DATABASE_URL must be provided via environment (Postgres in production,
    # SQLite is accepted for local development and tests).
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # CourtListener REST API. Either variable name is accepted for the token.
    COURTLISTENER_API_KEY: Optional[str] = None
    COURTLISTENER_API_TOKEN: Optional[str] = None
    COURTLISTENER_BASE_URL: str = "https://www.courtlistener.com/api/rest/v4"
    COURTLISTENER_USER_AGENT: str = "JudgeSync/1.0 (judicial directory sync)"
    # Minimum gap between two outbound requests, in seconds.
    COURTLISTENER_REQUEST_DELAY_SECONDS: float = 1.0
    COURTLISTENER_TIMEOUT_SECONDS: float = 20.0
    COURTLISTENER_PAGE_SIZE: int = 50

    # Shared secrets. CRON_SECRET is sent by the scheduler as a bearer token,
    # SYNC_API_KEY by operators in the x-api-key header.
    CRON_SECRET: Optional[str] = None
    SYNC_API_KEY: Optional[str] = None
    ADMIN_RATE_LIMIT_PER_MINUTE: int = 30

    # Queue behaviour
    SYNC_DEFAULT_PRIORITY: int = 0
    SYNC_MAX_RETRIES: int = 3
    # Retry n waits SYNC_RETRY_BACKOFF_SECONDS * 2**n before it becomes claimable.
    SYNC_RETRY_BACKOFF_SECONDS: float = 60.0
    SYNC_POLL_INTERVAL_SECONDS: float = 30.0
    SYNC_STORE_BACKOFF_SECONDS: float = 60.0
    SYNC_JOB_TIMEOUT_SECONDS: float = 900.0
    SYNC_STALE_RUNNING_MINUTES: int = 60
    # When true the API process also runs the queue loop (single-service deploys).
    SYNC_PROCESS_IN_APP: bool = False
    SYNC_DEFAULT_JURISDICTION: str = "CA"

    # Health ladder: (min success rate, max pending backlog) per level.
    SYNC_HEALTH_CRITICAL_SUCCESS_RATE: float = 75.0
    SYNC_HEALTH_CRITICAL_BACKLOG: int = 100
    SYNC_HEALTH_WARNING_SUCCESS_RATE: float = 90.0
    SYNC_HEALTH_WARNING_BACKLOG: int = 50
    SYNC_HEALTH_CAUTION_SUCCESS_RATE: float = 95.0
    SYNC_HEALTH_CAUTION_BACKLOG: int = 20
    SYNC_UPTIME_SAMPLE_SIZE: int = 10
    SYNC_RECENT_LOG_LIMIT: int = 10

    class Config:
        # Do not silently read .env in CI; the platform injects env
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def courtlistener_api_token(self) -> Optional[str]:
        return self.COURTLISTENER_API_KEY or self.COURTLISTENER_API_TOKEN


settings = Settings()

if not settings.DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set; configure Postgres (or SQLite for development)")
