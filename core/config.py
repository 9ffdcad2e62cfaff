"""
Settings for the API, the Celery worker and beat.

Everything comes from the environment (or a local .env file). Only
SECRET_KEY is mandatory; the rest default to the docker-compose stack.
"""
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    SITE_URL: str = Field(default="http://localhost:3000")  # deep links in notifications
    CORS_ORIGINS: Optional[str] = Field(default=None)  # comma-separated

    # Postgres. DATABASE_URL overrides the parts below (sqlite is fine for tests).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="challngr")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=1800)

    # Secrets
    SECRET_KEY: str = Field(
        default=...,
        min_length=32,
        description="Signs session JWTs. e.g. openssl rand -hex 32",
    )
    CRON_SECRET: Optional[str] = Field(default=None)  # scheduler bearer token

    # Redis: leaderboard cache, rate limits, Celery
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/1")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/1")
    CACHE_TTL_DEFAULT: int = Field(default=300)
    LEADERBOARD_CACHE_TTL: int = Field(default=60)
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_PER_MINUTE: int = Field(default=60)

    # Push delivery
    PUSH_PROVIDER: str = Field(default="novu")  # novu | onesignal
    NOVU_API_KEY: Optional[str] = Field(default=None)
    NOVU_API_URL: str = Field(default="https://api.novu.co")
    ONESIGNAL_APP_ID: Optional[str] = Field(default=None)
    ONESIGNAL_REST_API_KEY: Optional[str] = Field(default=None)
    ONESIGNAL_API_URL: str = Field(default="https://onesignal.com/api/v1/notifications")
    EXTERNAL_API_TIMEOUT: int = Field(default=15)
    NOTIFICATION_BATCH_SIZE: int = Field(default=50, ge=1, le=100)
    NOTIFICATION_MAX_PUSH_ATTEMPTS: int = Field(default=5, ge=1)

    # Competitions
    COMPETITION_DEFAULT_DURATION_DAYS: int = Field(default=30, ge=1)
    COMPETITION_ENDING_SOON_DAYS: int = Field(default=3, ge=1)

    # Observability
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json | text
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
