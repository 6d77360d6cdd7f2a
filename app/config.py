from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    """Environment-driven settings shared by the API and the sync worker."""

    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Hosted Postgres and auth
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str

    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None

    # Fernet key for tokens at rest
    ENCRYPTION_KEY: str | None = None

    # Pool sizing; one sync pass holds at most one connection per concurrent user
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0
    DB_POOL_MAX_LIFETIME: float = 3600.0

    # Sync policy
    CALENDAR_SYNC_PAST_DAYS: int = 7
    CALENDAR_SYNC_FUTURE_DAYS: int = 30
    CALENDAR_SYNC_MAX_RESULTS: int = 250  # provider page size
    CALENDAR_SYNC_MAX_PAGES: int = 10
    CALENDAR_REQUEST_TIMEOUT: float = 30.0  # per HTTP call
    CALENDAR_SYNC_USER_TIMEOUT: float = 120.0  # per user reconciliation
    CALENDAR_SYNC_INTERVAL_MINUTES: int = 15
    CALENDAR_SYNC_MAX_CONCURRENT: int = 1
    CALENDAR_DEFAULT_TIMEZONE: str = "UTC"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1/.well-known/jwks.json"

    def get_db_pool_config(self) -> dict:
        """Keyword arguments for AsyncConnectionPool sizing and timeouts."""
        if self.environment == "development":
            min_size, max_size, timeout = 1, 4, 15.0
        else:
            min_size, max_size, timeout = (
                self.DB_POOL_MIN_SIZE,
                self.DB_POOL_MAX_SIZE,
                self.DB_POOL_TIMEOUT,
            )
        return {
            "min_size": min_size,
            "max_size": max(max_size, min_size),
            "timeout": timeout,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

    def get_sync_window_days(self) -> tuple[int, int]:
        """Days before and after now covered by one reconciliation run."""
        return self.CALENDAR_SYNC_PAST_DAYS, self.CALENDAR_SYNC_FUTURE_DAYS


settings = Settings()
