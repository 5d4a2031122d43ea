from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./mentorlink.db"

    # Application
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Remote collaborators (session log, presence, payment, requests)
    SERVICE_BASE_URL: str = "http://localhost:8000"
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    # Device-local fallback store
    FALLBACK_STORE_URL: str = "sqlite:///./mentorlink_local.db"

    # Call room provider
    CALL_ROOM_BASE_URL: str = "https://meet.example.com"

    # Session policy
    MINIMUM_SESSION_MINUTES: float = 1
    STATUS_POLL_INTERVAL_SECONDS: float = 5
    CALL_WINDOW_PROBE_SECONDS: float = 1
    CALL_WINDOW_MAX_SECONDS: float = 2 * 60 * 60

    # Payment gateway
    PAYMENT_KEY_SECRET: Optional[str] = None
    MENTORSHIP_FEE_AMOUNT: int = 300
    MENTORSHIP_FEE_CURRENCY: str = "INR"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
