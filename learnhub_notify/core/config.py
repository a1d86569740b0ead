from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyUrl, EmailStr, Field, field_validator
import secrets


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables or .env.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"  # Ignore extra fields in .env file
    )

    # -------------------------
    # Database
    # -------------------------
    DATABASE_URL: AnyUrl

    # -------------------------
    # Security / Auth
    # -------------------------
    SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # -------------------------
    # Email / SMTP
    # -------------------------
    SMTP_EMAIL: Optional[EmailStr] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_SERVER: Optional[str] = None
    SMTP_PORT: Optional[int] = None

    # -------------------------
    # Application
    # -------------------------
    PROJECT_NAME: str = "LearnHub Notifications"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "UTC"

    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # -------------------------
    # Redis (for ARQ task queue)
    # -------------------------
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the delivery queue"
    )

    # =========================================================
    # Notifications
    # =========================================================
    NOTIFICATION_EXPIRY_DAYS: int = Field(
        default=30,
        ge=1,
        description="Days until a notification expires when no expiry is given"
    )

    NOTIFICATION_DEFAULT_PAGE_SIZE: int = Field(
        default=20,
        ge=1,
        description="Page size used when a listing request gives none"
    )

    NOTIFICATION_MAX_PAGE_SIZE: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Upper bound for the page size of notification listings"
    )

    # How many due notifications one worker poll picks up
    DELIVERY_BATCH_SIZE: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum notifications delivered per poll"
    )

    # Queue an immediate delivery job when a notification is created;
    # the worker's poll picks up anything that was not queued
    DELIVERY_ENQUEUE_ON_CREATE: bool = Field(
        default=True,
        description="Enqueue a delivery job for notifications that are due now"
    )

    # A worker claims a channel before calling its transport; a claim
    # older than this is treated as abandoned (worker crashed mid-send)
    DELIVERY_CLAIM_TIMEOUT_SECONDS: int = Field(
        default=300,
        ge=1,
        description="Seconds before an unfinished channel claim can be retaken"
    )

    DELIVERY_MAX_TRIES: int = Field(
        default=3,
        ge=1,
        description="ARQ attempts for a delivery job when the store is unavailable"
    )

    # =========================================================
    # Delivery Transports
    # =========================================================
    FIREBASE_SERVICE_ACCOUNT_KEY_PATH: Optional[str] = Field(
        default=None,
        description="Path to the Firebase service account JSON (push channel)"
    )

    NOTIFICATION_WEBHOOK_URL: Optional[AnyUrl] = Field(
        default=None,
        description="Endpoint that receives webhook channel deliveries"
    )

    WEBHOOK_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single webhook delivery"
    )

    @field_validator("ALGORITHM")
    def validate_algorithm(cls, v):
        if not v or not isinstance(v, str):
            raise ValueError("ALGORITHM must be a non-empty string.")
        return v

    @field_validator("LOG_LEVEL")
    def validate_log_level(cls, v):
        """Ensure the log level is one the logging module knows."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()


settings = Settings()
