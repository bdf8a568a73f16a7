"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="CareSlot API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(..., alias="REDIS_HOST")
    redis_port: int = Field(..., alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # JWT
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Firebase
    firebase_credentials_path: str | None = Field(
        default=None,
        alias="FIREBASE_CREDENTIALS_PATH",
        description="Path to Firebase service account JSON file",
    )

    firebase_config_json: str | None = Field(
        default=None,
        alias="FIREBASE_CONFIG_JSON",
        description="Raw JSON string of the Firebase service account",
    )

    # Booking policy
    advance_payment_ratio: float = Field(
        default=0.3,
        gt=0,
        lt=1,
        alias="ADVANCE_PAYMENT_RATIO",
        description="Share of the consultation fee collected to secure a booking",
    )
    cancellation_lead_time_minutes: int = Field(
        default=120,
        ge=0,
        alias="CANCELLATION_LEAD_TIME_MINUTES",
    )
    same_day_booking_buffer_minutes: int = Field(
        default=30,
        ge=0,
        alias="SAME_DAY_BOOKING_BUFFER_MINUTES",
    )
    availability_cache_ttl_seconds: int = Field(
        default=30,
        ge=0,
        alias="AVAILABILITY_CACHE_TTL_SECONDS",
    )
    max_availability_range_days: int = Field(
        default=31,
        ge=1,
        alias="MAX_AVAILABILITY_RANGE_DAYS",
    )
    notifications_enabled: bool = Field(default=True, alias="NOTIFICATIONS_ENABLED")

    # Payment gateway
    payment_gateway_url: str = Field(
        default="https://api.razorpay.com/v1",
        alias="PAYMENT_GATEWAY_URL",
    )
    payment_key_id: str = Field(default="", alias="PAYMENT_KEY_ID")
    payment_key_secret: str = Field(default="", alias="PAYMENT_KEY_SECRET")
    payment_currency: str = Field(default="INR", alias="PAYMENT_CURRENCY")
    payment_timeout_seconds: float = Field(default=30.0, alias="PAYMENT_TIMEOUT_SECONDS")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
