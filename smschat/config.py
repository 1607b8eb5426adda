from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required
    DATABASE_URL: str

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Bearer tokens - secret is required
    JWT_SECRET: str
    JWT_EXPIRY_HOURS: int = 24
    BCRYPT_ROUNDS: int = 12

    # Twilio credentials; any of these may instead come from Secrets Manager
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    TWILIO_SECRET_NAME: Optional[str] = None
    AWS_REGION: str = "us-east-1"

    TWILIO_TIMEOUT_SECONDS: float = 10.0
    TWILIO_VALIDATE_WEBHOOK_SIGNATURE: bool = False

    # Externally reachable base URL used to build the status callback address
    PUBLIC_BASE_URL: Optional[str] = None

    STATUS_POLL_WINDOW_HOURS: int = 24

    # Comma-separated list of allowed browser origins
    CORS_ORIGINS: str = "*"

    # Accounts created at startup when missing, as "name:password,name:password"
    SEED_USERS: Optional[str] = None

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def seed_users(self) -> dict[str, str]:
        users = {}
        for entry in (self.SEED_USERS or "").split(","):
            user_name, _, password = entry.strip().partition(":")
            if user_name and password:
                users[user_name] = password
        return users

    @property
    def status_callback_url(self) -> Optional[str]:
        if not self.PUBLIC_BASE_URL:
            return None
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/webhooks/twilio/status"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
