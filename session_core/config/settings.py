"""
Centralized configuration management for the Session Core service.

This module provides a centralized configuration system using Pydantic BaseSettings
for managing all application settings including JWT, cookies, rate limiting,
caching, cleanup, event publishing, database, and logging settings.

Every field can be overridden by an environment variable of the same name
(or from a ``.env`` file in the working directory).
"""
import os
import secrets
from typing import List, Optional, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Settings class for all application configuration.

    This class uses Pydantic's BaseSettings to manage all application configuration
    settings with environment variable overrides and validation.
    """
    # Application settings
    APP_NAME: str = "Session Core"
    APP_DESCRIPTION: str = "Session credential issuance, verification, rotation and revocation"
    APP_VERSION: str = "0.1.0"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # API settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False

    # CORS settings
    CORS_ORIGINS: List[str] = Field(default=["http://localhost", "http://localhost:3000"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS_ORIGINS from a comma separated string to a list."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # JWT settings
    ACCESS_TOKEN_SECRET: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    REFRESH_TOKEN_SECRET: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "auth-service"
    JWT_AUDIENCE: str = "session-clients"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    SERVICE_TOKEN_EXPIRE_MINUTES: int = 60

    # Refresh cookie settings
    REFRESH_COOKIE_NAME: str = "jwt"
    REFRESH_COOKIE_PATH: str = "/"

    # Password settings
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 72
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_DIGIT: bool = True
    PASSWORD_REQUIRE_SPECIAL: bool = False

    # Account lockout settings
    MAX_FAILED_LOGINS: int = 10
    LOCKOUT_DURATION_MINUTES: int = 30

    # Rate limiting settings
    RATE_LIMIT_ENABLED: bool = True
    LOGIN_RATE_WINDOW_SECONDS: int = 15 * 60
    LOGIN_RATE_MAX: int = 5
    REGISTER_RATE_WINDOW_SECONDS: int = 60 * 60
    REGISTER_RATE_MAX: int = 3
    REFRESH_RATE_WINDOW_SECONDS: int = 15 * 60
    REFRESH_RATE_MAX: int = 20
    GENERAL_RATE_WINDOW_SECONDS: int = 15 * 60
    GENERAL_RATE_MAX: int = 100

    # Verification cache settings
    USER_CACHE_MAX_SIZE: int = 1000

    # Database settings
    DATABASE_URL: Optional[str] = None
    DATABASE_ECHO: bool = False
    DATABASE_TIMEOUT_SECONDS: float = 5.0

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_url(cls, v: Optional[str]) -> str:
        """Set default SQLite database URL if not provided."""
        if isinstance(v, str) and v:
            return v

        # Default to SQLite database in project root
        base_dir = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
        return f"sqlite:///{os.path.join(base_dir, 'sessions.db')}"

    # Token cleanup settings
    CLEANUP_ENABLED: bool = True
    CLEANUP_INTERVAL_SECONDS: float = 60 * 60
    CLEANUP_RETENTION_DAYS: int = 30

    # Event publishing settings
    EVENTS_ENABLED: bool = True
    EVENT_WEBHOOK_URL: Optional[str] = None
    EVENT_QUEUE_SIZE: int = 1000
    EVENT_MAX_ATTEMPTS: int = 5
    EVENT_RETRY_BACKOFF_SECONDS: float = 0.3
    EVENT_TIMEOUT_SECONDS: float = 5.0

    # Downstream user service settings
    USER_SERVICE_URL: Optional[str] = None
    USER_SERVICE_TIMEOUT_SECONDS: float = 5.0

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @model_validator(mode="after")
    def check_distinct_secrets(self) -> "Settings":
        """Access and refresh tokens must be signed with different secrets."""
        if self.ACCESS_TOKEN_SECRET == self.REFRESH_TOKEN_SECRET:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
        return self

    @property
    def is_production(self) -> bool:
        """Whether the service runs in production mode."""
        return self.APP_ENV.lower() == "production"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }


# Create a global settings instance
settings = Settings()


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """
    Get the application settings.

    Returns:
        Settings: The application settings instance.
    """
    return settings
