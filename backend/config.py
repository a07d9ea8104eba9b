"""
HR Identity - Settings

Everything configurable comes from environment variables (or a local .env
file): database URL, JWT secrets and token lifetimes, bcrypt cost, email
provider and logging. Production refuses to start with development secrets.
"""

from datetime import timedelta
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)

DEV_JWT_SECRET_KEY = "hr-identity-dev-access-secret-change-me"
DEV_JWT_REFRESH_SECRET_KEY = "hr-identity-dev-refresh-secret-change-me"


class Settings(BaseSettings):
    """
    Identity service settings.
    Field names match the environment variable names exactly.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(default=False)

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (postgresql+asyncpg://...)"
    )
    DATABASE_SSL: bool = Field(default=False, description="Require SSL for database connections")

    # ==================== AUTHENTICATION ====================
    JWT_SECRET_KEY: str = Field(
        default=DEV_JWT_SECRET_KEY,
        description="Secret key for access token signing (must be changed in production)"
    )
    JWT_REFRESH_SECRET_KEY: str = Field(
        default=DEV_JWT_REFRESH_SECRET_KEY,
        description="Secret key for refresh token signing (must differ from JWT_SECRET_KEY)"
    )
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT signing algorithm")
    JWT_ISSUER: str = Field(default="hr-identity")
    JWT_AUDIENCE: str = Field(default="hr-api")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=15,
        description="Access token expiry in minutes"
    )
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = Field(
        default=7,
        description="Refresh token expiry in days"
    )
    EMAIL_VERIFICATION_EXPIRE_MINUTES: int = Field(default=60)
    PASSWORD_RESET_EXPIRE_MINUTES: int = Field(default=10)
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=31)

    # ==================== EMAIL ====================
    EMAIL_API_KEY: str = Field(default="", description="Resend API key")
    EMAIL_FROM_ADDRESS: str = Field(default="", description="Default sender address")
    FRONTEND_URL: str = Field(
        default="http://localhost:5173",
        description="Base URL for confirmation and reset links"
    )
    PRODUCT_NAME: str = Field(default="HR Management System")

    # ==================== OBSERVABILITY ====================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )
    LOG_JSON: bool = Field(default=True, description="Emit JSON log lines")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.JWT_REFRESH_TOKEN_EXPIRE_DAYS)

    @property
    def email_verification_ttl(self) -> timedelta:
        return timedelta(minutes=self.EMAIL_VERIFICATION_EXPIRE_MINUTES)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(minutes=self.PASSWORD_RESET_EXPIRE_MINUTES)

    def validate_production_config(self) -> List[str]:
        """
        Problems that make this configuration unsafe to deploy.
        An empty list means the configuration is acceptable.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        for name, value, default in (
            ("JWT_SECRET_KEY", self.JWT_SECRET_KEY, DEV_JWT_SECRET_KEY),
            ("JWT_REFRESH_SECRET_KEY", self.JWT_REFRESH_SECRET_KEY, DEV_JWT_REFRESH_SECRET_KEY),
        ):
            if not value:
                errors.append(f"{name} is required")
            elif value == default:
                errors.append(f"{name} must be changed from default value")
            elif len(value) < 32:
                errors.append(f"{name} should be at least 32 characters")

        if self.JWT_SECRET_KEY and self.JWT_SECRET_KEY == self.JWT_REFRESH_SECRET_KEY:
            errors.append("JWT_REFRESH_SECRET_KEY must differ from JWT_SECRET_KEY")

        if self.is_production:
            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")
            if self.DEBUG:
                errors.append("DEBUG should be False in production")
            if not self.FRONTEND_URL.startswith("https://"):
                errors.append("FRONTEND_URL must use https in production")

        return errors

    def get_database_url(self) -> str:
        """Get the database URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        raise ValueError("No database configuration found. Set DATABASE_URL.")


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings, loaded on first use.
    Raises ValueError in production when validate_production_config() reports problems.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings
