"""
GL Recon - Configuration Management

Centralized configuration for environment variables and reconciliation defaults.
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
- Secure defaults
"""

from decimal import Decimal
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./gl_recon.db"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default=DEFAULT_DATABASE_URL,
        description="Async SQLAlchemy URL (postgresql+asyncpg:// in production)"
    )
    DATABASE_ECHO: bool = Field(default=False)

    # ==================== AUTHENTICATION ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Primary internal API key for service-to-service calls"
    )
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated additional keys (rotation)"
    )

    # ==================== RECONCILIATION ====================
    RECON_FUZZY_ENABLED: bool = Field(
        default=True,
        description="Run the fuzzy tier after exact matching"
    )
    RECON_DEFAULT_FUZZY_THRESHOLD: float = Field(
        default=80.0,
        ge=0,
        le=100,
        description="Minimum description similarity (0-100) for fuzzy candidates"
    )
    RECON_DEFAULT_DATE_TOLERANCE_DAYS: int = Field(
        default=7,
        ge=0,
        le=30,
        description="Maximum days between GL date and period start for fuzzy candidates"
    )
    RECON_DEFAULT_AMOUNT_TOLERANCE: Decimal = Field(
        default=Decimal("1000"),
        ge=0,
        description="Maximum absolute amount difference for fuzzy candidates"
    )
    RECON_RUN_RETENTION_DAYS: int = Field(
        default=365,
        description="Run ledger entries older than this may be purged"
    )

    # ==================== OBSERVABILITY ====================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="GL Reconciliation API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def is_postgres(self) -> bool:
        return self.DATABASE_URL.startswith("postgresql")

    @property
    def internal_api_keys(self) -> List[str]:
        """Primary key first, then rotation keys"""
        keys = []
        if self.INTERNAL_API_KEY.strip():
            keys.append(self.INTERNAL_API_KEY.strip())
        keys.extend(k.strip() for k in self.INTERNAL_API_KEYS.split(",") if k.strip())
        return keys

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if self.is_production:
            if not self.is_postgres:
                errors.append("DATABASE_URL must point to PostgreSQL in production")

            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if not self.INTERNAL_API_KEY and not self.INTERNAL_API_KEYS:
                errors.append("INTERNAL_API_KEY is required in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    if settings.DATABASE_URL == DEFAULT_DATABASE_URL:
        status["warnings"].append("DATABASE_URL not set, using local SQLite file")
    status["variables"]["DATABASE_URL"] = "✓ Set"

    if not settings.INTERNAL_API_KEY and not settings.INTERNAL_API_KEYS:
        status["warnings"].append("Internal API key not set, reconciliation endpoints will reject calls")
        status["variables"]["INTERNAL_API_KEY"] = "⚠ Not set"
    else:
        status["variables"]["INTERNAL_API_KEY"] = "✓ Set"

    if not settings.RECON_FUZZY_ENABLED:
        status["warnings"].append("Fuzzy matching disabled, only exact matches will be applied")

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
