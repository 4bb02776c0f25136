# backend/buildledger/core/settings.py
"""
BuildLedger - Configuration Management with pydantic-settings

- Loads from environment and root .env
- Validates and normalizes values
- Cached singleton via get_settings()
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional
from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from buildledger.core.version import __version__

# backend/buildledger/core/settings.py -> <repo>/.env
_ENV_FILE = Path(__file__).resolve().parent.parent.parent.parent / ".env"


class Settings(BaseSettings):
    """
    Application settings with validation.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Application Settings
    # ===================
    PROJECT_NAME: str = "BuildLedger"
    VERSION: str = __version__
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment")

    # ===================
    # Database Settings
    # ===================
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: int = Field(default=5432, description="PostgreSQL port")
    DB_NAME: str = Field(default="buildledger", description="Database name")
    DB_USER: str = Field(default="postgres", description="Database user")
    DB_PASSWORD: str = Field(default="postgres", description="Database password")
    DATABASE_URL: Optional[str] = Field(
        default=None, description="Full database URL (overrides DB_* settings)"
    )
    DB_ECHO: bool = Field(default=False, description="Log every SQL statement")

    @property
    def database_url(self) -> str:
        """Build PostgreSQL database URL from components or use explicit URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # json or text
    LOG_FILE: Optional[str] = None

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    @field_validator("LOG_FORMAT")
    @classmethod
    def normalize_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"json", "text"}:
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return fmt

    # ===================
    # Inventory
    # ===================
    LOT_EXPIRY_WARNING_DAYS: int = Field(
        default=30, ge=0, description="Days before expiry a lot counts as expiring soon"
    )
    REORDER_WARNING_MULTIPLIER: float = Field(
        default=1.5, gt=1, description="Warning band above the reorder point"
    )
    BLOCK_EXPIRED_LOTS: bool = Field(
        default=False, description="Exclude expired lots from FEFO selection"
    )

    # ===================
    # Quality / Defect Alerts
    # ===================
    ENABLE_DEFECT_ALERTS: bool = True
    DEFECT_RATE_CRITICAL_THRESHOLD: float = Field(
        default=10.0, ge=0, le=100, description="Defect rate (%) at which alerts become critical"
    )

    @property
    def reorder_warning_multiplier(self) -> Decimal:
        return Decimal(str(self.REORDER_WARNING_MULTIPLIER))

    @property
    def defect_rate_critical_threshold(self) -> Decimal:
        return Decimal(str(self.DEFECT_RATE_CRITICAL_THRESHOLD))


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
