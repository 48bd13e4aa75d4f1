"""
Process configuration (pydantic-settings), read from the environment and `.env`.

Store business rules (discount handling, active shipping providers, customer
name format) are not here: they live in the `settings` table, see
services/settings.py.
"""
import socket
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "production")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _resolve_db_host(host: str) -> str:
    """Resolve the DB host up front; asyncpg would otherwise call getaddrinfo inside the event loop."""
    if not host or host in ("localhost", "127.0.0.1"):
        return host
    try:
        return socket.gethostbyname(host)
    except socket.gaierror:
        return host


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PostgreSQL
    DB_USER: str = Field(..., description="PostgreSQL username")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database name")
    DB_HOST: str = Field(default="localhost")
    DB_PORT: int = Field(default=5432)
    DB_POOL_SIZE: int = Field(default=10, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=20, ge=0)
    DB_POOL_RECYCLE: int = Field(default=1800, description="Seconds before a pooled connection is recycled")
    DB_ECHO: bool = Field(default=False, description="Log every SQL statement")

    # Redis: shipping method lists and the category tree
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_DB: int = Field(default=0)
    CACHE_TTL_SHIPPING_METHODS: int = Field(default=3600, ge=0, description="Seconds, 0 keeps entries until invalidated")
    CACHE_TTL_CATEGORY_TREE: int = Field(default=600, ge=0, description="Seconds, 0 keeps entries until invalidated")

    # HTTP
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated CORS origins, required in production")
    ENVIRONMENT: str = Field(default="production")
    LOG_LEVEL: str = Field(default="INFO")

    # Store and working currency
    DEFAULT_STORE_ID: int = Field(default=1, description="Store used when a request does not name one")
    PRIMARY_CURRENCY_CODE: str = Field(default="EUR", description="Working currency ISO code")
    CURRENCY_ROUNDING_ENABLED: bool = Field(default=True, description="Round unit prices and shipping rates")
    CURRENCY_ROUND_DECIMALS: int = Field(default=2, ge=0, le=4)
    CURRENCY_CUSTOM_FORMAT: Optional[str] = Field(default=None, description="Price format, e.g. '€ {0}'")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"ENVIRONMENT must be one of {ENVIRONMENTS}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {LOG_LEVELS}")
        return v

    @field_validator("PRIMARY_CURRENCY_CODE")
    @classmethod
    def validate_currency_code(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("PRIMARY_CURRENCY_CODE must be a 3-letter ISO code")
        return v

    @field_validator("CURRENCY_CUSTOM_FORMAT")
    @classmethod
    def validate_custom_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "{0}" not in v:
            raise ValueError("CURRENCY_CUSTOM_FORMAT must contain the {0} placeholder")
        return v

    def missing_production_settings(self) -> List[str]:
        """Settings that may be empty in development but not in production."""
        missing = []
        if self.is_production and not self.allowed_origins_list:
            missing.append("ALLOWED_ORIGINS is required in production")
        return missing

    @property
    def db_url(self) -> str:
        host = _resolve_db_host(self.DB_HOST)
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{quote_plus(self.DB_PASSWORD)}"
            f"@{host}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def allowed_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Process-wide settings, loaded on first use.

    Raises ValueError listing every missing production setting.
    """
    global _settings
    if _settings is None:
        settings = Settings()
        missing = settings.missing_production_settings()
        if missing:
            raise ValueError("Configuration errors:\n" + "\n".join(f"  - {m}" for m in missing))
        _settings = settings
    return _settings
