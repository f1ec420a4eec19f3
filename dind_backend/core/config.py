"""
dind_backend/core/config.py
Configuration management using Pydantic Settings
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import List, Optional, Literal
from urllib.parse import urlsplit, urlunsplit


class Settings(BaseSettings):
    """
    Backend Service Configuration
    Environment variables can override these defaults
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ========================================================================
    # Application Settings
    # ========================================================================
    APP_NAME: str = "DinD-Backend"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"
    DEBUG: bool = False

    # ========================================================================
    # API Settings
    # ========================================================================
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3000
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # ========================================================================
    # Database (MongoDB)
    # ========================================================================
    DATABASE_URL: str = "mongodb://localhost:27017/dind-javascript"
    DATABASE_TEST_URL: str = "mongodb://localhost:27017/dind-javascript-test"
    DATABASE_MANDATORY: bool = True
    DATABASE_START_TIMEOUT: float = Field(default=30.0, gt=0)
    DATABASE_DRAIN_TIMEOUT: float = Field(default=10.0, gt=0)

    # ========================================================================
    # Cache (Redis)
    # ========================================================================
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_PASSWORD: str = ""
    CACHE_ENABLED: bool = True
    CACHE_MANDATORY: bool = False  # Service runs without cache (degraded)
    CACHE_START_TIMEOUT: float = Field(default=15.0, gt=0)
    CACHE_DRAIN_TIMEOUT: float = Field(default=5.0, gt=0)

    # ========================================================================
    # Realtime (WebSocket)
    # ========================================================================
    ENABLE_WEBSOCKET: bool = False
    WEBSOCKET_PATH: str = "/ws"
    REALTIME_MANDATORY: bool = False

    # ========================================================================
    # Connection / Lifecycle Settings
    # ========================================================================
    CONNECT_TIMEOUT: float = Field(default=5.0, gt=0)  # per handshake attempt
    CONNECT_RETRY_ATTEMPTS: int = Field(default=3, ge=1, le=20)
    CONNECT_RETRY_BASE_DELAY: float = Field(default=0.1, ge=0)
    CONNECT_RETRY_MAX_DELAY: float = Field(default=3.0, ge=0)
    STARTUP_GRACE_PERIOD: float = Field(default=10.0, ge=0)
    DRAIN_TIMEOUT: float = Field(default=15.0, gt=0)

    # None -> decided by environment (fail fast only in production)
    EXIT_ON_MANDATORY_FAILURE: Optional[bool] = None

    # ========================================================================
    # Logging Settings
    # ========================================================================
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: str = "json"  # "json" or "console"

    # ========================================================================
    # Monitoring Settings
    # ========================================================================
    METRICS_ENABLED: bool = True

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator("WEBSOCKET_PATH")
    def validate_ws_path(cls, v):
        if not v.startswith("/"):
            raise ValueError("WEBSOCKET_PATH must start with '/'")
        return v

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_testing(self) -> bool:
        return self.ENVIRONMENT == "test"

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def database_url_for_env(self) -> str:
        """Database URL for the current environment"""
        return self.DATABASE_TEST_URL if self.is_testing else self.DATABASE_URL

    @property
    def fail_fast_on_mandatory_failure(self) -> bool:
        """Whether a mandatory dependency failure aborts startup"""
        if self.EXIT_ON_MANDATORY_FAILURE is None:
            return self.is_production
        return self.EXIT_ON_MANDATORY_FAILURE

    def model_dump_safe(self) -> dict:
        """Export config without credentials"""
        data = self.model_dump()
        data["REDIS_PASSWORD"] = "***" if self.REDIS_PASSWORD else ""
        for key in ("DATABASE_URL", "DATABASE_TEST_URL", "REDIS_URL"):
            data[key] = mask_url(data[key])
        return data


def mask_url(url: str) -> str:
    """Hide user:password in a connection URL"""
    if not url:
        return url
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit(parts._replace(netloc=f"***:***@{host}"))


# ============================================================================
# Singleton Pattern - Global Settings Instance
# ============================================================================

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create settings instance (Singleton)
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Convenience export
settings = get_settings()


# ============================================================================
# Export
# ============================================================================

__all__ = ["Settings", "get_settings", "settings", "mask_url"]
