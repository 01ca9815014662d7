"""
Configuration management using Pydantic Settings.
Validates all environment variables at startup for fail-fast behavior.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation."""

    # Database settings (in-memory stores are used when unset)
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection string (optional)"
    )
    DB_POOL_MIN: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Minimum database pool connections"
    )
    DB_POOL_MAX: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum database pool connections"
    )

    # Cluster access
    KUBE_ENABLED: bool = Field(
        default=False,
        description="Read the live cluster through the Kubernetes API"
    )
    KUBE_IN_CLUSTER: bool = Field(
        default=False,
        description="Use the in-cluster service account instead of a kubeconfig"
    )
    KUBECONFIG: Optional[str] = Field(
        default=None,
        description="Path to a kubeconfig file (defaults to ~/.kube/config)"
    )
    KUBE_CONTEXT: Optional[str] = Field(
        default=None,
        description="Kubeconfig context to use"
    )

    # Reconciliation
    RECONCILE_WORKERS: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Number of concurrent reconcile workers (1-16)"
    )
    STATUS_UPDATE_RETRIES: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts for a conflicting status update before giving up"
    )
    SORT_FINDINGS: bool = Field(
        default=True,
        description="Sort findings by (category, id) before they are stored"
    )
    MAX_ERROR_BACKOFF_SECONDS: int = Field(
        default=300,
        ge=1,
        le=3600,
        description="Cap for the work queue's per-item error backoff"
    )

    OPERATOR_VERSION: str = Field(
        default="1.0.0",
        description="Version string embedded in generated reports"
    )

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v_upper

    @field_validator("DB_POOL_MAX")
    @classmethod
    def validate_pool_max_gte_min(cls, v: int, info) -> int:
        """Ensure max pool size >= min pool size."""
        if "DB_POOL_MIN" in info.data and v < info.data["DB_POOL_MIN"]:
            raise ValueError("DB_POOL_MAX must be >= DB_POOL_MIN")
        return v

    @property
    def database_enabled(self) -> bool:
        """Check if database is configured."""
        return bool(self.DATABASE_URL)


# Global settings instance
settings = Settings()
