"""
Nested Order Flattening Pipeline
Centralized Configuration Management

Pydantic settings with environment variable support, one section per
concern, aggregated by the root Settings class.
"""

from functools import lru_cache
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseSettings):
    """Batch fan-out and checkpointing"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    max_workers: int = Field(default=4, description="Workers for normalization fan-out")
    executor: str = Field(default="thread", description="serial, thread or process")
    chunk_size: int = Field(default=1000, description="Records normalized per fan-out wave")
    checkpoint_path: Optional[str] = Field(default=None, description="Checkpoint file for resumable runs")
    state_path: Optional[str] = Field(default=None, description="Canonical store snapshot (NDJSON)")
    checkpoint_interval: int = Field(default=1, description="Records between persisted checkpoints; each one also snapshots state_path")

    @field_validator("executor")
    @classmethod
    def validate_executor(cls, v: str) -> str:
        """Validate executor kind"""
        allowed = ["serial", "thread", "process"]
        if v.lower() not in allowed:
            raise ValueError(f"Executor must be one of: {allowed}")
        return v.lower()


class StoreSettings(BaseSettings):
    """Storage/query engine configuration"""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    url: str = Field(default="", description="SQLAlchemy URL; empty uses the in-memory store")
    flat_table: str = Field(default="order_items_flat", description="Flattened projection table")
    echo: bool = Field(default=False, description="Echo SQL statements")

    # Retry policy for transient store failures
    retry_attempts: int = Field(default=5, description="Attempts per batch write")
    retry_multiplier: float = Field(default=1.0, description="Exponential backoff multiplier")
    retry_min_seconds: float = Field(default=1.0, description="Minimum backoff wait")
    retry_max_seconds: float = Field(default=30.0, description="Maximum backoff wait")


class DataLakeSettings(BaseSettings):
    """Data Lake Storage Configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    raw_path: str = Field(default="./data/raw", description="Raw NDJSON zone path")
    curated_path: str = Field(default="./data/curated", description="Curated zone path")
    export_format: str = Field(default="parquet", description="Flattened export format: parquet or csv")

    @field_validator("export_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate export format"""
        allowed = ["parquet", "csv"]
        if v.lower() not in allowed:
            raise ValueError(f"Export format must be one of: {allowed}")
        return v.lower()


class AnalyticsSettings(BaseSettings):
    """Segmentation parameters"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    churn_inactive_days: int = Field(default=180, description="Days without an order before a customer counts as churned")
    clv_labels: List[str] = Field(default=["Low", "Mid", "High"], description="CLV bin labels, lowest first")
    rfm_bins: int = Field(default=5, description="Bins per RFM dimension")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="orderflat", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
