"""Application settings using Pydantic BaseSettings for environment variable management."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Attributes:
        redis_url: Redis connection URL used by the queue backend
        queue_name: Name of the verification job channel
        queue_backend: Queue implementation (redis or memory)
        max_attempts: Deliveries per job before it is dead-lettered
        backoff_strategy: Retry delay strategy (exponential or fixed)
        backoff_base_seconds: Base retry delay
        backoff_max_seconds: Upper bound for exponential retry delay
        history_limit: Completed/failed jobs retained for inspection
        job_timeout_seconds: Per-job processing timeout (None disables it)
        lease_seconds: Time before an unacknowledged job is redelivered
        simulated_delay_seconds: Placeholder latency modelling verification cost
        store_backend: Evidence store implementation (sqlite or memory)
        database_path: SQLite database file for the sqlite store
        store_persistence_path: Optional JSON file for the memory store
        metrics_host: Bind address of the metrics endpoint
        metrics_port: Port of the metrics endpoint
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log output format (json for production, console for dev)
    """

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    queue_name: str = Field(
        default="verify-evidence",
        description="Verification job channel name"
    )
    queue_backend: Literal["redis", "memory"] = Field(
        default="redis",
        description="Queue backend: redis or memory"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum deliveries per job before dead-lettering"
    )
    backoff_strategy: Literal["exponential", "fixed"] = Field(
        default="exponential",
        description="Retry backoff strategy"
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base retry delay in seconds"
    )
    backoff_max_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Maximum retry delay in seconds"
    )
    history_limit: int = Field(
        default=50,
        ge=0,
        description="Completed/failed jobs kept for observability"
    )
    job_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Per-job processing timeout in seconds"
    )
    lease_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds before an unacknowledged job is redelivered"
    )
    simulated_delay_seconds: float = Field(
        default=0.9,
        ge=0.0,
        description="Simulated verification latency in seconds"
    )
    store_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        description="Evidence store backend: sqlite or memory"
    )
    database_path: str = Field(
        default="data/evidence.db",
        description="SQLite database file path"
    )
    store_persistence_path: Optional[str] = Field(
        default=None,
        description="JSON persistence file for the memory store"
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        description="Metrics endpoint bind address"
    )
    metrics_port: int = Field(
        default=3001,
        description="Metrics endpoint port"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: json or console"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance - import this throughout the application
settings = Settings()
