from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "incubator-inventory"


class ServiceSettings(BaseSettings):
    """Runtime settings, read from ``SERVICE_*`` environment variables and ``.env`` files."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )

    # service identity and observability
    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    enable_metrics: bool = Field(default=True, description="Expose /metrics via the instrumentator")
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None, description="OTLP collector endpoint")
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    # backing services
    database_url: str | None = Field(default=None, description="SQLAlchemy async URL; SQLite file when unset")
    database_create_schema: bool = Field(default=True, description="Create missing tables on startup")
    redis_url: str | None = Field(default=None, description="Forecast cache; caching is off when unset")
    kafka_bootstrap_servers: str | None = Field(default=None)

    # reservation holds
    reservation_default_hold_minutes: int = Field(default=24 * 60, ge=1)
    reservation_max_hold_hours: int = Field(default=14 * 24, ge=1)
    reservation_sweep_interval_seconds: float = Field(
        default=60.0, ge=0.0, description="Background expiry sweep period; 0 disables the task"
    )

    # replenishment forecasting
    forecast_window_days: int = Field(default=90, ge=1, description="Trailing consumption history considered")
    forecast_look_ahead_days: int = Field(default=30, ge=1)
    forecast_cache_ttl_seconds: int = Field(default=300, ge=0)

    # request finalization
    finalize_retry_attempts: int = Field(
        default=1, ge=0, le=5, description="Ledger retries per item before it is flagged for review"
    )

    @model_validator(mode="after")
    def _default_hold_within_maximum(self) -> "ServiceSettings":
        if self.reservation_default_hold_minutes > self.reservation_max_hold_hours * 60:
            raise ValueError("reservation_default_hold_minutes exceeds reservation_max_hold_hours")
        return self


@lru_cache
def get_settings() -> ServiceSettings:
    return ServiceSettings()
