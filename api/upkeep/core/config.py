from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "upkeep-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    database_auto_create_schema: bool = False
    store_backend: Literal["postgres", "memory"] = "postgres"
    batch_limit: int = 500
    approval_fee_credits: int = 200
    approval_window_days: int = 2
    calendar_timezone: str = "UTC"
    otel_enabled: bool = True
    otel_service_name: str = "upkeep-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="UPKEEP_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
