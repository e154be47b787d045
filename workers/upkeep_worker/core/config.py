from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 60.0
    poll_interval_seconds: float = 30.0
    max_backoff_seconds: float = 300.0
    job_retry_seconds: float = 300.0
    complete_expired_posts_interval_seconds: float = 3600.0
    approve_pending_posts_interval_seconds: float = 3600.0
    unsuspend_users_interval_seconds: float = 900.0
    otel_enabled: bool = True
    otel_service_name: str = "upkeep-worker"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="UPKEEP_WORKER_", extra="ignore")

    def job_intervals(self) -> dict[str, float]:
        return {
            "complete_expired_posts": self.complete_expired_posts_interval_seconds,
            "approve_pending_posts": self.approve_pending_posts_interval_seconds,
            "unsuspend_users": self.unsuspend_users_interval_seconds,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
