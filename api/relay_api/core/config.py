from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "resource-relay-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    job_max_attempts: int = 3
    job_retry_base_seconds: int = 30
    job_retry_max_seconds: int = 600
    dedupe_auto_merge_threshold: float = 0.95
    dedupe_review_threshold: float = 0.85
    dedupe_neighbour_limit: int = 20
    adjudicator_enabled: bool = True
    embedding_dimension: int = 1536
    disappear_after_misses: int = 2
    ttl_urgent_days: int = 7
    ttl_high_days: int = 14
    ttl_normal_days: int = 30
    ttl_low_days: int = 60
    disappeared_archive_after_days: int | None = None
    notification_weekly_cap: int = 3
    max_notifications_per_resource: int = 5
    matching_candidate_limit: int = 20
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "resource-relay-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="RR_", extra="ignore")

    @model_validator(mode="after")
    def _check_dedupe_thresholds(self) -> "Settings":
        if not 0.0 < self.dedupe_review_threshold <= self.dedupe_auto_merge_threshold <= 1.0:
            raise ValueError("dedupe thresholds must satisfy 0 < review <= auto_merge <= 1")
        return self

    @property
    def ttl_days_by_urgency(self) -> dict[str, int]:
        return {
            "urgent": self.ttl_urgent_days,
            "high": self.ttl_high_days,
            "normal": self.ttl_normal_days,
            "low": self.ttl_low_days,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
