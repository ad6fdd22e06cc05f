from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "local-worker"
    api_key: str = "local-worker-key"
    poll_interval_seconds: float = 2.0
    max_backoff_seconds: float = 15.0
    job_batch_size: int = 5
    claim_lease_seconds: int = 120
    lease_reaper_interval_seconds: float = 15.0
    lease_reaper_batch_size: int = 100
    resource_expiry_interval_seconds: float = 300.0
    resource_expiry_batch_size: int = 200
    ai_base_url: str = "https://api.openai.com/v1"
    ai_api_key: str | None = None
    ai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 30.0
    extraction_parse_attempts: int = 3
    embedding_base_url: str | None = None
    embedding_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = 1536
    embedding_verify_on_startup: bool = True
    delivery_webhook_url: str | None = None
    delivery_timeout_seconds: float = 10.0
    otel_enabled: bool = True
    otel_service_name: str = "resource-relay-workers"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="RR_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
