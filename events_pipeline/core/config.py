from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "taxpro-events-pipeline"
    environment: str = "dev"
    api_key: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    staging_batch_size: int = 50
    validation_batch_size: int = 100
    recheck_interval_hours: int = 24
    link_check_timeout_seconds: float = 12.0
    link_check_body_timeout_seconds: float = 5.0
    link_check_concurrency: int = 4
    link_check_user_agent: str = "TaxProExchange/1.0 (+https://taxproexchange.com)"
    link_health_policy_json: str | None = None
    staging_interval_seconds: float = 60.0
    validation_interval_seconds: float = 3600.0
    poll_interval_seconds: float = 5.0
    max_backoff_seconds: float = 300.0
    otel_enabled: bool = True
    otel_service_name: str = "taxpro-events-pipeline"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="TPX_EVENTS_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
