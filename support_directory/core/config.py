from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "support-directory-api"
    environment: str = "dev"
    admin_api_key_header: str = "X-API-Key"
    admin_api_key: str | None = None
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    canonical_document_key: str = "main"
    metadata_partition_title: str = "About"
    last_reconciled_cell: str = "B20"
    cache_ttl_seconds: float = 1800.0
    reconcile_interval_minutes: int = 30
    reconcile_on_cache_refresh: bool = True
    region_concurrency: int = 1
    directory_read_concurrency: int = 2
    enrichment_concurrency: int = 4
    save_concurrency: int = 3
    http_timeout_seconds: float = 10.0
    avatar_url_template: str = "https://unavatar.io/twitter/{handle}"
    source_url_template: str = "https://docs.google.com/spreadsheets/d/{partition_key}/edit"
    sources_json: str | None = None
    cors_allowed_origin_regex: str = r"https://([a-z0-9-]+\.)*(raisely\.com|youhaveour\.support)"
    worker_poll_interval_seconds: float = 300.0
    worker_max_backoff_seconds: float = 900.0
    otel_enabled: bool = True
    otel_service_name: str = "support-directory"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="SD_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
