from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "market-ads-api"
    environment: str = "dev"
    log_level: str = "INFO"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    database_command_timeout_seconds: float = 15.0
    schema_check_enabled: bool = True
    redis_url: str | None = None
    redis_timeout_seconds: float = 5.0
    cache_ttl_seconds: int = 300
    cache_namespace: str = "ads"
    default_page_size: int = 20
    max_page_size: int = 100
    otel_enabled: bool = True
    otel_service_name: str = "market-ads-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="MARKET_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
