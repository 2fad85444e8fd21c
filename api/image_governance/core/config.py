from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageBackend = Literal["mongo", "memory", "postgres"]

GOVERNANCE_BACKENDS = {"mongo", "memory"}


class Settings(BaseSettings):
    app_name: str = "image-url-governance"
    environment: str = "dev"
    base_url: str | None = None
    port: int = 5000
    storage_backend: StorageBackend = "mongo"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_database: str = "app"
    mongo_server_selection_timeout_ms: int = 5000
    governance_enabled: bool = True
    report_dir: str = "logs/data-governance"
    preview_ttl_seconds: float = 1800.0
    preview_default_limit: int = 200
    execute_rescan_limit: int = 5000
    scheduler_interval_seconds: float = 86400.0
    scheduler_limit_per_entity_kind: int = 500
    invalid_alert_count: int = Field(
        default=50,
        validation_alias=AliasChoices("IMG_GOV_INVALID_ALERT_COUNT", "IMAGE_URL_INVALID_ALERT_COUNT"),
    )
    invalid_alert_pct: float = Field(
        default=0.05,
        validation_alias=AliasChoices("IMG_GOV_INVALID_ALERT_PCT", "IMAGE_URL_INVALID_ALERT_PCT"),
    )
    notification_base_url: str | None = None
    notification_api_key: str | None = None
    notification_timeout_seconds: float = 10.0
    admin_api_key: str | None = None
    otel_enabled: bool = True
    otel_service_name: str = "image-url-governance"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="IMG_GOV_", extra="ignore", populate_by_name=True)

    @property
    def canonical_origin(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return f"http://localhost:{self.port}"

    @property
    def governance_available(self) -> bool:
        return self.governance_enabled and self.storage_backend in GOVERNANCE_BACKENDS


@lru_cache
def get_settings() -> Settings:
    return Settings()
