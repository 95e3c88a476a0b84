from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "ExamHall API"
    env: str = "dev"
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"

    storage_backend: str = "inmemory"  # inmemory|mongo
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "examhall"

    # Bearer tokens are issued elsewhere; only verification happens here.
    jwt_secret_key: str = "examhall-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440

    # Pending attempts past their time budget
    auto_submit_expired_attempts: bool = True
    submission_grace_seconds: int = 30

    # Reports
    subject_rollup_incremental_rounding: bool = False
    class_average_scope: Literal["all", "peers"] = "all"

    # Observability (OpenTelemetry)
    observability_enabled: bool = False
    otel_service_name: str = "examhall"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_console: bool = False
    otel_sample_rate: float = 0.1


settings = Settings()
