from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./statement_intake.db"
    redis_url: str = "redis://localhost:6379/0"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "statement-intake"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    llm_provider: Literal["anthropic", "openai"] = "anthropic"
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    llm_timeout_seconds: float = 120.0
    vision_max_tokens: int = 4096
    text_max_tokens: int = 16384

    parser_version: str = "v1"
    max_upload_bytes: int = 20 * 1024 * 1024
    pdf_max_chars: int = 50_000
    ocr_lang: str = "eng+spa"
    spreadsheet_max_chars: int = 100_000
    spreadsheet_max_rows_per_sheet: int = 500

    processing_lease_minutes: int = 30
    extraction_cache_ttl_hours: int = 24


settings = Settings()
