from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    cors_origins: list[str] = ["http://localhost:5173"]
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./slipsafe.db"
    redis_url: str = "redis://localhost:6379/0"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "slipsafe-receipts"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    init_admin_email: str | None = None
    init_admin_password: str | None = None

    access_token_exp_minutes: int = 60 * 24
    preview_token_ttl_minutes: int = 60

    # Receipts
    default_currency: str = "USD"
    receipt_date_order: Literal["DMY", "MDY"] = "DMY"
    max_upload_bytes: int = 10 * 1024 * 1024
    tesseract_lang: str = "eng"

    # Default merchant policy
    default_return_days: int = 30
    default_warranty_months: int = 12

    # Claims
    claim_ttl_days: int = 90
    claim_code_max_attempts: int = 5

    # PIN lockout
    attempt_counter_backend: Literal["memory", "redis"] = "memory"
    pin_max_attempts: int = 5
    pin_lockout_seconds: int = 15 * 60


settings = Settings()
