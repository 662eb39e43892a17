"""
Application configuration using pydantic-settings.

Every setting can be overridden with a LEDGERLINE_-prefixed environment
variable, e.g. LEDGERLINE_AMOUNT_SIGN_POLICY=negative_is_credit.
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ledgerline.pipeline.models import AmountSignPolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LEDGERLINE_",
        case_sensitive=False,
    )

    # Application
    debug: bool = False
    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # File Storage
    upload_dir: Path = Path("./uploads")
    max_upload_size_mb: int = 50

    # Batch processing
    max_batch_files: int = 10
    batch_concurrency: int = 3
    page_workers: int = 4

    # Pipeline tuning
    line_y_tolerance: float = 3.0
    column_merge_tolerance: float = 20.0
    amount_sign_policy: str = "auto"
    day_first: bool = True
    duplicate_similarity_threshold: float = 0.7
    duplicate_date_tolerance_days: int = 0

    @field_validator("amount_sign_policy")
    @classmethod
    def validate_sign_policy(cls, v: str) -> str:
        valid = [p.value for p in AmountSignPolicy]
        if v.lower() not in valid:
            raise ValueError(f"amount_sign_policy must be one of: {', '.join(valid)}")
        return v.lower()

    @property
    def max_upload_size_bytes(self) -> int:
        """Get maximum upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
