"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Model provider
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices('THREATSCOPE_API_KEY', 'OPENAI_API_KEY'),
    )
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    request_timeout: float = 120.0
    max_retries: int = Field(default=3, ge=0, le=10)
    max_output_tokens: int = 16384

    # Use the rule-based synthesizer even when a key is configured
    force_offline: bool = False

    # Collection budgets
    max_files: int = 500
    max_file_size: int = 50 * 1024
    file_tree_limit: int = 200

    # Scanning
    max_findings_per_file: int = 10
    scan_workers: int = Field(default=1, ge=1)

    # Prompt budgets
    prompt_findings_limit: int = 30
    prompt_entry_points_limit: int = 15
    max_document_chars: int = 15000
    max_context_document_chars: int = 10000
    review_max_tokens: int = 4096

    # Logging
    log_level: str = "warning"
    json_logs: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="THREATSCOPE_",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()
