"""Centralized configuration for docindex using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docindex.search.analyzers import available_analyzers, is_known_analyzer


class Settings(BaseSettings):
    """Strictly typed configuration loaded from ``DOCINDEX_*`` environment variables.

    Values are validated when the settings object is built; an invalid value
    raises ``pydantic.ValidationError``.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCINDEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Index location and analysis
    index_dir: Path = Field(default=Path("./index-data"), description="Directory holding the index database")
    tokenizer: str = Field(default="standard", description="Analyzer used when a new index is created")

    # Search settings
    search_max_results: int = Field(default=30, ge=1, description="Default maximum results per search")
    list_max_results: int = Field(default=100, ge=1, description="Default maximum documents per listing")
    min_score: float = Field(default=0.0, ge=0.0, description="Results scoring below this are dropped")
    snippet_length: int = Field(default=300, ge=50, description="Snippet window length in characters")

    # Indexing settings
    page_text_max_chars: int | None = Field(
        default=2000, ge=1, description="Per-page cap for stored page text; None keeps whole pages"
    )
    store_content: bool = Field(default=True, description="Store a full content copy for snippet fallback")
    max_file_size_mb: int = Field(default=20, ge=1, description="Largest file the extractor accepts")

    # Logging
    log_level: Literal["debug", "info", "warning", "error", "critical"] = Field(
        default="info", description="Root log level"
    )
    json_logs: bool = Field(default=False, description="Emit structured JSON logs")

    # Tracing
    trace_console: bool = Field(default=False, description="Write finished trace spans to stderr")

    @field_validator("tokenizer")
    @classmethod
    def _check_tokenizer(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not is_known_analyzer(normalized):
            raise ValueError(f"Unknown tokenizer '{value}'. Available: {', '.join(available_analyzers())}")
        return normalized

    @field_validator("log_level", mode="before")
    @classmethod
    def _lowercase_level(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024
