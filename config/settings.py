from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- Provider credentials ------------------------------------------------
    anthropic_api_key: str | None = Field(
        default=None,
        description="API key for the flagship hosted model (Anthropic)",
    )
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the secondary hosted model (OpenAI)",
    )
    gateway_api_key: str | None = Field(
        default=None,
        description="API key for the multi-model gateway (OpenRouter-compatible)",
    )
    gateway_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the OpenAI-compatible multi-model gateway",
    )

    # -- Models --------------------------------------------------------------
    flagship_model: str = Field(default="claude-sonnet-4-5-20250929")
    secondary_model: str = Field(default="gpt-4o-mini")
    gateway_model: str = Field(default="meta-llama/llama-3.1-8b-instruct:free")
    gateway_fallback_models: list[str] = Field(
        default_factory=lambda: [
            "google/gemma-2-9b-it:free",
            "meta-llama/llama-3.2-3b-instruct:free",
            "microsoft/phi-3-mini-128k-instruct:free",
            "qwen/qwen-2-7b-instruct:free",
        ],
        description="Interchangeable gateway models tried in order on rate limits",
    )

    # -- Message analyzer ----------------------------------------------------
    min_message_length: int = 2
    max_message_length: int = 5000
    min_quantity: int = 1
    max_quantity: int = 100
    low_stock_threshold: int = 5
    language_accent_ratio: float = 0.02
    min_token_length: int = Field(
        default=2,
        description="Catalog tokens must be strictly longer than this",
    )
    high_engagement_threshold: int = 10
    medium_engagement_threshold: int = 5
    catalog_cache_ttl_seconds: float = 60.0
    quantity_pattern_cache_max: int = 5000
    context_turns: int = Field(
        default=5,
        description="Prior turns scanned when a confirmation names no product",
    )

    # -- Circuit breakers ----------------------------------------------------
    breaker_failure_threshold: int = 5
    breaker_reset_timeout: float = 60.0
    breaker_half_open_requests: int = 1
    breaker_timeout: float = 30.0

    # -- Orchestrator --------------------------------------------------------
    flagship_history_messages: int = 5
    flagship_history_tokens: int = 1500
    secondary_history_messages: int = 10
    secondary_history_tokens: int = 2000
    gateway_history_messages: int = 10
    gateway_history_tokens: int = 2000
    history_compression_threshold: int = 20
    max_prompt_length: int = 10000
    max_response_length: int = 4096
    knowledge_snippet_max: int = 2000
    min_confidence: float = 0.6
    min_output_tokens: int = 2048
    default_temperature: float = 0.7
    gateway_backoff_step: float = Field(
        default=1.0,
        description="Seconds added to the wait before each successive gateway model",
    )

    # -- Infrastructure ------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_dir: str | None = Field(
        default=None,
        validation_alias=AliasChoices("comptoir_log_dir", "log_dir"),
        description="Directory for the rotating JSON log file (default data/logs)",
    )
    db_path: str = Field(
        default="data/comptoir.db",
        description="Path to the SQLite database backing the reference store",
    )

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.min_quantity > self.max_quantity:
            raise ValueError("min_quantity must be <= max_quantity")
        if self.min_message_length > self.max_message_length:
            raise ValueError("min_message_length must be <= max_message_length")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")
        return self

    @property
    def base_dir(self) -> Path:
        """Return the project root directory."""
        return Path(__file__).resolve().parent.parent

    @property
    def abs_log_dir(self) -> Path | None:
        """Return the absolute log directory, or ``None`` for the default."""
        if not self.log_dir:
            return None
        return self.base_dir / self.log_dir

    @property
    def abs_db_path(self) -> Path:
        """Return the absolute path to the database file."""
        if self.db_path == ":memory:":
            return Path(self.db_path)
        return self.base_dir / self.db_path
