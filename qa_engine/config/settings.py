"""
Configuration Management for the QA Resolution Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables live here.
Thresholds, budgets, TTLs and retry caps are business decisions, not
implementation details, so they are visible in one place and validated
at startup. Every engine component accepts its settings object through
the constructor, which keeps tests free of environment manipulation.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CORPUS_PATH = Path(__file__).resolve().parent.parent / "faq" / "data" / "faq_corpus.json"


class SearchSettings(BaseSettings):
    """FAQ search configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QA_SEARCH_",
        extra="ignore"
    )

    corpus_path: Path = Field(
        default=DEFAULT_CORPUS_PATH,
        description="Path to the versioned FAQ corpus JSON document"
    )
    min_score: float = Field(
        default=0.1,
        ge=0.0,
        description="Relevance floor below which results are discarded"
    )
    max_results: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum number of search results returned"
    )
    suggestion_limit: int = Field(
        default=8,
        ge=1,
        le=50,
        description="Maximum number of autocomplete suggestions"
    )
    related_limit: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Default number of related questions"
    )
    history_limit: int = Field(
        default=50,
        ge=0,
        le=500,
        description="Number of recent queries kept for suggestions"
    )
    enable_synonym_expansion: bool = Field(
        default=True,
        description="Score synonym-expanded variants of the query"
    )
    min_query_length: int = Field(
        default=2,
        ge=1,
        description="Queries shorter than this return no results"
    )


class CacheSettings(BaseSettings):
    """Result cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QA_CACHE_",
        extra="ignore"
    )

    ttl_days: float = Field(
        default=30,
        gt=0,
        description="Time-to-live of a cached answer, in days"
    )
    max_entries: int = Field(
        default=500,
        ge=1,
        description="Hard cap on the number of cached answers"
    )
    max_key_length: int = Field(
        default=100,
        ge=10,
        description="Normalized query keys are truncated to this length"
    )
    key_prefix: str = Field(
        default="qa_result_cache_",
        description="Persistence key prefix for cache entries"
    )

    @property
    def ttl_seconds(self) -> float:
        """Get TTL in seconds."""
        return self.ttl_days * 24 * 60 * 60


class BudgetPeriod(str, Enum):
    """Length of a cost budget period."""
    DAILY = "daily"
    MONTHLY = "monthly"


class BudgetSettings(BaseSettings):
    """Generative fallback budget configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QA_BUDGET_",
        extra="ignore"
    )

    period: BudgetPeriod = Field(
        default=BudgetPeriod.MONTHLY,
        description="Budget period: daily or monthly"
    )
    allowance: int = Field(
        default=5,
        ge=0,
        description="Generative calls allowed per period"
    )
    escalation_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Local match score at or above which we never escalate"
    )
    input_token_rate: float = Field(
        default=0.000001,
        ge=0.0,
        description="Cost per generative input token (USD)"
    )
    output_token_rate: float = Field(
        default=0.000002,
        ge=0.0,
        description="Cost per generative output token (USD)"
    )
    faq_lookup_saving: float = Field(
        default=0.001,
        ge=0.0,
        description="Estimated cost avoided by answering from the FAQ (USD)"
    )

    def token_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Cost of a single generative call."""
        return input_tokens * self.input_token_rate + output_tokens * self.output_token_rate


class ResilienceSettings(BaseSettings):
    """Retry, fallback and offline queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QA_RESILIENCE_",
        extra="ignore"
    )

    error_log_size: int = Field(
        default=100,
        ge=1,
        description="Number of handled errors kept in the ring buffer"
    )
    offline_max_retries: int = Field(
        default=3,
        ge=1,
        description="Replay attempts before an offline item is dropped"
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound on a single generative call"
    )
    dedupe_in_flight: bool = Field(
        default=True,
        description="Share one resolution between identical concurrent queries"
    )
    offline_queue_key: str = Field(
        default="qa_offline_queue",
        description="Persistence key for the offline queue"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    kv_sheet_name: str = Field(
        default="EngineState",
        description="Name of the sheet holding persisted key-value state"
    )
    events_sheet_name: str = Field(
        default="Events",
        description="Name of the sheet for feedback, analytics and audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini generative fallback configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=200,
        ge=50,
        le=8192,
        description="Maximum tokens in a generated answer"
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    product_name: str = Field(
        default="ClariFi",
        description="Product name used in prompts and relevance boosts"
    )
    max_query_length: int = Field(
        default=500,
        ge=10,
        description="Longer questions are truncated before resolution"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so that a missing Gemini key does not
    # stop the local-only engine from starting.

    @property
    def search(self) -> SearchSettings:
        return SearchSettings()

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def budget(self) -> BudgetSettings:
        return BudgetSettings()

    @property
    def resilience(self) -> ResilienceSettings:
        return ResilienceSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, Optional[object]]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus a
    `<name>_error` entry for each failing group.
    Useful for startup checks.
    """
    results: dict[str, Optional[object]] = {}
    settings = get_settings()

    for name in ("search", "cache", "budget", "resilience", "google_sheets", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
