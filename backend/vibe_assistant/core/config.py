from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator
from typing import Optional

# GitHub caps per_page at 100 for list endpoints
GITHUB_MAX_PER_PAGE = 100


class Settings(BaseSettings):
    """
    Application-wide settings managed by Pydantic.
    Reads configuration from environment variables and .env files.
    """
    # General project metadata
    PROJECT_NAME: str = "Vibe GitHub Assistant"
    API_V1_STR: str = "/api"

    # "production" switches logging to JSON lines
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # GitHub REST API
    # Token is optional; unauthenticated calls are limited to 60 requests/hour
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_API_BASE: str = "https://api.github.com"

    # LLM Provider Configuration
    # key for OpenRouter to access Claude/OpenAI/etc. Insights are disabled without it.
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    INSIGHTS_MODEL: str = "anthropic/claude-haiku-4.5"

    # Result caches
    ANALYSIS_CACHE_TTL_SECONDS: int = 60 * 60      # 1 hour
    INSIGHTS_CACHE_TTL_SECONDS: int = 30 * 60      # 30 minutes
    ANALYSIS_CACHE_MAX_ENTRIES: int = 100
    INSIGHTS_CACHE_MAX_ENTRIES: int = 50
    HISTORY_MAX_ENTRIES: int = 20

    # Repository listings
    LISTING_CACHE_TTL_SECONDS: int = 30 * 60
    LISTING_PAGE_SIZE: int = 6                     # Match UI pagination
    UPSTREAM_PAGE_SIZE: int = 30                   # GitHub default per_page

    # Upper bound on any single GitHub/LLM call made by the orchestrator
    COLLABORATOR_TIMEOUT_SECONDS: float = 30.0

    # Periodic cleanup of expired cache entries
    CACHE_CLEANUP_INTERVAL_SECONDS: float = 5 * 60
    CACHE_CLEANUP_MAX_BYTES: int = 5 * 1024 * 1024
    CACHE_CLEANUP_MAX_ENTRIES: int = 100

    @field_validator(
        "ANALYSIS_CACHE_TTL_SECONDS",
        "INSIGHTS_CACHE_TTL_SECONDS",
        "ANALYSIS_CACHE_MAX_ENTRIES",
        "INSIGHTS_CACHE_MAX_ENTRIES",
        "HISTORY_MAX_ENTRIES",
        "LISTING_CACHE_TTL_SECONDS",
        "LISTING_PAGE_SIZE",
        "UPSTREAM_PAGE_SIZE",
        "COLLABORATOR_TIMEOUT_SECONDS",
        "CACHE_CLEANUP_INTERVAL_SECONDS",
    )
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("GITHUB_API_BASE", "OPENROUTER_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode='after')
    def validate_page_sizes(self) -> 'Settings':
        """
        GitHub refuses per_page values above 100, so the upstream page size
        has to stay within that bound.
        """
        if self.UPSTREAM_PAGE_SIZE > GITHUB_MAX_PER_PAGE:
            raise ValueError(
                f"UPSTREAM_PAGE_SIZE must be at most {GITHUB_MAX_PER_PAGE}, got: {self.UPSTREAM_PAGE_SIZE}"
            )
        return self

    # Pydantic Configuration
    model_config = SettingsConfigDict(
        env_file=".env",              # Load variables from .env file
        env_file_encoding="utf-8",    # Ensure correct encoding
        case_sensitive=True,          # Environment variables are case-sensitive
        extra="ignore"                # Ignore extra fields in .env not defined here
    )

# Instantiate the settings object to be imported elsewhere
settings = Settings()
