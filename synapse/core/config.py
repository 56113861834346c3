"""
Synapse settings.

Each concern reads its own env prefix (ANTHROPIC_, JIRA_, STORE_, ...); the
top-level Settings composes them and also reads .env.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnthropicSettings(BaseSettings):
    """AI inference API configuration."""

    model_config = SettingsConfigDict(env_prefix="ANTHROPIC_")

    api_key: str = Field(
        default="",
        description="API key; when empty the active key from the key store is used",
    )
    base_url: str = Field(default="https://api.anthropic.com", description="API base URL")
    model: str = Field(default="claude-sonnet-4-20250514", description="Model name")
    api_version: str = Field(default="2023-06-01", description="anthropic-version header")
    max_tokens: int = Field(default=8192, description="Max tokens per response")
    temperature: float = Field(default=0.1, description="Sampling temperature")
    timeout: int = Field(default=120, description="Request timeout in seconds")
    min_confidence: float = Field(
        default=0.7, description="Extracted issues below this confidence are dropped"
    )


class JiraSettings(BaseSettings):
    """Issue tracker configuration."""

    model_config = SettingsConfigDict(env_prefix="JIRA_")

    base_url: str = Field(default="", description="Jira Cloud site URL")
    email: str = Field(default="", description="Account e-mail for basic auth")
    api_token: str = Field(default="", description="Atlassian API token")
    default_project_key: Optional[str] = Field(default=None, description="Fallback project key")
    timeout: int = Field(default=30, description="Request timeout in seconds")
    labels: list[str] = Field(
        default=["synapse-ai", "meeting-analysis"],
        description="Labels attached to every created issue",
    )

    @property
    def is_configured(self) -> bool:
        """Check whether credentials for the tracker are present."""
        return bool(self.base_url and self.email and self.api_token)


class StoreSettings(BaseSettings):
    """Key-value store configuration."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    backend: str = Field(default="memory", description="Store backend (memory/redis)")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    key_prefix: str = Field(default="synapse:", description="Prefix for all stored keys")
    cache_ttl: int = Field(default=86400, description="Default TTL for cached entries in seconds")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = {"memory", "redis"}
        if v.lower() not in allowed:
            raise ValueError(f"backend must be one of {allowed}")
        return v.lower()


class RetrySettings(BaseSettings):
    """Retry policy for outbound calls."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, ge=1, description="Max attempts per external call")
    base_delay: float = Field(default=1.0, ge=0, description="Delay before the first retry in seconds")


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    analysis_per_window: int = Field(default=10, description="Analyses per user per window")
    window_seconds: int = Field(default=3600, description="Rate limit window in seconds")
    api_requests_per_minute: int = Field(
        default=4000, description="Default rate limit recorded on new API keys"
    )


class ContentSettings(BaseSettings):
    """Meeting notes content limits."""

    model_config = SettingsConfigDict(env_prefix="CONTENT_")

    min_length: int = Field(default=10, description="Minimum notes length in characters")
    max_length: int = Field(default=100_000, description="Maximum notes length in characters")
    max_upload_bytes: int = Field(default=5 * 1024 * 1024, description="Maximum decoded upload size")


class AnalysisSettings(BaseSettings):
    """Analysis bookkeeping configuration."""

    model_config = SettingsConfigDict(env_prefix="ANALYSIS_")

    history_limit: int = Field(default=50, description="Analysis ids kept per user")
    history_page_size: int = Field(default=20, description="Default history page size")
    retention_days: int = Field(default=30, description="Age after which records are cleaned up")
    estimated_seconds: int = Field(default=10, description="Estimated completion offset")


class AuditSettings(BaseSettings):
    """Audit log configuration."""

    model_config = SettingsConfigDict(env_prefix="AUDIT_")

    retention_days: int = Field(default=365, description="Days of audit buckets to keep")
    default_days: int = Field(default=7, description="Days returned by getAuditLog by default")


class SecuritySettings(BaseSettings):
    """Security configuration."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    admin_user_ids: list[str] = Field(default_factory=list, description="Account ids with admin rights")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="CORS allowed origins",
    )


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="synapse", description="Application name")
    app_version: str = Field(default="2.0.0", description="Application version")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=True, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Sub-settings
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    jira: JiraSettings = Field(default_factory=JiraSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    content: ContentSettings = Field(default_factory=ContentSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"app_env must be one of {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings are read from the environment once per process."""
    return Settings()


settings = get_settings()
