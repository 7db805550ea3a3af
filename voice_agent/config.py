"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    ANTHROPIC_API_KEY: API key for the extraction/answer LLM backend
    CALENDAR_AGENT_URL: Base URL of the calendar availability/booking service
    KNOWLEDGE_SERVICE_URL: Base URL of the knowledge search service
    EMAIL_API_URL / EMAIL_API_KEY: Outbound email API for conversation summaries
    REDIS_URL: Redis connection string (rate limiting)
    SESSION_MAX_AGE_SECONDS: Session lifetime before sweep (default: 1800)
    APP_ENV: Environment name (development/staging/production)
    DEBUG: Enable debug mode (default: False)
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Environment
    app_env: Literal["development", "staging", "production"] = "development"
    """Current application environment.

    Options:
    - development: Local development, verbose logging, docs enabled
    - staging: Pre-production testing environment
    - production: Live production environment, minimal logging
    """

    debug: bool = False
    """Enable debug mode.

    When True:
    - Detailed error messages in responses
    - DEBUG level logging (FSM transitions, extractor sources)

    Should be False in production.
    """

    app_name: str = "voice-agent"
    """Application name."""

    host: str = "0.0.0.0"
    """Host to bind the application server."""

    port: int = 8000
    """Port to bind the application server."""

    cors_origins: str = "http://localhost:3000"
    """Comma-separated list of allowed CORS origins."""

    # LLM Backend (slot extraction, knowledge answers, summaries)
    anthropic_api_key: Optional[str] = None
    """Anthropic API key. Without it, every extractor runs its deterministic fallback."""

    claude_extraction_model: str = "claude-3-5-haiku-20241022"
    """Model used for name/email/service extraction."""

    claude_fallback_model: str = "claude-3-5-sonnet-20241022"
    """Model tried once when the primary model fails."""

    claude_answer_model: str = "claude-3-5-haiku-20241022"
    """Model used to phrase knowledge-base answers and summary key points."""

    llm_max_retries: int = 3
    """Maximum attempts for transient LLM failures (rate limit, overload, connection)."""

    # Calendar Collaborator
    calendar_agent_url: str = "http://localhost:8001"
    """Calendar availability/booking service base URL."""

    calendar_timeout: float = 15.0
    """Calendar request timeout in seconds."""

    calendar_max_retries: int = 3
    """Maximum attempts for availability reads. Writes are never retried."""

    appointment_duration_minutes: int = 30
    """Length of every booked appointment."""

    # Knowledge Collaborator
    knowledge_service_url: str = "http://localhost:8002"
    """Knowledge search service base URL."""

    knowledge_top_k: int = 3
    """Number of ranked passages requested per search."""

    knowledge_timeout: float = 10.0
    """Knowledge search timeout in seconds."""

    knowledge_max_retries: int = 3
    """Maximum attempts for knowledge searches."""

    # Email Collaborator
    email_api_url: str = "https://api.resend.com"
    """Outbound email API base URL."""

    email_api_key: Optional[str] = None
    """Outbound email API key. Summaries are skipped when unset."""

    email_from_address: str = "Voice Agent <noreply@example.com>"
    """Sender address used for conversation summaries."""

    summary_emails_enabled: bool = True
    """Send a conversation summary when a session ends."""

    # Business Rules
    business_timezone: str = "America/Denver"
    """Timezone used for 'today' and past-date checks."""

    business_hours_start: str = "12:00"
    """First bookable slot start (HH:MM, 24-hour)."""

    business_hours_end: str = "16:00"
    """End of the bookable window (HH:MM, 24-hour)."""

    slot_search_horizon_days: int = 14
    """How many days ahead to search for the next available business day."""

    # Sessions
    session_max_age_seconds: int = 1800
    """Session lifetime in seconds (default: 30 minutes)."""

    session_sweep_interval_seconds: int = 300
    """How often the background sweep runs."""

    max_sessions: int = 10000
    """Upper bound on live sessions. The oldest session is evicted past this."""

    history_context_messages: int = 6
    """Conversation suffix passed to LLM prompts."""

    # Redis / Rate Limiting
    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL, used for per-tenant rate limiting."""

    rate_limit_requests: int = 60
    """Maximum number of turns allowed per tenant per window."""

    rate_limit_window: int = 60
    """Time window for rate limiting in seconds."""

    # Tenants
    tenant_config_path: Optional[str] = None
    """Optional JSON file with tenant profiles (list of objects)."""

    default_tenant_id: str = "default"
    """Tenant used when a request carries no X-Tenant-ID header."""

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",  # Load from .env file if it exists
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def cors_origins_list(self) -> list[str]:
        """Split cors_origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once and reused
    across the application.

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from voice_agent.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.business_timezone)
        America/Denver
    """
    return Settings()


# Module-level settings instance for easy imports
settings = get_settings()
