"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./survey_runs.db"

    # Providers
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    SITE_URL: str = ""
    SITE_NAME: str = "Survey Runner"

    # Request defaults
    LLM_TIMEOUT: float = 120.0
    LLM_MAX_TOKENS: int = 4096
    LLM_TEMPERATURE: float = 0.7

    # Worker
    WORKER_POLL_INTERVAL: float = 2.0
    EXECUTE_CONCURRENCY: int = 5
    ANALYZE_CONCURRENCY: int = 10
    EXPORT_CONCURRENCY: int = 2
    MAX_JOB_ATTEMPTS: int = 3
    RETRY_BACKOFF_BASE_SECONDS: float = 30.0
    RETRY_BACKOFF_MAX_SECONDS: float = 600.0
    JOB_LEASE_SECONDS: int = 900
    STALE_SWEEP_INTERVAL: float = 60.0
    SHUTDOWN_TIMEOUT: float = 30.0
    RUN_EMBEDDED_WORKER: bool = True

    # Run limits (checked against the estimate at submission time)
    MAX_TOKENS_PER_RUN: int = 1_000_000
    MAX_COST_PER_RUN_USD: float = 50.0

    # Estimation
    AVG_INPUT_TOKENS_PER_QUESTION: int = 500
    AVG_OUTPUT_TOKENS_PER_QUESTION: int = 1000

    # Analysis
    SHORT_ANSWER_THRESHOLD: int = 20
    EXTREME_SENTIMENT_THRESHOLD: float = 0.8

    # Export
    EXPORT_DIR: str = "exports"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
