from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./serp_analyzer.db"

    # Redis (optional, backs the rate limiter when reachable)
    redis_url: Optional[str] = None

    # Security
    secret_key: str = "change-this-secret-key-in-production"
    webhook_token_prefix: str = "serp-"
    jwt_expiry_hours: int = 24

    # Public URL shown on the dashboard webhook page
    public_base_url: str = "http://localhost:8000"

    # Apify actors
    apify_base_url: str = "https://api.apify.com"
    serp_actor_id: str = "scraperlink~google-search-results-serp-scraper"
    metrics_actor_id: str = "scrap3r~moz-da-pa-metrics"
    http_timeout_seconds: float = 60.0

    # Job polling (60 attempts at 5s is roughly 5 minutes)
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 60
    dataset_settle_seconds: float = 20.0
    max_dataset_attempts: int = 60

    # Orchestration
    orchestration_strategy: str = "parallel"  # parallel | sequential
    batch_size: int = 10
    max_attempts_per_keyword: int = 3
    default_country: str = "US"
    max_keywords: int = 30

    # Decision rule defaults
    min_low_authority_count: int = 5
    top_n_domains: int = 10
    authority_threshold: float = 35

    # Rate limiting on the webhook
    rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # Server Settings
    debug: bool = False
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = '["*"]'  # JSON list of CORS origins

    class Config:
        env_file = ".env"
        case_sensitive = False
        # Allow extra fields to prevent validation errors
        extra = "ignore"


# Global settings instance
settings = Settings()
