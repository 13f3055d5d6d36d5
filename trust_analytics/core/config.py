# Pydantic settings

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    """Application settings"""

    # App
    app_name: str = "Trust Analytics API"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./data/events.db"
    duckdb_path: str = ":memory:"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100
    rate_limit_period: int = 60  # seconds

    # API Key (optional)
    api_key: str | None = None

    # Ingestion
    max_batch_size: int = 1000

    # Result cache
    cache_ttl_seconds: int = 300

    # Analytics
    trust_half_life_days: float = 7.0
    trust_floor_weight: float = Field(default=0.05, gt=0, lt=1)
    trend_threshold: float = 0.1
    trend_min_votes: int = 10
    top_journeys: int = 5
    recent_comments: int = 5
    recent_activity: int = 10
    max_scan_rows: int = 50000
    default_time_range: str = "30d"

    model_config = SettingsConfigDict(
        # Use .env.local if it exists (for local dev), otherwise .env (for Docker)
        env_file=".env.local" if os.path.exists(".env.local") else ".env",
        case_sensitive=False
    )


settings = Settings()
