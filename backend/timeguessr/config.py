from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # TimeGuessr backend connection
    TIMEGUESSR_API_URL: str = "http://localhost:8080/api"
    TIMEGUESSR_API_KEY: str = ""
    REQUEST_TIMEOUT: float = 10.0

    # Retry policy for backend calls
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0  # seconds
    RETRY_MAX_DELAY: float = 10.0
    RETRY_JITTER: float = 0.1

    # Database (session snapshots)
    DATABASE_URL: str = "sqlite+aiosqlite:///./timeguessr.db"
    SNAPSHOT_TTL_HOURS: float = 24

    # Game Configuration
    ROUNDS_PER_GAME: int = 5
    GOOD_ROUND_THRESHOLD: int = 700

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None
    LOG_FORMAT: str = ""  # "json" or "console"

    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
