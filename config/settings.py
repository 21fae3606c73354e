"""Configuration settings for SHARPLINE edge engine"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    """Main application settings"""

    # Environment
    DEBUG: bool = False

    # Database (historical store read by the engine, written by ingestion)
    DATABASE_URL: str = "sqlite:///./sharpline.db"

    # Application Settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_RELOAD: bool = False
    API_KEY: str = ""  # Empty = POST endpoints open (local dev)
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    RATE_LIMIT_PER_MINUTE: int = 120
    RUN_SCHEDULER: bool = True

    # External signal feeds, "name=url" entries
    EXTERNAL_SIGNAL_FEEDS: List[str] = []
    EXTERNAL_FETCH_ATTEMPTS: int = 3

    # Reverse Line Movement
    RLM_THRESHOLD: float = 1.0  # points against the majority (spread/total)
    RLM_MONEYLINE_THRESHOLD: float = 3.0  # implied-probability points (moneyline)

    # Steam Moves
    STEAM_WINDOW_MINUTES: float = 30.0
    STEAM_THRESHOLD: float = 0.5  # per-book net move inside the window
    STEAM_MIN_BOOKS: int = 3

    # Ticket vs handle divergence
    SPLIT_MIN_TICKET_PCT: float = 60.0
    SPLIT_MIN_HANDLE_PCT: float = 55.0

    # Trend confidence (Wilson lower bound z-score, higher = more shrinkage)
    TREND_CONFIDENCE_Z: float = 1.96

    # Feed
    HIGH_CONFIDENCE_THRESHOLD: float = 0.75
    DEFAULT_SIGNAL_LIMIT: int = 50

    # Fan-out
    FETCH_TIMEOUT_SECONDS: float = 10.0
    MAX_CONCURRENT_UNITS: int = 32

    # Grading job
    GRADING_INTERVAL_MINUTES: int = 30

    @field_validator("HIGH_CONFIDENCE_THRESHOLD")
    @classmethod
    def _check_confidence(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("HIGH_CONFIDENCE_THRESHOLD must be between 0 and 1")
        return value

    @field_validator("STEAM_MIN_BOOKS")
    @classmethod
    def _check_min_books(cls, value: int) -> int:
        if value < 1:
            raise ValueError("STEAM_MIN_BOOKS must be at least 1")
        return value

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
