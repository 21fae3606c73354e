"""
Engine configuration value object.

The pure components (grader, detectors, matcher, aggregator) never read the
environment themselves. They take an EngineConfig, which is built from the
pydantic Settings at the boundary.
"""

from dataclasses import dataclass, replace
from typing import Optional

from config.settings import Settings, get_settings


@dataclass(frozen=True)
class EngineConfig:
    """Thresholds and limits injected into the engine."""
    rlm_threshold: float = 1.0
    rlm_moneyline_threshold: float = 3.0
    steam_window_minutes: float = 30.0
    steam_threshold: float = 0.5
    steam_min_books: int = 3
    split_min_ticket_pct: float = 60.0
    split_min_handle_pct: float = 55.0
    trend_confidence_z: float = 1.96
    high_confidence_threshold: float = 0.75
    default_signal_limit: int = 50
    fetch_timeout_seconds: float = 10.0
    max_concurrent_units: int = 32

    def __post_init__(self):
        if self.steam_min_books < 1:
            raise ValueError("steam_min_books must be at least 1")
        if self.steam_window_minutes <= 0:
            raise ValueError("steam_window_minutes must be positive")
        if not 0.0 <= self.high_confidence_threshold <= 1.0:
            raise ValueError("high_confidence_threshold must be between 0 and 1")
        if self.trend_confidence_z < 0:
            raise ValueError("trend_confidence_z must be non-negative")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EngineConfig":
        """Build the value object from environment-backed settings."""
        s = settings or get_settings()
        return cls(
            rlm_threshold=s.RLM_THRESHOLD,
            rlm_moneyline_threshold=s.RLM_MONEYLINE_THRESHOLD,
            steam_window_minutes=s.STEAM_WINDOW_MINUTES,
            steam_threshold=s.STEAM_THRESHOLD,
            steam_min_books=s.STEAM_MIN_BOOKS,
            split_min_ticket_pct=s.SPLIT_MIN_TICKET_PCT,
            split_min_handle_pct=s.SPLIT_MIN_HANDLE_PCT,
            trend_confidence_z=s.TREND_CONFIDENCE_Z,
            high_confidence_threshold=s.HIGH_CONFIDENCE_THRESHOLD,
            default_signal_limit=s.DEFAULT_SIGNAL_LIMIT,
            fetch_timeout_seconds=s.FETCH_TIMEOUT_SECONDS,
            max_concurrent_units=s.MAX_CONCURRENT_UNITS,
        )

    def with_overrides(self, **changes) -> "EngineConfig":
        return replace(self, **changes)
