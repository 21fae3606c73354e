"""Config module initialization"""

from .settings import Settings, get_settings
from .engine_config import EngineConfig
from .sports_config import (
    SPORTS_CONFIG,
    TIE_VOID,
    TIE_THREE_WAY,
    get_sport_config,
    get_moneyline_tie_policy,
    get_season_bucket,
)

__all__ = [
    "Settings",
    "get_settings",
    "EngineConfig",
    "SPORTS_CONFIG",
    "TIE_VOID",
    "TIE_THREE_WAY",
    "get_sport_config",
    "get_moneyline_tie_policy",
    "get_season_bucket",
]
