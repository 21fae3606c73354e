"""Database module initialization"""

from .db import get_db_context, init_db, create_db_engine, engine, SessionLocal
from .models import (
    Base,
    Game,
    OddsSnapshot,
    BettingSplit,
    Pick,
    PickGrade,
    TrendRule,
)

__all__ = [
    # Database utilities
    "get_db_context",
    "init_db",
    "create_db_engine",
    "engine",
    "SessionLocal",
    # Models
    "Base",
    "Game",
    "OddsSnapshot",
    "BettingSplit",
    "Pick",
    "PickGrade",
    "TrendRule",
]
