"""Sport-specific configurations for grading and situational features"""

from datetime import date
from typing import Dict, Any, Optional


# Moneyline tie policies
TIE_VOID = "void"            # two-way market, a tie refunds the stake
TIE_THREE_WAY = "three_way"  # draw is its own outcome, home/away lose


SPORTS_CONFIG: Dict[str, Dict[str, Any]] = {
    "NFL": {
        "active_months": [9, 10, 11, 12, 1, 2],  # Sept - Feb
        "moneyline_tie": TIE_VOID,  # regular-season ties are rare, books refund
    },
    "NBA": {
        "active_months": [10, 11, 12, 1, 2, 3, 4, 5, 6],  # Oct - June
        "moneyline_tie": TIE_VOID,
    },
    "CFB": {
        "active_months": [8, 9, 10, 11, 12, 1],
        "moneyline_tie": TIE_VOID,
    },
    "CBB": {
        "active_months": [11, 12, 1, 2, 3, 4],
        "moneyline_tie": TIE_VOID,
    },
    "MLB": {
        "active_months": [3, 4, 5, 6, 7, 8, 9, 10],  # March - Oct
        "moneyline_tie": TIE_VOID,  # suspended/tied games are no action
    },
    "NHL": {
        "active_months": [10, 11, 12, 1, 2, 3, 4, 5, 6],
        "moneyline_tie": TIE_VOID,  # shootouts decide, scores of record never tie
    },
    "SOCCER": {
        "active_months": [8, 9, 10, 11, 12, 1, 2, 3, 4, 5],
        "moneyline_tie": TIE_THREE_WAY,
    },
}


def get_sport_config(sport: str) -> Dict[str, Any]:
    """Get configuration for specific sport"""
    return SPORTS_CONFIG.get(sport.upper(), {})


def get_moneyline_tie_policy(sport: Optional[str]) -> str:
    """
    Settlement policy for a moneyline pick when the final score is tied.

    Unknown sports fall back to TIE_VOID: a tie never silently becomes a
    push or a loss.
    """
    if not sport:
        return TIE_VOID
    return get_sport_config(sport).get("moneyline_tie", TIE_VOID)


def get_season_bucket(sport: str, on: date) -> Optional[str]:
    """
    Time-of-season bucket ("early", "mid", "late") for a game date.

    Splits the sport's active months into thirds. Returns None when the
    sport is unknown or the date falls outside its season.
    """
    months = get_sport_config(sport).get("active_months", [])
    if on.month not in months:
        return None
    position = months.index(on.month) / len(months)
    if position < 1 / 3:
        return "early"
    if position < 2 / 3:
        return "mid"
    return "late"
