"""
Confidence Scoring
==================
Sample-size-aware confidence for historical trends, and tier labels for the feed.

Trend confidence is the Wilson score lower bound of the win rate (pushes
excluded). Small samples are pulled toward zero, so a 3-0 trend (~0.44)
never outranks a 200-150 trend (~0.52).

Tiers:
- TIER 1: 85%+ confidence
- TIER 2: 75%+ confidence
- LEAN: 60%+ confidence
- PASS: <60% confidence
"""

import math
from dataclasses import dataclass

from engine.models import HistoricalRecord


def wilson_lower_bound(wins: int, losses: int, z: float = 1.96) -> float:
    """
    Lower bound of the Wilson score interval for wins / (wins + losses).

    Non-decreasing in sample size at a fixed win rate and increasing in win
    rate at a fixed sample size. No decided games → 0.0.
    """
    n = wins + losses
    if n == 0:
        return 0.0
    p = wins / n
    z2 = z * z
    centre = p + z2 / (2 * n)
    spread = z * math.sqrt(p * (1 - p) / n + z2 / (4 * n * n))
    return max(0.0, (centre - spread) / (1 + z2 / n))


def trend_confidence(record: HistoricalRecord, z: float = 1.96) -> float:
    return wilson_lower_bound(record.wins, record.losses, z)


@dataclass
class ConfidenceScorer:
    """Maps a 0-1 confidence onto the feed's tier labels."""
    tier1_threshold: float = 0.85
    tier2_threshold: float = 0.75
    lean_threshold: float = 0.60

    def tier(self, confidence: float) -> str:
        if confidence >= self.tier1_threshold:
            return "TIER_1"
        if confidence >= self.tier2_threshold:
            return "TIER_2"
        if confidence >= self.lean_threshold:
            return "LEAN"
        return "PASS"
