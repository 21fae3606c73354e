"""
Analysis Package
================
Signal detectors over market history and the trend catalog.

Modules:
    - line_movement: Reverse line movement, steam, money splits, arbitrage
    - trend_matcher: Situational trend predicates and matching
    - confidence: Wilson-bound trend confidence and feed tiers
"""

from analysis.line_movement import (
    LineMovementDetector,
    ReverseLineMovement,
    SteamMove,
    SharpMoneySplit,
    ArbitrageOpportunity,
    detect_signals,
)
from analysis.trend_matcher import (
    TrendMatch,
    TrendMatchResult,
    parse_predicate,
    evaluate_predicate,
    match_trends,
    match_both_sides,
)
from analysis.confidence import ConfidenceScorer, wilson_lower_bound, trend_confidence

__all__ = [
    "LineMovementDetector",
    "ReverseLineMovement",
    "SteamMove",
    "SharpMoneySplit",
    "ArbitrageOpportunity",
    "detect_signals",
    "TrendMatch",
    "TrendMatchResult",
    "parse_predicate",
    "evaluate_predicate",
    "match_trends",
    "match_both_sides",
    "ConfidenceScorer",
    "wilson_lower_bound",
    "trend_confidence",
]
