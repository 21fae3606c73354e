"""
EDGE AGGREGATOR
===============
Merges signals from every producer into one ranked, deduplicated feed.

Pipeline:
  1. merge     → all producer outputs, order irrelevant
  2. dedupe    → one signal per (game_id, type, cause), keeping the highest
                 confidence (then higher EV, then the earlier detection)
  3. rank      → confidence desc, EV desc, detected_at asc, id asc
  4. filter    → type (exact), min_confidence (inclusive), limit, in that order

Signals are opaque here: the aggregator never looks at what produced them.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from config.engine_config import EngineConfig
from engine.models import EdgeSignal, EdgeType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalFilter:
    type: Optional[EdgeType] = None
    min_confidence: Optional[float] = None
    high_confidence_only: bool = False
    limit: Optional[int] = None

    def __post_init__(self):
        if self.type is not None:
            object.__setattr__(self, "type", EdgeType(self.type))
        if self.min_confidence is not None and not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit cannot be negative, got {self.limit}")

    def confidence_floor(self, high_confidence_threshold: float) -> Optional[float]:
        """The effective lower bound. With both flags set the stricter one wins."""
        bounds = []
        if self.min_confidence is not None:
            bounds.append(self.min_confidence)
        if self.high_confidence_only:
            bounds.append(high_confidence_threshold)
        return max(bounds) if bounds else None

    @classmethod
    def from_request(
        cls,
        type: Optional[str] = None,
        min_confidence: Optional[float] = None,
        high_confidence_only: bool = False,
        limit: Optional[int] = None,
        default_limit: Optional[int] = None,
    ) -> "SignalFilter":
        """
        Build a filter from loosely typed request parameters.

        Confidence above 1 is read as a percentage (75 → 0.75). A missing
        limit falls back to `default_limit`.
        """
        if min_confidence is not None and min_confidence > 1:
            min_confidence = min_confidence / 100
        return cls(
            type=EdgeType(type.lower()) if type else None,
            min_confidence=min_confidence,
            high_confidence_only=high_confidence_only,
            limit=default_limit if limit is None else limit,
        )


def _preferred(a: EdgeSignal, b: EdgeSignal) -> EdgeSignal:
    """Which of two duplicates survives."""
    key_a = (-a.confidence, -a.expected_value, a.detected_at, a.id)
    key_b = (-b.confidence, -b.expected_value, b.detected_at, b.id)
    return a if key_a <= key_b else b


def rank_key(signal: EdgeSignal) -> Tuple:
    return (-signal.confidence, -signal.expected_value, signal.detected_at, signal.id)


def dedupe(signals: Iterable[EdgeSignal]) -> List[EdgeSignal]:
    best: Dict[Tuple, EdgeSignal] = {}
    for signal in signals:
        key = signal.dedup_key
        best[key] = signal if key not in best else _preferred(best[key], signal)
    return list(best.values())


def aggregate(
    outputs: Iterable[Iterable[EdgeSignal]],
    filter: Optional[SignalFilter] = None,
    config: Optional[EngineConfig] = None,
) -> List[EdgeSignal]:
    """
    Merge, dedupe, rank and filter producer outputs.

    Args:
        outputs: One signal sequence per producer
        filter: Optional type / confidence / limit filter
        config: Supplies the high-confidence threshold

    Returns:
        Signals sorted by confidence desc, EV desc, detected_at asc
    """
    config = config or EngineConfig()
    filter = filter or SignalFilter()

    merged = [signal for output in outputs for signal in output]
    ranked = sorted(dedupe(merged), key=rank_key)

    if filter.type is not None:
        ranked = [s for s in ranked if s.type is filter.type]
    floor = filter.confidence_floor(config.high_confidence_threshold)
    if floor is not None:
        ranked = [s for s in ranked if s.confidence >= floor]
    if filter.limit is not None:
        ranked = ranked[:filter.limit]

    logger.debug("Aggregated %d signals into %d", len(merged), len(ranked))
    return ranked
