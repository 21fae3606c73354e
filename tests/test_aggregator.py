"""
Test Suite for Edge Aggregator
===============================
Merge, dedupe, ranking and filtering of the edge feed.
"""

from datetime import datetime, timedelta

import pytest

from config.engine_config import EngineConfig
from engine.aggregator import SignalFilter, aggregate, dedupe
from engine.models import EdgeSignal, EdgeType

T0 = datetime(2025, 11, 2, 12, 0)


def signal(game_id="g1", type="bias", cause="rlm", confidence=0.7, ev=2.0, minutes=0, sid=None):
    return EdgeSignal(
        id=sid or f"{type}:{game_id}:{cause}:{confidence}:{minutes}",
        type=type,
        game_id=game_id,
        description="test",
        confidence=confidence,
        expected_value=ev,
        detected_at=T0 + timedelta(minutes=minutes),
        cause=cause,
    )


class TestRanking:
    """Test feed ordering."""

    def test_sorted_by_confidence_then_ev_then_time(self):
        signals = [
            signal(game_id="a", confidence=0.6),
            signal(game_id="b", confidence=0.9),
            signal(game_id="c", confidence=0.9, ev=5.0),
            signal(game_id="d", confidence=0.9, ev=5.0, minutes=-10),
        ]
        ranked = aggregate([signals])
        assert [s.game_id for s in ranked] == ["d", "c", "b", "a"]

    def test_order_independent_of_producers(self):
        first = [signal(game_id="a", confidence=0.8), signal(game_id="b", confidence=0.5)]
        second = [signal(game_id="c", type="volume", cause="steam", confidence=0.65)]
        assert aggregate([first, second]) == aggregate([second, list(reversed(first))])

    def test_empty(self):
        assert aggregate([]) == []
        assert aggregate([[], []]) == []


class TestDedupe:
    """Test duplicate collapsing."""

    def test_keeps_highest_confidence(self):
        kept = dedupe([signal(confidence=0.6), signal(confidence=0.8), signal(confidence=0.7)])
        assert len(kept) == 1
        assert kept[0].confidence == 0.8

    def test_tie_prefers_higher_ev_then_earlier(self):
        kept = dedupe([signal(ev=1.0), signal(ev=3.0, minutes=5), signal(ev=3.0, minutes=1)])
        assert kept[0].expected_value == 3.0
        assert kept[0].detected_at == T0 + timedelta(minutes=1)

    def test_different_causes_are_not_duplicates(self):
        kept = dedupe([signal(cause="rlm"), signal(cause="trend:r1:Bills")])
        assert len(kept) == 2

    def test_different_types_are_not_duplicates(self):
        kept = dedupe([signal(type="bias", cause="x"), signal(type="volume", cause="x")])
        assert len(kept) == 2


class TestFilters:
    """Test type, confidence and limit filters."""

    def setup_method(self):
        self.signals = [
            signal(game_id="a", confidence=0.95),
            signal(game_id="b", type="volume", cause="steam", confidence=0.80),
            signal(game_id="c", confidence=0.75),
            signal(game_id="d", type="news", cause="injury", confidence=0.60),
        ]

    def test_type_filter(self):
        ranked = aggregate([self.signals], SignalFilter(type=EdgeType.BIAS))
        assert [s.game_id for s in ranked] == ["a", "c"]

    def test_min_confidence_inclusive(self):
        ranked = aggregate([self.signals], SignalFilter(min_confidence=0.75))
        assert [s.game_id for s in ranked] == ["a", "b", "c"]

    def test_high_confidence_only(self):
        config = EngineConfig(high_confidence_threshold=0.8)
        ranked = aggregate([self.signals], SignalFilter(high_confidence_only=True), config)
        assert [s.game_id for s in ranked] == ["a", "b"]

    def test_stricter_bound_wins(self):
        config = EngineConfig(high_confidence_threshold=0.75)
        ranked = aggregate([self.signals], SignalFilter(min_confidence=0.9, high_confidence_only=True), config)
        assert [s.game_id for s in ranked] == ["a"]

    def test_limit_is_prefix(self):
        full = aggregate([self.signals])
        assert aggregate([self.signals], SignalFilter(limit=2)) == full[:2]

    def test_limit_applied_after_type(self):
        ranked = aggregate([self.signals], SignalFilter(type="bias", limit=1))
        assert [s.game_id for s in ranked] == ["a"]

    def test_limit_zero_is_empty(self):
        assert aggregate([self.signals], SignalFilter(limit=0)) == []

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            SignalFilter(limit=-1)

    def test_from_request(self):
        f = SignalFilter.from_request(type="VOLUME", min_confidence=75, default_limit=50)
        assert f.type is EdgeType.VOLUME
        assert f.min_confidence == 0.75
        assert f.limit == 50

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            SignalFilter.from_request(type="hunch")
