"""
Test Suite for Line-Movement Detector
======================================
Tests for reverse line movement, steam moves, money splits and arbitrage.
"""

import random
from datetime import datetime, timedelta

import pytest

from analysis.line_movement import (
    LineMovementDetector,
    ReverseLineMovement,
    SharpMoneySplit,
    SteamMove,
    detect_signals,
)
from config.engine_config import EngineConfig
from engine.errors import InvalidSeries
from engine.line_history import LineHistory
from engine.models import BetType, EdgeType, LineSnapshot, PublicSplit, Side

T0 = datetime(2025, 11, 2, 9, 0)


def snap(minutes, line, book="dk", side="home", bet_type="spread", price=-110):
    return LineSnapshot(
        game_id="g1",
        bet_type=bet_type,
        side=side,
        book_id=book,
        line_value=line,
        price=price,
        captured_at=T0 + timedelta(minutes=minutes),
    )


def split(ticket_pct, side="home", bet_type="spread", handle_pct=None, minutes=60):
    return PublicSplit(
        game_id="g1",
        bet_type=bet_type,
        side=side,
        ticket_pct=ticket_pct,
        handle_pct=handle_pct,
        observed_at=T0 + timedelta(minutes=minutes),
    )


class TestReverseLineMovement:
    """Test RLM against the ticket majority."""

    def setup_method(self):
        self.detector = LineMovementDetector(EngineConfig())

    def test_line_moves_against_public_home(self):
        history = LineHistory([snap(0, -6.5), snap(120, -4.0)])
        rlm = self.detector.detect_rlm(history, [split(57)])
        assert rlm is not None
        assert rlm.majority_side == Side.HOME
        assert rlm.sharp_side == Side.AWAY
        assert rlm.delta == 2.5

    def test_line_moving_with_public_is_not_rlm(self):
        history = LineHistory([snap(0, -4.0), snap(120, -6.5)])
        assert self.detector.detect_rlm(history, [split(57)]) is None

    def test_majority_from_minority_split(self):
        # 30% on home → 70% on away; home handicap falling hurts away
        history = LineHistory([snap(0, -3.0), snap(120, -4.5)])
        rlm = self.detector.detect_rlm(history, [split(30)])
        assert rlm.majority_side == Side.AWAY
        assert rlm.ticket_pct == 70

    def test_even_split_has_no_majority(self):
        history = LineHistory([snap(0, -6.5), snap(120, -4.0)])
        assert self.detector.detect_rlm(history, [split(50)]) is None

    def test_total_falls_against_over_majority(self):
        history = LineHistory([
            snap(0, 47.5, side="over", bet_type="total"),
            snap(90, 45.5, side="over", bet_type="total"),
        ])
        rlm = self.detector.detect_rlm(history, [split(68, side="over", bet_type="total")])
        assert rlm.sharp_side == Side.UNDER

    def test_moneyline_probability_falls_against_home_majority(self):
        history = LineHistory([
            snap(0, None, bet_type="moneyline", price=-200),
            snap(90, None, bet_type="moneyline", price=-150),
        ])
        rlm = self.detector.detect_rlm(history, [split(72, bet_type="moneyline")])
        assert rlm is not None
        assert rlm.sharp_side == Side.AWAY

    def test_uses_latest_split(self):
        history = LineHistory([snap(0, -6.5), snap(120, -4.0)])
        splits = [split(70, minutes=10), split(40, minutes=100)]
        # latest split puts 60% on away; the home handicap rising does not hurt away
        assert self.detector.detect_rlm(history, splits) is None

    def test_below_threshold(self):
        history = LineHistory([snap(0, -3.5), snap(120, -3.0)])
        assert self.detector.detect_rlm(history, [split(65)]) is None

    def test_standing_gap_between_books_is_not_movement(self):
        # dk sits at -3.5 and fd at -2.5 the whole time
        history = LineHistory([
            snap(0, -3.5, book="dk"), snap(60, -3.5, book="dk"),
            snap(30, -2.5, book="fd"), snap(120, -2.5, book="fd"),
        ])
        assert self.detector.detect_rlm(history, [split(75)]) is None

    def test_move_is_median_of_per_book_moves(self):
        history = LineHistory([
            snap(0, -6.5, book="dk"), snap(100, -4.0, book="dk"),
            snap(5, -6.0, book="fd"), snap(110, -3.5, book="fd"),
            snap(10, -6.5, book="mgm"), snap(90, -6.5, book="mgm"),
        ])
        rlm = self.detector.detect_rlm(history, [split(65)])
        assert rlm is not None
        assert rlm.delta == 2.5
        assert rlm.books == ("dk", "fd")
        assert rlm.detected_at == T0 + timedelta(minutes=110)

    def test_single_snapshot_books_ignored(self):
        history = LineHistory([snap(0, -3.5, book="dk"), snap(60, -2.5, book="fd")])
        assert self.detector.detect_rlm(history, [split(75)]) is None

    def test_strength_increases_with_move_and_majority(self):
        base = dict(game_id="g1", bet_type=BetType.SPREAD, majority_side=Side.HOME,
                    opening_line=-6.5, current_line=-4.0, detected_at=T0)
        small = ReverseLineMovement(ticket_pct=60, delta=1.5, move_points=1.5, **base)
        bigger_move = ReverseLineMovement(ticket_pct=60, delta=2.5, move_points=2.5, **base)
        bigger_majority = ReverseLineMovement(ticket_pct=75, delta=1.5, move_points=1.5, **base)
        assert bigger_move.strength > small.strength
        assert bigger_majority.strength > small.strength
        assert bigger_move.confidence >= small.confidence

    def test_edge_signal_mapping(self):
        history = LineHistory([snap(0, -6.5), snap(120, -4.0)])
        signal = self.detector.detect_rlm(history, [split(65, minutes=130)]).to_edge_signal()
        assert signal.type == EdgeType.BIAS
        assert signal.side == "away"
        assert signal.detected_at == T0 + timedelta(minutes=130)
        assert 0 < signal.confidence <= 0.95


class TestSteamMove:
    """Test coordinated multi-book moves."""

    def setup_method(self):
        self.detector = LineMovementDetector(EngineConfig(
            steam_window_minutes=15, steam_threshold=1.0, steam_min_books=3,
        ))

    def _moves(self, books, start=0, gap=2):
        snaps = []
        for i, book in enumerate(books):
            snaps.append(snap(start - 60 + i, -3.0, book=book))
            snaps.append(snap(start + i * gap, -4.0, book=book))
        return snaps

    def test_two_books_is_not_steam(self):
        history = LineHistory(self._moves(["dk", "fd"]))
        assert self.detector.detect_steam(history) == []

    def test_three_books_is_exactly_one_steam(self):
        history = LineHistory(self._moves(["dk", "fd", "mgm"]))
        steams = self.detector.detect_steam(history)
        assert len(steams) == 1
        steam = steams[0]
        assert steam.books == ("dk", "fd", "mgm")
        assert steam.direction == "down"
        assert steam.side == Side.HOME
        assert steam.window_start == T0
        assert steam.window_end == T0 + timedelta(minutes=4)

    def test_moves_outside_window_are_not_steam(self):
        history = LineHistory(self._moves(["dk", "fd", "mgm"], gap=10))
        assert self.detector.detect_steam(history) == []

    def test_opposite_directions_cancel(self):
        snaps = self._moves(["dk", "fd"]) + [snap(-30, -3.0, book="mgm"), snap(3, -2.0, book="mgm")]
        assert self.detector.detect_steam(LineHistory(snaps)) == []

    def test_independent_of_input_order(self):
        snaps = self._moves(["dk", "fd", "mgm", "czr"])
        shuffled = list(snaps)
        random.Random(7).shuffle(shuffled)
        assert self.detector.detect_steam(LineHistory(snaps)) == self.detector.detect_steam(LineHistory(shuffled))

    def test_steam_signal_is_volume(self):
        steam = self.detector.detect_steam(LineHistory(self._moves(["dk", "fd", "mgm"])))[0]
        signal = steam.to_edge_signal()
        assert signal.type == EdgeType.VOLUME
        assert signal.confidence == pytest.approx(min(0.95, (60 + 10 + 15) / 100))
        assert signal.expected_value == 3.0


class TestSharpMoneySplit:
    """Test tickets vs handle divergence."""

    def setup_method(self):
        self.detector = LineMovementDetector(EngineConfig())

    def test_split_detected(self):
        found = self.detector.detect_money_split([split(70, handle_pct=35)])
        assert isinstance(found, SharpMoneySplit)
        assert found.public_side == Side.HOME
        assert found.sharp_side == Side.AWAY
        assert found.handle_pct == 65

    def test_same_side_money_is_not_split(self):
        assert self.detector.detect_money_split([split(70, handle_pct=75)]) is None

    def test_no_handle_no_split(self):
        assert self.detector.detect_money_split([split(70)]) is None


class TestArbitrage:
    """Test cross-book moneyline arbitrage."""

    def test_arb_found(self):
        history = LineHistory([
            snap(0, None, book="dk", bet_type="moneyline", price=110),
            snap(0, None, book="fd", side="away", bet_type="moneyline", price=105),
        ])
        arb = LineMovementDetector().detect_arbitrage(history)
        assert arb is not None
        assert arb.arb_pct > 0
        assert arb.to_edge_signal().type == EdgeType.ARBITRAGE

    def test_no_arb_with_vig(self):
        history = LineHistory([
            snap(0, None, book="dk", bet_type="moneyline", price=-110),
            snap(0, None, book="fd", side="away", bet_type="moneyline", price=-110),
        ])
        assert LineMovementDetector().detect_arbitrage(history) is None

    def test_both_sides_from_one_book_at_once_rejected(self):
        with pytest.raises(InvalidSeries):
            LineHistory([
                snap(0, None, book="dk", bet_type="moneyline", price=-120),
                snap(0, None, book="dk", side="away", bet_type="moneyline", price=100),
            ])


class TestDetectSignals:
    """Test the multi-market entry point."""

    def test_single_snapshot_is_empty(self):
        assert detect_signals([snap(0, -3.0)], [split(80)]) == []

    def test_no_lines_is_empty(self):
        assert detect_signals([], [split(80)]) == []

    def test_no_splits_still_detects_steam(self):
        snaps = []
        for i, book in enumerate(["dk", "fd", "mgm"]):
            snaps += [snap(-60 + i, -3.0, book=book), snap(i, -4.0, book=book)]
        found = detect_signals(snaps, [], EngineConfig(steam_threshold=1.0))
        assert [type(d) for d in found] == [SteamMove]

    def test_rlm_and_split_together(self):
        found = detect_signals(
            [snap(0, -6.5), snap(120, -4.0)],
            [split(70, handle_pct=30)],
        )
        kinds = {type(d) for d in found}
        assert kinds == {ReverseLineMovement, SharpMoneySplit}

    def test_bad_market_does_not_hide_other_games(self):
        broken = [
            LineSnapshot(game_id="g2", bet_type="spread", side="home", book_id="dk",
                         line_value=line, price=-110, captured_at=T0)
            for line in (-3.0, -3.5)
        ]
        found = detect_signals(broken + [snap(0, -6.5), snap(120, -4.0)], [split(70)])
        assert [(type(d), d.game_id) for d in found] == [(ReverseLineMovement, "g1")]

    def test_standing_gap_across_markets_yields_nothing(self):
        snaps = [
            snap(0, -3.5, book="dk"), snap(60, -3.5, book="dk"),
            snap(30, -2.5, book="fd"), snap(120, -2.5, book="fd"),
        ]
        assert detect_signals(snaps, [split(75)]) == []
