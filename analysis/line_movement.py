"""
Line-Movement Signal Detector
==============================
Finds disagreement between public betting behaviour and how books move lines.

Strategies:
1. Reverse Line Movement: line moves AGAINST the side holding the majority of tickets
2. Steam Move: several books move the same direction inside a short window
3. Sharp Money Split: majority of tickets on one side, majority of handle on the other
4. Arbitrage: best moneyline prices across books imply less than 100%

All lines are compared on the normalised axis from engine.line_history
(home handicap, posted total, home implied probability). Moneyline moves are
measured in implied-probability points and converted to "point equivalents"
with the ratio of the moneyline and spread RLM thresholds, so the same
confidence heuristics apply to every bet type.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import median
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from config.engine_config import EngineConfig
from engine.errors import InsufficientData, InvalidSeries
from engine.line_history import LineHistory, normalized_value
from engine.models import (
    BetType,
    EdgeSignal,
    EdgeType,
    LineSnapshot,
    OPPOSITE_SIDE,
    PublicSplit,
    Side,
    make_signal_id,
)
from engine.odds import implied_probability

logger = logging.getLogger(__name__)

# +1: the line rising on the normalised axis hurts the majority side
_DISFAVOR_SIGN = {
    (BetType.SPREAD, Side.HOME): 1,
    (BetType.SPREAD, Side.AWAY): -1,
    (BetType.TOTAL, Side.OVER): -1,
    (BetType.TOTAL, Side.UNDER): 1,
    (BetType.MONEYLINE, Side.HOME): -1,
    (BetType.MONEYLINE, Side.AWAY): 1,
}

# Side the money is on when the normalised line moves up / down
_STEAM_SIDE = {
    BetType.SPREAD: {"up": Side.AWAY, "down": Side.HOME},
    BetType.TOTAL: {"up": Side.OVER, "down": Side.UNDER},
    BetType.MONEYLINE: {"up": Side.HOME, "down": Side.AWAY},
}


def _unit(bet_type: BetType) -> str:
    return "pct" if bet_type is BetType.MONEYLINE else "pts"


@dataclass(frozen=True)
class ReverseLineMovement:
    """Line moved against the ticket majority."""
    game_id: str
    bet_type: BetType
    majority_side: Side
    ticket_pct: float  # majority side's share of tickets
    opening_line: float
    current_line: float
    delta: float  # current - opening on the normalised axis
    move_points: float  # |delta| in point equivalents
    detected_at: datetime
    books: Tuple[str, ...] = ()

    @property
    def sharp_side(self) -> Side:
        return OPPOSITE_SIDE[self.majority_side]

    @property
    def strength(self) -> float:
        """Grows with both the size of the move and the size of the majority."""
        return abs(self.delta) * (1 + (self.ticket_pct - 50) / 50)

    @property
    def confidence(self) -> float:
        return min(0.95, 0.5 + (self.ticket_pct - 50) / 100 + self.move_points * 0.1)

    @property
    def expected_value(self) -> float:
        return round(self.move_points * 2.5, 2)

    def to_edge_signal(self) -> EdgeSignal:
        cause = f"rlm:{self.bet_type.value}"
        return EdgeSignal(
            id=make_signal_id(EdgeType.BIAS, self.game_id, cause),
            type=EdgeType.BIAS,
            game_id=self.game_id,
            description=(
                f"Reverse line movement: {self.ticket_pct:.0f}% of tickets on "
                f"{self.majority_side.value}, {self.bet_type.value} moved "
                f"{self.opening_line:g} → {self.current_line:g} against them. "
                f"Sharp side: {self.sharp_side.value}"
            ),
            confidence=self.confidence,
            expected_value=self.expected_value,
            detected_at=self.detected_at,
            source_ids=self.books,
            cause=cause,
            side=self.sharp_side.value,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal_type": "rlm",
            "game_id": self.game_id,
            "bet_type": self.bet_type.value,
            "majority_side": self.majority_side.value,
            "sharp_side": self.sharp_side.value,
            "ticket_pct": self.ticket_pct,
            "opening_line": self.opening_line,
            "current_line": self.current_line,
            "delta": self.delta,
            "strength": round(self.strength, 3),
            "confidence": round(self.confidence, 3),
        }


@dataclass(frozen=True)
class SteamMove:
    """Coordinated move by several books inside one window."""
    game_id: str
    bet_type: BetType
    books: Tuple[str, ...]
    direction: str  # "up" / "down" on the normalised axis
    move: float  # mean per-book net move, normalised units
    move_points: float
    window_start: datetime
    window_end: datetime

    @property
    def side(self) -> Side:
        return _STEAM_SIDE[self.bet_type][self.direction]

    @property
    def confidence(self) -> float:
        return min(0.95, (60 + self.move_points * 10 + len(self.books) * 5) / 100)

    @property
    def expected_value(self) -> float:
        return round(self.move_points * 3, 2)

    def to_edge_signal(self) -> EdgeSignal:
        cause = f"steam:{self.bet_type.value}:{self.window_start.isoformat()}"
        minutes = (self.window_end - self.window_start).total_seconds() / 60
        return EdgeSignal(
            id=make_signal_id(EdgeType.VOLUME, self.game_id, cause),
            type=EdgeType.VOLUME,
            game_id=self.game_id,
            description=(
                f"Steam move: {len(self.books)} books moved the {self.bet_type.value} "
                f"{self.direction} {self.move:.1f} {_unit(self.bet_type)} in {minutes:.0f} min "
                f"({', '.join(self.books)}). Money on {self.side.value}"
            ),
            confidence=self.confidence,
            expected_value=self.expected_value,
            detected_at=self.window_end,
            source_ids=self.books,
            cause=cause,
            side=self.side.value,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal_type": "steam",
            "game_id": self.game_id,
            "bet_type": self.bet_type.value,
            "books": list(self.books),
            "direction": self.direction,
            "move": self.move,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "confidence": round(self.confidence, 3),
        }


@dataclass(frozen=True)
class SharpMoneySplit:
    """Tickets on one side, handle on the other."""
    game_id: str
    bet_type: BetType
    public_side: Side
    ticket_pct: float
    handle_pct: float  # sharp side's share of handle
    observed_at: datetime

    @property
    def sharp_side(self) -> Side:
        return OPPOSITE_SIDE[self.public_side]

    @property
    def confidence(self) -> float:
        return min(0.9, 0.4 + ((self.ticket_pct - 50) + (self.handle_pct - 50)) / 100)

    @property
    def expected_value(self) -> float:
        return round((self.ticket_pct - 50) * 0.2, 2)

    def to_edge_signal(self) -> EdgeSignal:
        cause = f"split:{self.bet_type.value}"
        return EdgeSignal(
            id=make_signal_id(EdgeType.VOLUME, self.game_id, cause),
            type=EdgeType.VOLUME,
            game_id=self.game_id,
            description=(
                f"Sharp vs public: {self.ticket_pct:.0f}% of tickets on {self.public_side.value}, "
                f"{self.handle_pct:.0f}% of money on {self.sharp_side.value}"
            ),
            confidence=self.confidence,
            expected_value=self.expected_value,
            detected_at=self.observed_at,
            cause=cause,
            side=self.sharp_side.value,
        )


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Best prices on both sides of a moneyline imply less than 100%."""
    game_id: str
    home_book: str
    home_price: int
    away_book: str
    away_price: int
    arb_pct: float
    detected_at: datetime

    def to_edge_signal(self) -> EdgeSignal:
        cause = f"arb:{self.home_book}:{self.away_book}"
        return EdgeSignal(
            id=make_signal_id(EdgeType.ARBITRAGE, self.game_id, cause),
            type=EdgeType.ARBITRAGE,
            game_id=self.game_id,
            description=(
                f"Arbitrage {self.arb_pct:.2f}%: home {self.home_price:+d} @ {self.home_book}, "
                f"away {self.away_price:+d} @ {self.away_book}"
            ),
            confidence=0.99,
            expected_value=round(self.arb_pct, 2),
            detected_at=self.detected_at,
            source_ids=(self.home_book, self.away_book),
            cause=cause,
        )


Detection = Union[ReverseLineMovement, SteamMove, SharpMoneySplit]


def _majority(split: PublicSplit) -> Optional[Tuple[Side, float]]:
    """Side holding more than half of the tickets, and its share."""
    if split.ticket_pct > 50:
        return split.side, split.ticket_pct
    if split.ticket_pct < 50:
        return OPPOSITE_SIDE[split.side], 100 - split.ticket_pct
    return None


def _latest_split(splits: Sequence[PublicSplit]) -> Optional[PublicSplit]:
    if not splits:
        return None
    return max(splits, key=lambda s: (s.observed_at, s.side.value))


class LineMovementDetector:
    """
    Detect RLM, steam and money splits for one market.

    Each detector takes the LineHistory of a single (game, bet_type) market
    and the public splits recorded for it.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def _points_scale(self, bet_type: BetType) -> float:
        """Normalised units per point equivalent."""
        if bet_type is BetType.MONEYLINE:
            return self.config.rlm_moneyline_threshold / self.config.rlm_threshold
        return 1.0

    def detect_rlm(self, history: LineHistory, splits: Sequence[PublicSplit]) -> Optional[ReverseLineMovement]:
        """
        Detect reverse line movement.

        Every book is measured from its own first snapshot to its own last;
        the market move is the median of those per-book moves. A standing gap
        between two books that never moved is not movement.

        Args:
            history: Snapshots of one market (at least two)
            splits: Public splits for the same market

        Returns:
            ReverseLineMovement, or None when there is no split, no ticket
            majority, no book with two snapshots, or the median move is too
            small / in the majority's favour
        """
        if len(history) < 2:
            raise InsufficientData(f"{history.game_id}: need two snapshots for RLM")
        split = _latest_split(splits)
        if split is None:
            return None
        majority = _majority(split)
        if majority is None:
            return None
        majority_side, ticket_pct = majority

        # each book against its own opener
        moves = []
        for book_id in history.books():
            series = history.series(book_id)
            if len(series) < 2:
                continue
            first, last = normalized_value(series[0]), normalized_value(series[-1])
            moves.append((book_id, first, last, series[-1].captured_at))
        if not moves:
            return None

        delta = median(last - first for _, first, last, _ in moves)
        open_value = median(first for _, first, _, _ in moves)
        current_value = open_value + delta

        bet_type = history.bet_type
        threshold = (
            self.config.rlm_moneyline_threshold
            if bet_type is BetType.MONEYLINE
            else self.config.rlm_threshold
        )
        if _DISFAVOR_SIGN[(bet_type, majority_side)] * delta < threshold:
            return None

        return ReverseLineMovement(
            game_id=history.game_id,
            bet_type=bet_type,
            majority_side=majority_side,
            ticket_pct=ticket_pct,
            opening_line=round(open_value, 2),
            current_line=round(current_value, 2),
            delta=round(delta, 4),
            move_points=abs(delta) / self._points_scale(bet_type),
            detected_at=max(max(at for *_, at in moves), split.observed_at),
            books=tuple(
                book_id for book_id, first, last, _ in moves
                if _DISFAVOR_SIGN[(bet_type, majority_side)] * (last - first) > 0
            ),
        )

    def detect_steam(self, history: LineHistory) -> List[SteamMove]:
        """
        Detect steam moves with a greedy, non-overlapping window scan.

        Per-book moves between consecutive snapshots are ordered by
        (time, book). A window opens at each move and extends while moves
        fall inside it; as soon as enough books have each moved far enough
        the same way, one SteamMove is emitted and scanning resumes after
        the window's last move.
        """
        scale = self._points_scale(history.bet_type)
        threshold = self.config.steam_threshold * scale
        window = timedelta(minutes=self.config.steam_window_minutes)
        min_books = self.config.steam_min_books

        events: List[Tuple[datetime, str, float]] = []
        for book_id in history.books():
            series = history.series(book_id)
            for prev, nxt in zip(series, series[1:]):
                move = normalized_value(nxt) - normalized_value(prev)
                if move:
                    events.append((nxt.captured_at, book_id, move))
        events.sort(key=lambda e: (e[0], e[1]))

        steams: List[SteamMove] = []
        i = 0
        while i < len(events):
            start = events[i][0]
            nets: Dict[str, float] = defaultdict(float)
            found = None
            for j in range(i, len(events)):
                at, book_id, move = events[j]
                if at > start + window:
                    break
                nets[book_id] += move
                up = sorted(b for b, net in nets.items() if net >= threshold)
                down = sorted(b for b, net in nets.items() if net <= -threshold)
                if len(up) >= min_books or len(down) >= min_books:
                    direction, books = ("up", up) if len(up) >= len(down) else ("down", down)
                    found = j
                    mean_move = sum(abs(nets[b]) for b in books) / len(books)
                    steams.append(SteamMove(
                        game_id=history.game_id,
                        bet_type=history.bet_type,
                        books=tuple(books),
                        direction=direction,
                        move=round(mean_move, 4),
                        move_points=mean_move / scale,
                        window_start=start,
                        window_end=at,
                    ))
                    break
            if found is None:
                i += 1
                continue
            end = events[found][0]
            i = found + 1
            while i < len(events) and events[i][0] <= end:
                i += 1
        return steams

    def detect_money_split(self, splits: Sequence[PublicSplit]) -> Optional[SharpMoneySplit]:
        """Detect tickets and handle backing opposite sides in the latest split."""
        split = _latest_split(splits)
        if split is None or split.handle_pct is None:
            return None
        majority = _majority(split)
        if majority is None:
            return None
        public_side, ticket_pct = majority

        # handle share of the side opposite the ticket majority
        if split.side is public_side:
            sharp_handle = 100 - split.handle_pct
        else:
            sharp_handle = split.handle_pct

        if ticket_pct < self.config.split_min_ticket_pct:
            return None
        if sharp_handle < self.config.split_min_handle_pct:
            return None
        return SharpMoneySplit(
            game_id=split.game_id,
            bet_type=split.bet_type,
            public_side=public_side,
            ticket_pct=ticket_pct,
            handle_pct=sharp_handle,
            observed_at=split.observed_at,
        )

    def detect_arbitrage(self, history: LineHistory) -> Optional[ArbitrageOpportunity]:
        """
        Compare each book's latest moneyline price and look for a two-book arb.

        Only books quoting a side contribute a price for that side. Series
        are keyed by (game, bet_type, book), so one book can hold a single
        quote per instant: a book posting home and away at the same moment
        makes LineHistory raise InvalidSeries, and only the latest snapshot of
        each book is priced. Arbitrage therefore fires only when each side's
        best price comes from a book whose latest snapshot quotes that side.
        """
        if history.bet_type is not BetType.MONEYLINE:
            return None
        best: Dict[Side, Tuple[float, str, LineSnapshot]] = {}
        for book_id in history.books():
            latest = history.series(book_id)[-1]
            prob = implied_probability(latest.price)
            if latest.side not in best or prob < best[latest.side][0]:
                best[latest.side] = (prob, book_id, latest)
        if Side.HOME not in best or Side.AWAY not in best:
            return None
        (home_prob, home_book, home_snap) = best[Side.HOME]
        (away_prob, away_book, away_snap) = best[Side.AWAY]
        arb_pct = (1 - (home_prob + away_prob)) * 100
        if arb_pct <= 0:
            return None
        return ArbitrageOpportunity(
            game_id=history.game_id,
            home_book=home_book,
            home_price=home_snap.price,
            away_book=away_book,
            away_price=away_snap.price,
            arb_pct=arb_pct,
            detected_at=max(home_snap.captured_at, away_snap.captured_at),
        )

    def detect(self, history: LineHistory, splits: Sequence[PublicSplit] = ()) -> List[Detection]:
        """Run every line-movement detector on one market."""
        if len(history) < 2:
            return []
        splits = [
            s for s in splits
            if (s.game_id, s.bet_type) == (history.game_id, history.bet_type)
        ]
        detections: List[Detection] = []
        rlm = self.detect_rlm(history, splits)
        if rlm is not None:
            detections.append(rlm)
        detections.extend(self.detect_steam(history))
        money_split = self.detect_money_split(splits)
        if money_split is not None:
            detections.append(money_split)
        return detections


def detect_signals(
    lines: Iterable[LineSnapshot],
    splits: Iterable[PublicSplit] = (),
    config: Optional[EngineConfig] = None,
) -> List[Detection]:
    """
    Detect line-movement signals across one or more markets.

    Markets with fewer than two snapshots produce nothing. Markets without
    splits still get steam detection. A market whose snapshots are not a
    valid series is logged and skipped; the other markets are still scanned.
    """
    lines = list(lines)
    if not lines:
        return []
    detector = LineMovementDetector(config)
    splits_by_market: Dict[Tuple[str, BetType], List[PublicSplit]] = defaultdict(list)
    for split in splits:
        splits_by_market[(split.game_id, split.bet_type)].append(split)

    detections: List[Detection] = []
    markets = LineHistory.partition(lines)
    for key in sorted(markets, key=lambda k: (k[0], k[1].value)):
        try:
            history = LineHistory(markets[key])
        except InvalidSeries as e:
            logger.warning("Skipping market %s/%s: %s", key[0], key[1].value, e)
            continue
        found = detector.detect(history, splits_by_market.get(key, []))
        if found:
            logger.debug("%s/%s: %d line-movement signals", key[0], key[1].value, len(found))
        detections.extend(found)
    return detections
