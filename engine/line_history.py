"""
LINE HISTORY
============
Time-ordered snapshots for one market (game + bet type), split into one
series per book.

Normalised lines (used by the movement detectors) put every book on the same
axis regardless of which side it quoted:
    spread    → home handicap (away quotes negated)
    total     → posted number
    moneyline → home implied probability in percentage points

Closing Line Value (CLV) follows the usual sign rules: positive means you beat
the number the market settled on.
    UNDER:  CLV = your_line - closing_line
    OVER:   CLV = closing_line - your_line
    SPREAD: CLV = your_line - closing_line   (more points = better)

Usage:
    from engine.line_history import LineHistory
    history = LineHistory(snapshots)
    opening, current = history.opening(), history.current()
    pick = Pick.from_market(history, pick_id="p1", side="home", book_id="dk", placed_at=t)
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from engine.errors import InsufficientData, InvalidSeries
from engine.models import BetType, LineSnapshot, Pick, Side
from engine.odds import implied_probability


def normalized_value(snapshot: LineSnapshot) -> float:
    """Place a snapshot on the home/posted-number axis for its bet type."""
    if snapshot.bet_type is BetType.SPREAD:
        return snapshot.line_value if snapshot.side is Side.HOME else -snapshot.line_value
    if snapshot.bet_type is BetType.TOTAL:
        return snapshot.line_value
    prob = implied_probability(snapshot.price) * 100
    return prob if snapshot.side is Side.HOME else 100 - prob


class LineHistory:
    """All books' snapshot series for a single (game_id, bet_type) market."""

    def __init__(self, snapshots: Iterable[LineSnapshot]):
        snaps = list(snapshots)
        if not snaps:
            raise InsufficientData("Line history needs at least one snapshot")

        markets = {(s.game_id, s.bet_type) for s in snaps}
        if len(markets) > 1:
            raise ValueError(f"Snapshots span {len(markets)} markets, expected one")
        self.game_id, self.bet_type = markets.pop()

        by_book: Dict[str, List[LineSnapshot]] = defaultdict(list)
        for snap in snaps:
            by_book[snap.book_id].append(snap)

        self._series: Dict[str, List[LineSnapshot]] = {}
        for book_id, series in by_book.items():
            series.sort(key=lambda s: s.captured_at)
            for prev, nxt in zip(series, series[1:]):
                if nxt.captured_at <= prev.captured_at:
                    raise InvalidSeries(
                        f"{self.game_id}/{self.bet_type.value}/{book_id}: two snapshots "
                        f"captured at {nxt.captured_at.isoformat()}"
                    )
            self._series[book_id] = series

    @staticmethod
    def partition(snapshots: Iterable[LineSnapshot]) -> Dict[Tuple[str, BetType], List[LineSnapshot]]:
        """Bucket a mixed batch of snapshots by market without validating them."""
        markets: Dict[Tuple[str, BetType], List[LineSnapshot]] = defaultdict(list)
        for snap in snapshots:
            markets[(snap.game_id, snap.bet_type)].append(snap)
        return dict(markets)

    @classmethod
    def group(cls, snapshots: Iterable[LineSnapshot]) -> Dict[Tuple[str, BetType], "LineHistory"]:
        """Split a mixed batch of snapshots into one history per market."""
        return {key: cls(snaps) for key, snaps in cls.partition(snapshots).items()}

    def __len__(self) -> int:
        return sum(len(series) for series in self._series.values())

    def books(self) -> List[str]:
        return sorted(self._series)

    def series(self, book_id: str) -> List[LineSnapshot]:
        return list(self._series.get(book_id, []))

    def snapshots(self) -> List[LineSnapshot]:
        """Every snapshot, ordered by (captured_at, book_id)."""
        merged = [snap for series in self._series.values() for snap in series]
        return sorted(merged, key=lambda s: (s.captured_at, s.book_id))

    def opening(self) -> LineSnapshot:
        return self.snapshots()[0]

    def current(self) -> LineSnapshot:
        return self.snapshots()[-1]

    def line_at(self, book_id: str, at: datetime) -> LineSnapshot:
        """
        The line `book_id` showed at `at`: its latest snapshot captured at or
        before `at`. Later snapshots are never returned.

        Raises:
            InsufficientData: the book had not posted a line by `at`
        """
        found: Optional[LineSnapshot] = None
        for snap in self._series.get(book_id, []):
            if snap.captured_at > at:
                break
            found = snap
        if found is None:
            raise InsufficientData(
                f"No {self.bet_type.value} line from {book_id} for {self.game_id} at {at.isoformat()}"
            )
        return found

    def closing_line(self, book_id: str, start: datetime) -> LineSnapshot:
        """The last line `book_id` posted before the game started."""
        return self.line_at(book_id, start)

    @staticmethod
    def line_for_side(snapshot: LineSnapshot, side: Side) -> Optional[float]:
        """Re-express a snapshot's line from `side`'s perspective."""
        if snapshot.bet_type is BetType.MONEYLINE:
            return None
        if snapshot.bet_type is BetType.TOTAL:
            return snapshot.line_value
        if side is snapshot.side:
            return snapshot.line_value
        return -snapshot.line_value


def closing_line_value(pick: Pick, closing: LineSnapshot) -> Optional[float]:
    """
    CLV of a pick against a closing snapshot of the same market.

    Moneyline CLV is measured in implied-probability points and is only
    available when the closing snapshot quotes the picked side.
    """
    if (closing.game_id, closing.bet_type) != (pick.game_id, pick.bet_type):
        raise ValueError("Closing snapshot belongs to a different market")

    if pick.bet_type is BetType.MONEYLINE:
        if closing.side is not pick.side:
            return None
        return round(
            (implied_probability(closing.price) - implied_probability(pick.odds_at_pick)) * 100, 2
        )

    if pick.line_value_at_pick is None:
        return None
    closing_line = LineHistory.line_for_side(closing, pick.side)
    if pick.side is Side.UNDER:
        return pick.line_value_at_pick - closing_line
    if pick.side is Side.OVER:
        return closing_line - pick.line_value_at_pick
    return pick.line_value_at_pick - closing_line
