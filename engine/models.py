"""
SHARPLINE DOMAIN MODEL
======================
Immutable value types shared by the grader, detectors, trend matcher and
aggregator. String-valued enums subclass `str` so they serialise as plain
strings in API responses and database rows.

Lines:
    spread    → handicap from the snapshot side's perspective (-3.5 = favored)
    total     → the posted number, same for over and under
    moneyline → no line, only an American price
"""

from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from engine.errors import PickAlreadyGraded
from engine.odds import validate_american


class BetType(str, Enum):
    SPREAD = "spread"
    TOTAL = "total"
    MONEYLINE = "moneyline"


class Side(str, Enum):
    HOME = "home"
    AWAY = "away"
    OVER = "over"
    UNDER = "under"
    DRAW = "draw"  # three-way moneyline only


class PickStatus(str, Enum):
    PENDING = "pending"
    GRADED = "graded"


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINAL = "final"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"


class GradeResult(str, Enum):
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"
    VOID = "void"


class EdgeType(str, Enum):
    BIAS = "bias"
    VOLUME = "volume"
    NEWS = "news"
    ARBITRAGE = "arbitrage"
    TIME = "time"


PICK_SIDES = {
    BetType.SPREAD: frozenset({Side.HOME, Side.AWAY}),
    BetType.TOTAL: frozenset({Side.OVER, Side.UNDER}),
    BetType.MONEYLINE: frozenset({Side.HOME, Side.AWAY, Side.DRAW}),
}

MARKET_SIDES = {
    BetType.SPREAD: frozenset({Side.HOME, Side.AWAY}),
    BetType.TOTAL: frozenset({Side.OVER, Side.UNDER}),
    BetType.MONEYLINE: frozenset({Side.HOME, Side.AWAY}),
}

OPPOSITE_SIDE = {
    Side.HOME: Side.AWAY,
    Side.AWAY: Side.HOME,
    Side.OVER: Side.UNDER,
    Side.UNDER: Side.OVER,
}


def _coerce(obj: Any, name: str, enum_cls) -> None:
    object.__setattr__(obj, name, enum_cls(getattr(obj, name)))


def _check_side(bet_type: BetType, side: Side, allowed: Dict[BetType, FrozenSet[Side]]) -> None:
    if side not in allowed[bet_type]:
        raise ValueError(f"Side '{side.value}' is not valid for a {bet_type.value} market")


def is_half_point(value: float) -> bool:
    """Lines are quoted in half points: -3, -3.5, 45, 45.5."""
    return float(value * 2).is_integer()


# ── Line history ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class LineSnapshot:
    """One book's posted line at one instant."""
    game_id: str
    bet_type: BetType
    side: Side
    book_id: str
    line_value: Optional[float]
    price: Optional[int]
    captured_at: datetime

    def __post_init__(self):
        _coerce(self, "bet_type", BetType)
        _coerce(self, "side", Side)
        _check_side(self.bet_type, self.side, MARKET_SIDES)
        if self.bet_type is BetType.MONEYLINE:
            if self.price is None:
                raise ValueError("Moneyline snapshots require a price")
            validate_american(self.price)
        elif self.line_value is None:
            raise ValueError(f"{self.bet_type.value} snapshots require a line_value")

    # One series per book and market: a book quoting both moneyline sides at
    # the same instant is two snapshots at one timestamp and is rejected.
    @property
    def series_key(self) -> Tuple[str, BetType, str]:
        return (self.game_id, self.bet_type, self.book_id)


@dataclass(frozen=True)
class PublicSplit:
    """Share of tickets (and optionally handle) on one side of a market."""
    game_id: str
    bet_type: BetType
    side: Side
    ticket_pct: float
    observed_at: datetime
    handle_pct: Optional[float] = None

    def __post_init__(self):
        _coerce(self, "bet_type", BetType)
        _coerce(self, "side", Side)
        _check_side(self.bet_type, self.side, MARKET_SIDES)
        if not 0 <= self.ticket_pct <= 100:
            raise ValueError(f"ticket_pct out of range: {self.ticket_pct}")
        if self.handle_pct is not None and not 0 <= self.handle_pct <= 100:
            raise ValueError(f"handle_pct out of range: {self.handle_pct}")


# ── Picks and results ────────────────────────────────────────────────

@dataclass(frozen=True)
class Pick:
    """
    A wager on one side of one market.

    `line_value_at_pick` is frozen when the pick is created and is the only
    line the grader ever looks at. Moneyline picks carry no line.
    """
    id: str
    game_id: str
    bet_type: BetType
    side: Side
    line_value_at_pick: Optional[float]
    placed_at: datetime
    status: PickStatus = PickStatus.PENDING
    sport: Optional[str] = None
    odds_at_pick: int = -110
    units: float = 1.0

    def __post_init__(self):
        _coerce(self, "bet_type", BetType)
        _coerce(self, "side", Side)
        _coerce(self, "status", PickStatus)
        _check_side(self.bet_type, self.side, PICK_SIDES)
        if self.bet_type is BetType.MONEYLINE:
            object.__setattr__(self, "line_value_at_pick", None)
        elif self.line_value_at_pick is not None and not is_half_point(self.line_value_at_pick):
            raise ValueError(f"Line {self.line_value_at_pick} is not a multiple of 0.5")
        validate_american(self.odds_at_pick)
        if self.units <= 0:
            raise ValueError("units must be positive")

    @property
    def is_graded(self) -> bool:
        return self.status is PickStatus.GRADED

    def mark_graded(self) -> "Pick":
        """Return the graded copy of this pick. The transition happens once."""
        if self.is_graded:
            raise PickAlreadyGraded(self.id)
        return replace(self, status=PickStatus.GRADED)

    @classmethod
    def from_market(
        cls,
        history: "LineHistory",  # noqa: F821
        *,
        pick_id: str,
        side: Side,
        book_id: str,
        placed_at: datetime,
        sport: Optional[str] = None,
        units: float = 1.0,
        odds_at_pick: Optional[int] = None,
    ) -> "Pick":
        """
        Create a pick at the line `book_id` showed at `placed_at`.

        Only snapshots captured at or before `placed_at` are considered, so a
        later line can never leak into the pick.

        Raises:
            InsufficientData: the book had no line yet at `placed_at`
        """
        side = Side(side)
        snapshot = history.line_at(book_id, placed_at)
        line = history.line_for_side(snapshot, side)
        if odds_at_pick is None:
            if snapshot.price is not None and snapshot.side is side:
                odds_at_pick = snapshot.price
            else:
                odds_at_pick = -110
        return cls(
            id=pick_id,
            game_id=history.game_id,
            bet_type=history.bet_type,
            side=side,
            line_value_at_pick=line,
            placed_at=placed_at,
            sport=sport,
            odds_at_pick=odds_at_pick,
            units=units,
        )


@dataclass(frozen=True)
class GameResult:
    game_id: str
    home_score: Optional[int]
    away_score: Optional[int]
    status: GameStatus
    sport: Optional[str] = None

    def __post_init__(self):
        _coerce(self, "status", GameStatus)
        if self.status is GameStatus.FINAL and (self.home_score is None or self.away_score is None):
            raise ValueError(f"Final result for {self.game_id} is missing a score")
        for score in (self.home_score, self.away_score):
            if score is not None and score < 0:
                raise ValueError("Scores cannot be negative")

    @property
    def is_final(self) -> bool:
        return self.status is GameStatus.FINAL


@dataclass(frozen=True)
class GradeOutcome:
    pick_id: str
    result: GradeResult
    margin: Optional[float]
    units_won: float = 0.0
    final_spread: Optional[int] = None  # home - away
    final_total: Optional[int] = None
    note: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pick_id": self.pick_id,
            "result": self.result.value,
            "margin": self.margin,
            "units_won": self.units_won,
            "final_spread": self.final_spread,
            "final_total": self.final_total,
            "note": self.note,
        }


# ── Trends ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HistoricalRecord:
    wins: int = 0
    losses: int = 0
    pushes: int = 0

    def __post_init__(self):
        if min(self.wins, self.losses, self.pushes) < 0:
            raise ValueError("Record counts cannot be negative")

    @property
    def decided(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return self.wins / self.decided if self.decided else 0.0

    def __str__(self) -> str:
        if self.pushes:
            return f"{self.wins}-{self.losses}-{self.pushes}"
        return f"{self.wins}-{self.losses}"


@dataclass(frozen=True)
class TrendRule:
    """
    A historical situational trend.

    `predicate` stays raw declarative data (a dict/list tree) and is parsed
    when evaluated, so new rules need no code changes. `sport == "ALL"`
    applies the rule to every sport.
    """
    id: str
    sport: str
    predicate: Any
    historical_record: HistoricalRecord
    roi: float
    last_updated: datetime
    sample_size: Optional[int] = None
    name: str = ""
    bet_type: Optional[str] = None
    pick: Optional[str] = None  # subject, opponent, over, under

    def __post_init__(self):
        if isinstance(self.historical_record, dict):
            object.__setattr__(self, "historical_record", HistoricalRecord(**self.historical_record))
        if self.sample_size is None:
            record = self.historical_record
            object.__setattr__(self, "sample_size", record.wins + record.losses + record.pushes)
        object.__setattr__(self, "sport", self.sport.upper())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrendRule":
        last_updated = data["last_updated"]
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        return cls(
            id=data["id"],
            sport=data.get("sport", "ALL"),
            predicate=data["predicate"],
            historical_record=HistoricalRecord(**data.get("historical_record", {})),
            roi=float(data.get("roi", 0.0)),
            last_updated=last_updated,
            sample_size=data.get("sample_size"),
            name=data.get("name", ""),
            bet_type=data.get("bet_type"),
            pick=data.get("pick"),
        )


@dataclass(frozen=True)
class GameFeatures:
    """Situational feature set of one team's perspective on one game."""
    game_id: str
    sport: str
    team: str
    is_home: bool
    opponent: Optional[str] = None
    is_favorite: Optional[bool] = None
    spread: Optional[float] = None
    total: Optional[float] = None
    rest_days_diff: Optional[int] = None
    divisional: Optional[bool] = None
    season_bucket: Optional[str] = None
    weather_bucket: Optional[str] = None
    public_spread_pct: Optional[float] = None
    line_movement: Optional[float] = None
    primetime: Optional[bool] = None
    playoffs: Optional[bool] = None
    last_game_margin: Optional[int] = None
    consecutive_road_games: Optional[int] = None
    temperature: Optional[float] = None
    wind_mph: Optional[float] = None

    def get(self, name: str) -> Any:
        return getattr(self, name)

    def flipped(self) -> "GameFeatures":
        """
        The same game from the opponent's perspective.

        Features that belong to one team only (rest, last margin, road
        streak, public share) are unknown from the other side.
        """
        return replace(
            self,
            team=self.opponent or "",
            opponent=self.team,
            is_home=not self.is_home,
            is_favorite=None if self.is_favorite is None else not self.is_favorite,
            spread=None if self.spread is None else -self.spread,
            rest_days_diff=None if self.rest_days_diff is None else -self.rest_days_diff,
            public_spread_pct=None if self.public_spread_pct is None else 100 - self.public_spread_pct,
            line_movement=None if self.line_movement is None else -self.line_movement,
            last_game_margin=None,
            consecutive_road_games=None,
        )


KNOWN_FEATURES = frozenset(f.name for f in fields(GameFeatures))


# ── Signals ──────────────────────────────────────────────────────────

def make_signal_id(edge_type: EdgeType, game_id: str, cause: str) -> str:
    return f"{EdgeType(edge_type).value}:{game_id}:{cause}"


@dataclass(frozen=True)
class EdgeSignal:
    """
    One ranked entry in the edge feed.

    `cause` separates different reasons of the same type on the same game
    (for example one RLM and one trend, both "bias") so deduplication only
    collapses repeats of the same reason.
    """
    id: str
    type: EdgeType
    game_id: str
    description: str
    confidence: float
    expected_value: float
    detected_at: datetime
    source_ids: Tuple[str, ...] = ()
    cause: str = ""
    side: Optional[str] = None

    def __post_init__(self):
        _coerce(self, "type", EdgeType)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        object.__setattr__(self, "source_ids", tuple(self.source_ids))

    @property
    def dedup_key(self) -> Tuple[str, EdgeType, str]:
        return (self.game_id, self.type, self.cause)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "game_id": self.game_id,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            "expected_value": round(self.expected_value, 4),
            "detected_at": self.detected_at.isoformat(),
            "source_ids": list(self.source_ids),
            "cause": self.cause,
            "side": self.side,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EdgeSignal":
        detected_at = data["detected_at"]
        if isinstance(detected_at, str):
            detected_at = datetime.fromisoformat(detected_at)
        edge_type = EdgeType(data["type"])
        cause = data.get("cause", "")
        return cls(
            id=data.get("id") or make_signal_id(edge_type, data["game_id"], cause),
            type=edge_type,
            game_id=data["game_id"],
            description=data.get("description", ""),
            confidence=float(data["confidence"]),
            expected_value=float(data.get("expected_value", 0.0)),
            detected_at=detected_at,
            source_ids=tuple(data.get("source_ids", ())),
            cause=cause,
            side=data.get("side"),
        )
