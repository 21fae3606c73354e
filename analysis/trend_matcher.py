"""
Situational Trend Matcher
==========================
Finds which historical trends apply to a game.

Trend predicates are plain data, so the catalog grows without code changes:

    {"feature": "is_home", "op": "eq", "value": False}
    {"all": [<predicate>, ...]}      (a bare list means "all")
    {"any": [<predicate>, ...]}
    {"not": <predicate>}

Leaf ops: eq, ne, gt, gte, lt, lte, in, not_in, between.

Evaluation is three-valued. A clause on a feature the game does not have
(None) is UNKNOWN, and UNKNOWN never satisfies a rule, not even through
"not". A rule applies only when its predicate is definitely True.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from analysis.confidence import trend_confidence
from config.engine_config import EngineConfig
from engine.errors import InvalidPredicate
from engine.models import (
    EdgeSignal,
    EdgeType,
    GameFeatures,
    KNOWN_FEATURES,
    TrendRule,
    make_signal_id,
)

logger = logging.getLogger(__name__)

ORDERING_OPS = {"gt", "gte", "lt", "lte"}
MEMBERSHIP_OPS = {"in", "not_in"}
EQUALITY_OPS = {"eq", "ne"}
OPS = ORDERING_OPS | MEMBERSHIP_OPS | EQUALITY_OPS | {"between"}

NUMERIC_FEATURES = {
    "spread",
    "total",
    "rest_days_diff",
    "public_spread_pct",
    "line_movement",
    "last_game_margin",
    "consecutive_road_games",
    "temperature",
    "wind_mph",
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


# ── Predicate tree ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Clause:
    feature: str
    op: str
    value: Any

    def evaluate(self, game: GameFeatures) -> Optional[bool]:
        actual = game.get(self.feature)
        if actual is None:
            return None
        if self.op == "eq":
            return actual == self.value
        if self.op == "ne":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "not_in":
            return actual not in self.value
        if not _is_number(actual):
            return None
        if self.op == "gt":
            return actual > self.value
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lt":
            return actual < self.value
        if self.op == "lte":
            return actual <= self.value
        low, high = self.value
        return low <= actual <= high


@dataclass(frozen=True)
class AllOf:
    children: Tuple[Any, ...]

    def evaluate(self, game: GameFeatures) -> Optional[bool]:
        results = [child.evaluate(game) for child in self.children]
        if False in results:
            return False
        if None in results:
            return None
        return True


@dataclass(frozen=True)
class AnyOf:
    children: Tuple[Any, ...]

    def evaluate(self, game: GameFeatures) -> Optional[bool]:
        results = [child.evaluate(game) for child in self.children]
        if True in results:
            return True
        if None in results:
            return None
        return False


@dataclass(frozen=True)
class Not:
    child: Any

    def evaluate(self, game: GameFeatures) -> Optional[bool]:
        result = self.child.evaluate(game)
        return None if result is None else not result


def _parse_clause(raw: dict):
    missing = {"feature", "op", "value"} - set(raw)
    if missing:
        raise InvalidPredicate(f"Clause missing {sorted(missing)}: {raw}")
    feature, op, value = raw["feature"], raw["op"], raw["value"]

    if feature not in KNOWN_FEATURES:
        raise InvalidPredicate(f"Unknown feature '{feature}'")
    if op not in OPS:
        raise InvalidPredicate(f"Unknown op '{op}'")

    if op in EQUALITY_OPS and not _is_scalar(value):
        raise InvalidPredicate(f"'{op}' needs a scalar, got {value!r}")
    if op in MEMBERSHIP_OPS:
        if not isinstance(value, (list, tuple, set, frozenset)) or not all(_is_scalar(v) for v in value):
            raise InvalidPredicate(f"'{op}' needs a list of scalars, got {value!r}")
        value = frozenset(value)
    if op in ORDERING_OPS | {"between"} and feature not in NUMERIC_FEATURES:
        raise InvalidPredicate(f"'{op}' is not defined for non-numeric feature '{feature}'")
    if op in ORDERING_OPS and not _is_number(value):
        raise InvalidPredicate(f"'{op}' needs a number, got {value!r}")
    if op == "between":
        if (
            not isinstance(value, (list, tuple))
            or len(value) != 2
            or not all(_is_number(v) for v in value)
            or value[0] > value[1]
        ):
            raise InvalidPredicate(f"'between' needs [low, high], got {value!r}")
        value = (value[0], value[1])

    return Clause(feature=feature, op=op, value=value)


def parse_predicate(raw: Any):
    """
    Compile raw predicate data into an evaluable tree.

    Raises:
        InvalidPredicate: unknown feature or op, bad operand, or bad shape
    """
    if isinstance(raw, list):
        if not raw:
            raise InvalidPredicate("Predicate list is empty")
        return AllOf(tuple(parse_predicate(item) for item in raw))
    if not isinstance(raw, dict):
        raise InvalidPredicate(f"Predicate must be a dict or list, got {type(raw).__name__}")

    composite = {"all", "any", "not"} & set(raw)
    if composite:
        if len(raw) != 1:
            raise InvalidPredicate(f"Composite predicate has extra keys: {sorted(raw)}")
        key = composite.pop()
        body = raw[key]
        if key == "not":
            return Not(parse_predicate(body))
        if not isinstance(body, list) or not body:
            raise InvalidPredicate(f"'{key}' needs a non-empty list")
        children = tuple(parse_predicate(item) for item in body)
        return AllOf(children) if key == "all" else AnyOf(children)

    return _parse_clause(raw)


def evaluate_predicate(raw: Any, game: GameFeatures) -> Optional[bool]:
    """Parse and evaluate. True / False / None (unknown)."""
    return parse_predicate(raw).evaluate(game)


# ── Matching ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TrendMatch:
    rule: TrendRule
    game: GameFeatures
    confidence: float
    detected_at: datetime

    @property
    def side(self) -> Optional[str]:
        """Market side the trend backs, when the rule says which."""
        pick = (self.rule.pick or "subject").lower()
        if pick in ("over", "under"):
            return pick
        subject_home = self.game.is_home if pick == "subject" else not self.game.is_home
        return "home" if subject_home else "away"

    def to_edge_signal(self) -> EdgeSignal:
        cause = f"trend:{self.rule.id}:{self.game.team}"
        name = self.rule.name or self.rule.id
        return EdgeSignal(
            id=make_signal_id(EdgeType.BIAS, self.game.game_id, cause),
            type=EdgeType.BIAS,
            game_id=self.game.game_id,
            description=(
                f"{name} applies to {self.game.team}: {self.rule.historical_record} "
                f"({self.rule.roi:+.1f}% ROI, n={self.rule.sample_size})"
            ),
            confidence=self.confidence,
            expected_value=self.rule.roi,
            detected_at=self.detected_at,
            source_ids=(self.rule.id,),
            cause=cause,
            side=self.side,
        )

    def to_dict(self):
        return {
            "rule_id": self.rule.id,
            "name": self.rule.name,
            "team": self.game.team,
            "record": str(self.rule.historical_record),
            "roi": self.rule.roi,
            "sample_size": self.rule.sample_size,
            "confidence": round(self.confidence, 4),
            "side": self.side,
        }


@dataclass
class TrendMatchResult:
    matches: List[TrendMatch] = field(default_factory=list)
    invalid: List[Tuple[str, str]] = field(default_factory=list)  # (rule_id, reason)

    def __iter__(self) -> Iterator[TrendMatch]:
        return iter(self.matches)

    def __len__(self) -> int:
        return len(self.matches)

    def to_edge_signals(self) -> List[EdgeSignal]:
        return [match.to_edge_signal() for match in self.matches]


def _applies_to_sport(rule: TrendRule, sport: str) -> bool:
    return rule.sport == "ALL" or rule.sport == sport.upper()


def match_trends(
    game: GameFeatures,
    catalog: Iterable[TrendRule],
    config: Optional[EngineConfig] = None,
    as_of: Optional[datetime] = None,
) -> TrendMatchResult:
    """
    Evaluate every catalog rule against one team's view of a game.

    Args:
        game: Situational features from the subject team's perspective
        catalog: Trend rules (any sport; filtered here)
        config: Supplies the confidence z-score
        as_of: Timestamp stamped on the matches (defaults to the rule's last_updated)

    Returns:
        TrendMatchResult ordered by confidence, then sample size, then recency.
        Rules with malformed predicates are skipped and listed in `invalid`.
    """
    config = config or EngineConfig()
    result = TrendMatchResult()

    for rule in catalog:
        if not _applies_to_sport(rule, game.sport):
            continue
        try:
            predicate = parse_predicate(rule.predicate)
        except InvalidPredicate as e:
            logger.warning("Skipping trend %s: %s", rule.id, e)
            result.invalid.append((rule.id, str(e)))
            continue
        if predicate.evaluate(game) is not True:
            continue
        result.matches.append(TrendMatch(
            rule=rule,
            game=game,
            confidence=trend_confidence(rule.historical_record, config.trend_confidence_z),
            detected_at=as_of or rule.last_updated,
        ))

    result.matches.sort(
        key=lambda m: (m.confidence, m.rule.sample_size, m.rule.last_updated),
        reverse=True,
    )
    return result


def match_both_sides(
    game: GameFeatures,
    catalog: Sequence[TrendRule],
    config: Optional[EngineConfig] = None,
    as_of: Optional[datetime] = None,
) -> TrendMatchResult:
    """Match a catalog from both teams' views of the game (when the opponent is known)."""
    views = [game, game.flipped()] if game.opponent else [game]
    combined = TrendMatchResult()
    for view in views:
        found = match_trends(view, catalog, config, as_of)
        combined.matches.extend(found.matches)
        for entry in found.invalid:
            if entry not in combined.invalid:
                combined.invalid.append(entry)
    combined.matches.sort(
        key=lambda m: (m.confidence, m.rule.sample_size, m.rule.last_updated),
        reverse=True,
    )
    return combined
