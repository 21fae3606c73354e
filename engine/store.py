"""
Historical store boundary.

The engine only reads lines, splits, results and the trend catalog, and only
writes grade outcomes. Anything that satisfies these protocols can back it:
database.store.SqlHistoricalStore in production, InMemoryStore in tests and
embedded use. Implementations raise DataSourceUnavailable on failure.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from engine.errors import PickAlreadyGraded
from engine.models import (
    BetType,
    GameResult,
    GradeOutcome,
    LineSnapshot,
    Pick,
    PublicSplit,
    TrendRule,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class HistoricalStore(Protocol):
    def fetch_lines(self, game_id: str, bet_type: BetType) -> List[LineSnapshot]:
        ...

    def fetch_splits(self, game_id: str, bet_type: BetType) -> List[PublicSplit]:
        ...

    def fetch_result(self, game_id: str) -> Optional[GameResult]:
        ...

    def fetch_trend_catalog(self, sport: str) -> List[TrendRule]:
        """Rules for `sport` plus the rules marked "ALL"."""
        ...


@runtime_checkable
class GradeSink(Protocol):
    def record(self, pick: Pick, outcome: GradeOutcome) -> Pick:
        """Persist an outcome and move the pick to graded. Returns the graded pick."""
        ...


class InMemoryStore:
    """Dict-backed store for tests and embedding."""

    def __init__(self):
        self._lines: Dict[Tuple[str, BetType], List[LineSnapshot]] = defaultdict(list)
        self._splits: Dict[Tuple[str, BetType], List[PublicSplit]] = defaultdict(list)
        self._results: Dict[str, GameResult] = {}
        self._rules: List[TrendRule] = []
        self._picks: Dict[str, Pick] = {}
        self._outcomes: Dict[str, GradeOutcome] = {}

    # ── loading ──

    def add_lines(self, snapshots: Iterable[LineSnapshot]) -> None:
        for snap in snapshots:
            self._lines[(snap.game_id, snap.bet_type)].append(snap)

    def add_splits(self, splits: Iterable[PublicSplit]) -> None:
        for split in splits:
            self._splits[(split.game_id, split.bet_type)].append(split)

    def set_result(self, result: GameResult) -> None:
        self._results[result.game_id] = result

    def add_rules(self, rules: Iterable[TrendRule]) -> None:
        self._rules.extend(rules)

    def add_picks(self, picks: Iterable[Pick]) -> None:
        for pick in picks:
            self._picks[pick.id] = pick

    def add_outcome(self, pick_id: str, outcome: GradeOutcome) -> None:
        self._outcomes[pick_id] = outcome

    # ── HistoricalStore ──

    def fetch_lines(self, game_id: str, bet_type: BetType) -> List[LineSnapshot]:
        return list(self._lines.get((game_id, BetType(bet_type)), []))

    def fetch_splits(self, game_id: str, bet_type: BetType) -> List[PublicSplit]:
        return list(self._splits.get((game_id, BetType(bet_type)), []))

    def fetch_result(self, game_id: str) -> Optional[GameResult]:
        return self._results.get(game_id)

    def fetch_trend_catalog(self, sport: str) -> List[TrendRule]:
        sport = sport.upper()
        return [rule for rule in self._rules if rule.sport in (sport, "ALL")]

    def fetch_pending_picks(self) -> List[Pick]:
        return [pick for pick in self._picks.values() if not pick.is_graded]

    def get_pick(self, pick_id: str) -> Optional[Pick]:
        return self._picks.get(pick_id)

    def fetch_graded_picks(self) -> List[Tuple[Pick, GradeOutcome]]:
        """Graded picks with their outcomes, oldest placement first."""
        graded = [p for p in self._picks.values() if p.id in self._outcomes]
        graded.sort(key=lambda p: p.placed_at)
        return [(p, self._outcomes[p.id]) for p in graded]


class InMemoryGradeSink:
    """Grade sink writing back into an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self.store = store
        self.outcomes: Dict[str, GradeOutcome] = {}

    def record(self, pick: Pick, outcome: GradeOutcome) -> Pick:
        current = self.store.get_pick(pick.id) or pick
        if current.is_graded:
            raise PickAlreadyGraded(pick.id)
        graded = current.mark_graded()
        self.outcomes[pick.id] = outcome
        self.store.add_outcome(pick.id, outcome)
        self.store.add_picks([graded])
        logger.debug("Recorded %s for pick %s", outcome.result.value, pick.id)
        return graded
