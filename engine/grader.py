"""
OUTCOME GRADER
==============
Grades a pick against THE LINE IT WAS MADE AT, never the closing line.

    Pick home -3.5, final 24-21 → margin = 3 + (-3.5) = -0.5 → LOSS
    Pick over 45,   final 24-21 → 45 == 45                 → PUSH

Rules:
  - scheduled / in_progress  → IncompleteResult (try again later)
  - postponed / cancelled    → VOID
  - spread:    margin = (home ? home-away : away-home) + line
  - total:     over wins above the line, under wins below it
  - moneyline: higher score wins; ties follow the sport's tie policy
               (VOID for two-way markets, draw settles three-way markets)
  - no recorded line on a spread/total → VOID
  - half-point lines never push

Grading is pure: no clock reads, no persistence. The same pick and result
always give the same outcome.

Usage:
    from engine.grader import grade, summarize_record
    outcome = grade(pick, result)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config.sports_config import TIE_THREE_WAY, get_moneyline_tie_policy
from engine.errors import IncompleteResult
from engine.models import (
    BetType,
    GameResult,
    GameStatus,
    GradeOutcome,
    GradeResult,
    Pick,
    Side,
)
from engine.odds import payout_multiplier

logger = logging.getLogger(__name__)

_NOT_STARTED = (GameStatus.SCHEDULED, GameStatus.IN_PROGRESS)
_CALLED_OFF = (GameStatus.POSTPONED, GameStatus.CANCELLED)


def _result_from_margin(margin: float) -> GradeResult:
    if margin > 0:
        return GradeResult.WIN
    if margin < 0:
        return GradeResult.LOSS
    return GradeResult.PUSH


def units_won(pick: Pick, result: GradeResult) -> float:
    """Net units for a settled pick, rounded to cents."""
    if result is GradeResult.WIN:
        return round(pick.units * payout_multiplier(pick.odds_at_pick), 2)
    if result is GradeResult.LOSS:
        return round(-pick.units, 2)
    return 0.0


def _grade_moneyline(pick: Pick, home: int, away: int, sport: Optional[str]) -> Tuple[GradeResult, Optional[float], str]:
    if home == away:
        if get_moneyline_tie_policy(sport) == TIE_THREE_WAY:
            result = GradeResult.WIN if pick.side is Side.DRAW else GradeResult.LOSS
            return result, 0.0, "Draw"
        return GradeResult.VOID, None, "Tie - moneyline void"

    if pick.side is Side.DRAW:
        return GradeResult.LOSS, float(-abs(home - away)), ""
    margin = home - away if pick.side is Side.HOME else away - home
    return _result_from_margin(margin), float(margin), ""


def grade(pick: Pick, result: GameResult) -> GradeOutcome:
    """
    Settle a pick from its frozen line and the game result.

    Args:
        pick: The pick to settle
        result: Result of the pick's game

    Returns:
        GradeOutcome with result, margin and units won

    Raises:
        IncompleteResult: the game has not reached a final score
        ValueError: the result belongs to a different game
    """
    if result.game_id != pick.game_id:
        raise ValueError(f"Result for {result.game_id} cannot grade pick on {pick.game_id}")

    if result.status in _NOT_STARTED:
        raise IncompleteResult(result.game_id, result.status.value)

    if result.status in _CALLED_OFF:
        return GradeOutcome(
            pick_id=pick.id,
            result=GradeResult.VOID,
            margin=None,
            note=f"Game {result.status.value}",
        )

    home, away = result.home_score, result.away_score
    final_spread = home - away
    final_total = home + away
    note = ""

    if pick.bet_type is BetType.MONEYLINE:
        outcome, margin, note = _grade_moneyline(pick, home, away, result.sport or pick.sport)
    elif pick.line_value_at_pick is None:
        outcome, margin, note = GradeResult.VOID, None, "No line recorded"
    elif pick.bet_type is BetType.SPREAD:
        diff = final_spread if pick.side is Side.HOME else -final_spread
        margin = diff + pick.line_value_at_pick
        outcome = _result_from_margin(margin)
    else:
        if pick.side is Side.OVER:
            margin = final_total - pick.line_value_at_pick
        else:
            margin = pick.line_value_at_pick - final_total
        outcome = _result_from_margin(margin)

    return GradeOutcome(
        pick_id=pick.id,
        result=outcome,
        margin=None if outcome is GradeResult.VOID else margin,
        units_won=units_won(pick, outcome),
        final_spread=final_spread,
        final_total=final_total,
        note=note,
    )


@dataclass
class BatchGrade:
    """Outcome of grading a batch of picks."""
    outcomes: Dict[str, GradeOutcome]
    pending: List[str]  # pick ids whose game is not final yet
    missing: List[str]  # pick ids with no result at all


def grade_many(picks: Iterable[Pick], results: Dict[str, GameResult]) -> BatchGrade:
    """
    Grade every pick that has a final (or called-off) result.

    Incomplete games are reported in `pending` instead of raising, so one
    early pick never blocks the rest of the batch.
    """
    batch = BatchGrade(outcomes={}, pending=[], missing=[])
    for pick in picks:
        result = results.get(pick.game_id)
        if result is None:
            batch.missing.append(pick.id)
            continue
        try:
            batch.outcomes[pick.id] = grade(pick, result)
        except IncompleteResult:
            batch.pending.append(pick.id)
    logger.info(
        "Graded %d picks (%d pending, %d without results)",
        len(batch.outcomes), len(batch.pending), len(batch.missing),
    )
    return batch


# ── Record summary ───────────────────────────────────────────────────

@dataclass
class RecordSummary:
    wins: int = 0
    losses: int = 0
    pushes: int = 0
    voids: int = 0
    units_won: float = 0.0
    units_wagered: float = 0.0
    streak: int = 0  # +3 = won last three, -2 = lost last two

    @property
    def win_pct(self) -> float:
        decided = self.wins + self.losses
        return round(self.wins / decided * 100, 1) if decided else 0.0

    @property
    def roi(self) -> float:
        return round(self.units_won / self.units_wagered * 100, 1) if self.units_wagered else 0.0

    @property
    def record(self) -> str:
        return f"{self.wins}-{self.losses}-{self.pushes}"

    def to_dict(self) -> Dict:
        return {
            "wins": self.wins,
            "losses": self.losses,
            "pushes": self.pushes,
            "voids": self.voids,
            "record": self.record,
            "win_pct": self.win_pct,
            "units_won": self.units_won,
            "units_wagered": self.units_wagered,
            "roi": self.roi,
            "streak": self.streak,
        }


def summarize_record(graded: Sequence[Tuple[Pick, GradeOutcome]]) -> RecordSummary:
    """
    Roll graded picks up into a record.

    `graded` is ordered oldest first. Voids are neither wagered nor counted
    in win percentage. The streak counts back from the most recent decided
    pick; pushes and voids do not break it.
    """
    summary = RecordSummary()
    for pick, outcome in graded:
        if outcome.result is GradeResult.VOID:
            summary.voids += 1
            continue
        summary.units_wagered += pick.units
        summary.units_won += outcome.units_won
        if outcome.result is GradeResult.WIN:
            summary.wins += 1
        elif outcome.result is GradeResult.LOSS:
            summary.losses += 1
        else:
            summary.pushes += 1

    for _, outcome in reversed(graded):
        if outcome.result in (GradeResult.PUSH, GradeResult.VOID):
            continue
        step = 1 if outcome.result is GradeResult.WIN else -1
        if summary.streak and (summary.streak > 0) != (step > 0):
            break
        summary.streak += step

    summary.units_won = round(summary.units_won, 2)
    summary.units_wagered = round(summary.units_wagered, 2)
    return summary
