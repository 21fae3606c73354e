"""SQLAlchemy-backed historical store and grade sink"""

from contextlib import contextmanager
from dataclasses import replace
from typing import Generator, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import models
from database.db import SessionLocal, get_db_context
from engine.errors import DataSourceUnavailable, PickAlreadyGraded
from engine.models import (
    BetType,
    GameResult,
    GradeOutcome,
    GradeResult,
    HistoricalRecord,
    LineSnapshot,
    Pick,
    PickStatus,
    PublicSplit,
    TrendRule,
)


class SqlHistoricalStore:
    """
    Reads lines, splits, results and trend rules from the database.

    Every read opens its own short session so the store can be called from
    worker threads concurrently. Driver errors surface as DataSourceUnavailable.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with get_db_context(self.session_factory) as db:
                yield db
        except SQLAlchemyError as e:
            raise DataSourceUnavailable(f"Database read failed: {e}") from e

    # ── HistoricalStore ──

    def fetch_lines(self, game_id: str, bet_type: BetType) -> List[LineSnapshot]:
        with self._session() as db:
            rows = db.execute(
                select(models.OddsSnapshot)
                .where(models.OddsSnapshot.game_id == game_id)
                .where(models.OddsSnapshot.bet_type == BetType(bet_type).value)
                .order_by(models.OddsSnapshot.snapshot_time, models.OddsSnapshot.sportsbook)
            ).scalars().all()
            return [_snapshot_from_row(row) for row in rows]

    def fetch_splits(self, game_id: str, bet_type: BetType) -> List[PublicSplit]:
        with self._session() as db:
            rows = db.execute(
                select(models.BettingSplit)
                .where(models.BettingSplit.game_id == game_id)
                .where(models.BettingSplit.bet_type == BetType(bet_type).value)
                .order_by(models.BettingSplit.snapshot_time)
            ).scalars().all()
            return [
                PublicSplit(
                    game_id=row.game_id,
                    bet_type=row.bet_type,
                    side=row.side,
                    ticket_pct=row.ticket_pct,
                    handle_pct=row.handle_pct,
                    observed_at=row.snapshot_time,
                )
                for row in rows
            ]

    def fetch_result(self, game_id: str) -> Optional[GameResult]:
        with self._session() as db:
            game = db.get(models.Game, game_id)
            if game is None:
                return None
            return GameResult(
                game_id=game.id,
                home_score=game.home_score,
                away_score=game.away_score,
                status=game.status,
                sport=game.sport,
            )

    def fetch_trend_catalog(self, sport: str) -> List[TrendRule]:
        with self._session() as db:
            rows = db.execute(
                select(models.TrendRule)
                .where(models.TrendRule.sport.in_([sport.upper(), "ALL"]))
                .order_by(models.TrendRule.id)
            ).scalars().all()
            return [_rule_from_row(row) for row in rows]

    # ── picks ──

    def fetch_pending_picks(self) -> List[Pick]:
        with self._session() as db:
            rows = db.execute(
                select(models.Pick, models.Game.sport)
                .outerjoin(models.Game, models.Pick.game_id == models.Game.id)
                .where(models.Pick.status == PickStatus.PENDING.value)
                .order_by(models.Pick.placed_at)
            ).all()
            return [_pick_from_row(pick, sport) for pick, sport in rows]

    def get_pick(self, pick_id: str) -> Optional[Pick]:
        with self._session() as db:
            row = db.get(models.Pick, pick_id)
            if row is None:
                return None
            return _pick_from_row(row, row.game.sport if row.game else None)

    def fetch_graded_picks(self) -> List[Tuple[Pick, GradeOutcome]]:
        """Graded picks with their outcomes, oldest placement first."""
        with self._session() as db:
            rows = db.execute(
                select(models.Pick, models.PickGrade, models.Game.sport)
                .join(models.PickGrade, models.PickGrade.pick_id == models.Pick.id)
                .outerjoin(models.Game, models.Pick.game_id == models.Game.id)
                .order_by(models.Pick.placed_at)
            ).all()
            return [
                (
                    _pick_from_row(pick, sport),
                    GradeOutcome(
                        pick_id=pick.id,
                        result=GradeResult(grade.result),
                        margin=grade.margin,
                        units_won=grade.units_won or 0.0,
                        final_spread=grade.final_spread,
                        final_total=grade.final_total,
                        note=grade.note or "",
                    ),
                )
                for pick, grade, sport in rows
            ]

    # ── ingestion ──

    def add_game(self, game_id: str, sport: str, home_team: str, away_team: str, game_time) -> None:
        with self._session() as db:
            db.merge(models.Game(
                id=game_id, sport=sport.upper(), home_team=home_team,
                away_team=away_team, game_time=game_time,
            ))

    def add_lines(self, snapshots: Iterable[LineSnapshot]) -> None:
        with self._session() as db:
            db.add_all([
                models.OddsSnapshot(
                    game_id=snap.game_id,
                    sportsbook=snap.book_id,
                    bet_type=snap.bet_type.value,
                    side=snap.side.value,
                    line_value=snap.line_value,
                    price=snap.price,
                    snapshot_time=snap.captured_at,
                )
                for snap in snapshots
            ])

    def add_splits(self, splits: Iterable[PublicSplit], source: Optional[str] = None) -> None:
        with self._session() as db:
            db.add_all([
                models.BettingSplit(
                    game_id=split.game_id,
                    bet_type=split.bet_type.value,
                    side=split.side.value,
                    ticket_pct=split.ticket_pct,
                    handle_pct=split.handle_pct,
                    source=source,
                    snapshot_time=split.observed_at,
                )
                for split in splits
            ])

    def set_result(self, result: GameResult) -> None:
        with self._session() as db:
            game = db.get(models.Game, result.game_id)
            if game is None:
                raise KeyError(f"Unknown game {result.game_id}")
            game.status = result.status.value
            game.home_score = result.home_score
            game.away_score = result.away_score

    def add_rules(self, rules: Iterable[TrendRule]) -> None:
        with self._session() as db:
            for rule in rules:
                record = rule.historical_record
                db.merge(models.TrendRule(
                    id=rule.id,
                    sport=rule.sport,
                    name=rule.name,
                    predicate=rule.predicate,
                    bet_type=rule.bet_type,
                    pick=rule.pick,
                    wins=record.wins,
                    losses=record.losses,
                    pushes=record.pushes,
                    sample_size=rule.sample_size,
                    roi=rule.roi,
                    last_updated=rule.last_updated,
                ))

    def add_picks(self, picks: Iterable[Pick]) -> None:
        with self._session() as db:
            db.add_all([
                models.Pick(
                    id=pick.id,
                    game_id=pick.game_id,
                    bet_type=pick.bet_type.value,
                    side=pick.side.value,
                    line_value=pick.line_value_at_pick,
                    odds=pick.odds_at_pick,
                    units=pick.units,
                    status=pick.status.value,
                    placed_at=pick.placed_at,
                )
                for pick in picks
            ])


class SqlGradeSink:
    """Writes grade outcomes and flips picks to graded in one transaction."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    def record(self, pick: Pick, outcome: GradeOutcome) -> Pick:
        try:
            with get_db_context(self.session_factory) as db:
                row = db.get(models.Pick, pick.id, with_for_update=True)
                if row is None:
                    raise KeyError(f"Unknown pick {pick.id}")
                if row.status == PickStatus.GRADED.value:
                    raise PickAlreadyGraded(pick.id)

                row.status = PickStatus.GRADED.value
                db.add(models.PickGrade(
                    pick_id=pick.id,
                    result=outcome.result.value,
                    margin=outcome.margin,
                    units_won=outcome.units_won,
                    final_spread=outcome.final_spread,
                    final_total=outcome.final_total,
                    note=outcome.note,
                ))
        except SQLAlchemyError as e:
            raise DataSourceUnavailable(f"Could not record grade for {pick.id}: {e}") from e

        logger.info(f"Graded pick {pick.id}: {outcome.result.value} ({outcome.units_won:+.2f}u)")
        return replace(pick, status=PickStatus.GRADED)


def _snapshot_from_row(row: models.OddsSnapshot) -> LineSnapshot:
    return LineSnapshot(
        game_id=row.game_id,
        bet_type=row.bet_type,
        side=row.side,
        book_id=row.sportsbook,
        line_value=row.line_value,
        price=row.price,
        captured_at=row.snapshot_time,
    )


def _rule_from_row(row: models.TrendRule) -> TrendRule:
    return TrendRule(
        id=row.id,
        sport=row.sport,
        predicate=row.predicate,
        historical_record=HistoricalRecord(
            wins=row.wins or 0, losses=row.losses or 0, pushes=row.pushes or 0,
        ),
        roi=row.roi or 0.0,
        last_updated=row.last_updated,
        sample_size=row.sample_size,
        name=row.name or "",
        bet_type=row.bet_type,
        pick=row.pick,
    )


def _pick_from_row(row: models.Pick, sport: Optional[str]) -> Pick:
    return Pick(
        id=row.id,
        game_id=row.game_id,
        bet_type=row.bet_type,
        side=row.side,
        line_value_at_pick=row.line_value,
        placed_at=row.placed_at,
        status=row.status,
        sport=sport,
        odds_at_pick=row.odds if row.odds is not None else -110,
        units=row.units if row.units is not None else 1.0,
    )
