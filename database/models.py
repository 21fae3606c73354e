"""Database models for the SHARPLINE historical store"""

from sqlalchemy import (
    Column, Integer, String, Float, DateTime,
    ForeignKey, JSON, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime


Base = declarative_base()


class Game(Base):
    """Game/Match model"""
    __tablename__ = "games"

    id = Column(String(64), primary_key=True)
    sport = Column(String(20), nullable=False, index=True)

    # Teams
    home_team = Column(String(100), nullable=False)
    away_team = Column(String(100), nullable=False)

    game_time = Column(DateTime, nullable=False, index=True)

    # Status: scheduled | in_progress | final | postponed | cancelled
    status = Column(String(20), default="scheduled", index=True)

    # Scores stay NULL until the game starts
    home_score = Column(Integer)
    away_score = Column(Integer)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    odds = relationship("OddsSnapshot", back_populates="game", cascade="all, delete-orphan")
    betting_splits = relationship("BettingSplit", back_populates="game", cascade="all, delete-orphan")
    picks = relationship("Pick", back_populates="game", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_game_time_sport", "game_time", "sport"),
    )

    def __repr__(self):
        return f"<Game {self.away_team} @ {self.home_team} ({self.game_time})>"


class OddsSnapshot(Base):
    """One book's line for one side of a market at a point in time"""
    __tablename__ = "odds_snapshots"

    id = Column(Integer, primary_key=True)
    game_id = Column(String(64), ForeignKey("games.id"), nullable=False, index=True)

    sportsbook = Column(String(50), nullable=False)
    bet_type = Column(String(20), nullable=False)  # spread | total | moneyline
    side = Column(String(10), nullable=False)  # home | away | over | under

    line_value = Column(Float)  # NULL for moneyline
    price = Column(Integer)  # American odds

    snapshot_time = Column(DateTime, default=datetime.utcnow, index=True)

    game = relationship("Game", back_populates="odds")

    __table_args__ = (
        Index("idx_odds_game_market_time", "game_id", "bet_type", "snapshot_time"),
    )

    def __repr__(self):
        return f"<OddsSnapshot {self.sportsbook} {self.bet_type} {self.side} - Game {self.game_id}>"


class BettingSplit(Base):
    """Public ticket/handle split on one side of a market"""
    __tablename__ = "betting_splits"

    id = Column(Integer, primary_key=True)
    game_id = Column(String(64), ForeignKey("games.id"), nullable=False, index=True)

    bet_type = Column(String(20), nullable=False)
    side = Column(String(10), nullable=False)

    ticket_pct = Column(Float, nullable=False)  # share of bets
    handle_pct = Column(Float)  # share of dollars, not every feed reports it

    source = Column(String(100))

    snapshot_time = Column(DateTime, default=datetime.utcnow, index=True)

    game = relationship("Game", back_populates="betting_splits")

    __table_args__ = (
        Index("idx_split_game_market_time", "game_id", "bet_type", "snapshot_time"),
    )

    def __repr__(self):
        return f"<BettingSplit Game {self.game_id} - {self.bet_type} {self.side}>"


class Pick(Base):
    """A recorded wager; the line is frozen when the pick is placed"""
    __tablename__ = "picks"

    id = Column(String(64), primary_key=True)
    game_id = Column(String(64), ForeignKey("games.id"), nullable=False, index=True)

    bet_type = Column(String(20), nullable=False)
    side = Column(String(10), nullable=False)
    line_value = Column(Float)
    odds = Column(Integer, default=-110)
    units = Column(Float, default=1.0)

    # pending -> graded, never back
    status = Column(String(20), default="pending", index=True)

    placed_at = Column(DateTime, nullable=False)

    game = relationship("Game", back_populates="picks")
    grade = relationship("PickGrade", back_populates="pick", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Pick {self.id} {self.bet_type} {self.side} {self.line_value} ({self.status})>"


class PickGrade(Base):
    """Graded outcome for a pick"""
    __tablename__ = "pick_grades"

    id = Column(Integer, primary_key=True)
    pick_id = Column(String(64), ForeignKey("picks.id"), nullable=False)

    result = Column(String(10), nullable=False)  # win | loss | push | void
    margin = Column(Float)
    units_won = Column(Float, default=0.0)
    final_spread = Column(Integer)
    final_total = Column(Integer)
    note = Column(Text)

    graded_at = Column(DateTime, default=datetime.utcnow)

    pick = relationship("Pick", back_populates="grade")

    __table_args__ = (
        UniqueConstraint("pick_id", name="uq_pick_grade_pick"),
    )

    def __repr__(self):
        return f"<PickGrade {self.pick_id} {self.result} {self.units_won:+.2f}u>"


class TrendRule(Base):
    """Historical situational trend; predicate is stored as its JSON tree"""
    __tablename__ = "trend_rules"

    id = Column(String(100), primary_key=True)
    sport = Column(String(20), nullable=False, index=True)  # "ALL" applies everywhere
    name = Column(String(200))

    predicate = Column(JSON, nullable=False)
    bet_type = Column(String(20))
    pick = Column(String(20))

    wins = Column(Integer, default=0)
    losses = Column(Integer, default=0)
    pushes = Column(Integer, default=0)
    sample_size = Column(Integer)
    roi = Column(Float, default=0.0)

    last_updated = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<TrendRule {self.id} {self.wins}-{self.losses}-{self.pushes}>"
