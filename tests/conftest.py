"""
Shared test fixtures for the SHARPLINE test suite.
"""

import sys
import os
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure project root is on sys.path so engine.* imports resolve
PROJECT_ROOT = str(Path(__file__).parent.parent)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Keep tests off any real database or API key
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("API_KEY", "")

from engine.models import (  # noqa: E402
    GameFeatures,
    GameResult,
    HistoricalRecord,
    LineSnapshot,
    Pick,
    PublicSplit,
    TrendRule,
)
from engine.store import InMemoryStore  # noqa: E402

KICKOFF = datetime(2025, 11, 2, 13, 0)


def make_snapshot(game_id, minutes, line, book="dk", side="home", bet_type="spread", price=-110):
    return LineSnapshot(
        game_id=game_id,
        bet_type=bet_type,
        side=side,
        book_id=book,
        line_value=line,
        price=price,
        captured_at=KICKOFF - timedelta(hours=6) + timedelta(minutes=minutes),
    )


@pytest.fixture
def kickoff():
    return KICKOFF


@pytest.fixture
def nfl_features():
    return GameFeatures(
        game_id="nfl-1", sport="NFL", team="Chiefs", opponent="Bills",
        is_home=True, is_favorite=True, spread=-3.5, total=47.5, divisional=False,
    )


@pytest.fixture
def road_dog_rule():
    return TrendRule(
        id="road-dog",
        sport="NFL",
        name="Road underdogs of 3+",
        predicate={"all": [
            {"feature": "is_home", "op": "eq", "value": False},
            {"feature": "spread", "op": "gte", "value": 3},
        ]},
        historical_record=HistoricalRecord(wins=180, losses=140, pushes=8),
        roi=7.4,
        last_updated=datetime(2025, 9, 1),
        pick="subject",
    )


@pytest.fixture
def seeded_store(road_dog_rule):
    """
    Two NFL games:
      nfl-1  public on the Chiefs at -6.5, line falls to -4 (RLM) and three
             books steam the total down
      nfl-2  quiet market
    """
    store = InMemoryStore()
    store.add_lines([
        make_snapshot("nfl-1", 0, -6.5),
        make_snapshot("nfl-1", 240, -4.0),
        make_snapshot("nfl-1", 0, 47.5, book="dk", side="over", bet_type="total"),
        make_snapshot("nfl-1", 1, 47.5, book="fd", side="over", bet_type="total"),
        make_snapshot("nfl-1", 2, 47.5, book="mgm", side="over", bet_type="total"),
        make_snapshot("nfl-1", 300, 46.5, book="dk", side="over", bet_type="total"),
        make_snapshot("nfl-1", 302, 46.5, book="fd", side="over", bet_type="total"),
        make_snapshot("nfl-1", 304, 46.5, book="mgm", side="over", bet_type="total"),
        make_snapshot("nfl-2", 0, -2.5),
        make_snapshot("nfl-2", 240, -2.5),
    ])
    store.add_splits([
        PublicSplit(
            game_id="nfl-1", bet_type="spread", side="home", ticket_pct=68,
            handle_pct=41, observed_at=KICKOFF - timedelta(hours=1),
        ),
    ])
    store.add_rules([road_dog_rule])
    store.set_result(GameResult(game_id="nfl-1", home_score=24, away_score=21, status="final", sport="NFL"))
    store.set_result(GameResult(game_id="nfl-2", home_score=7, away_score=3, status="in_progress", sport="NFL"))
    store.add_picks([
        Pick(id="p-1", game_id="nfl-1", bet_type="spread", side="home", line_value_at_pick=-3.5,
             placed_at=KICKOFF - timedelta(hours=2), sport="NFL"),
        Pick(id="p-2", game_id="nfl-2", bet_type="spread", side="away", line_value_at_pick=2.5,
             placed_at=KICKOFF - timedelta(hours=2), sport="NFL"),
    ])
    return store
