"""
Test Suite for Edge Engine
===========================
End-to-end scans over the in-memory store: sources, partial failure,
cancellation, extra producers and concurrent grading.
"""

import asyncio
import threading
from datetime import datetime, timedelta

import httpx
import pytest

from config.engine_config import EngineConfig
from engine.aggregator import SignalFilter
from engine.edge_engine import EdgeEngine
from engine.errors import DataSourceUnavailable
from engine.fanout import BatchOutcome
from engine.models import EdgeSignal, EdgeType, GradeResult
from engine.sources import GameContext, HttpSignalSource, ScanContext, StaticSignalSource
from engine.store import InMemoryStore


def context(nfl_features):
    return ScanContext(games=[
        GameContext("nfl-1", "NFL", features=nfl_features),
        GameContext("nfl-2", "NFL"),
    ])


class FailingStore(InMemoryStore):
    """Store whose line reads fail for one game."""

    def __init__(self, base: InMemoryStore, broken_game: str):
        super().__init__()
        self.__dict__.update(base.__dict__)
        self.broken_game = broken_game

    def fetch_lines(self, game_id, bet_type):
        if game_id == self.broken_game:
            raise DataSourceUnavailable(f"lines for {game_id} unavailable")
        return super().fetch_lines(game_id, bet_type)


class BlockingStore(InMemoryStore):
    """Store whose line reads for one game block until released."""

    def __init__(self, base: InMemoryStore, slow_game: str):
        super().__init__()
        self.__dict__.update(base.__dict__)
        self.slow_game = slow_game
        self.release = threading.Event()

    def fetch_lines(self, game_id, bet_type):
        if game_id == self.slow_game:
            self.release.wait(timeout=5)
        return super().fetch_lines(game_id, bet_type)


class TestScan:
    """Test full scans."""

    @pytest.mark.asyncio
    async def test_scan_finds_every_signal_kind(self, seeded_store, nfl_features):
        report = await EdgeEngine(seeded_store).scan(context(nfl_features))
        causes = {s.cause.split(":")[0] for s in report.signals}
        assert causes == {"rlm", "split", "steam", "trend"}
        assert report.units == 7
        assert not report.partial
        confidences = [s.confidence for s in report.signals]
        assert confidences == sorted(confidences, reverse=True)

    @pytest.mark.asyncio
    async def test_trend_signal_backs_road_team(self, seeded_store, nfl_features):
        report = await EdgeEngine(seeded_store).scan(context(nfl_features))
        trend = next(s for s in report.signals if s.cause.startswith("trend"))
        assert trend.side == "away"
        assert trend.expected_value == 7.4

    @pytest.mark.asyncio
    async def test_filter_applied(self, seeded_store, nfl_features):
        report = await EdgeEngine(seeded_store).scan(
            context(nfl_features), SignalFilter(type=EdgeType.VOLUME),
        )
        assert {s.type for s in report.signals} == {EdgeType.VOLUME}

    @pytest.mark.asyncio
    async def test_failed_game_isolated(self, seeded_store, nfl_features):
        healthy = await EdgeEngine(seeded_store).scan(context(nfl_features))
        store = FailingStore(seeded_store, broken_game="nfl-2")
        report = await EdgeEngine(store).scan(context(nfl_features))
        assert [s.id for s in report.signals] == [s.id for s in healthy.signals]
        assert sorted(f.key for f in report.failures) == [
            "lines:nfl-2:moneyline", "lines:nfl-2:spread", "lines:nfl-2:total",
        ]
        assert report.partial

    @pytest.mark.asyncio
    async def test_store_timeout_reported(self, seeded_store, nfl_features):
        store = BlockingStore(seeded_store, slow_game="nfl-2")
        engine = EdgeEngine(store, EngineConfig(fetch_timeout_seconds=0.2))
        try:
            report = await engine.scan(context(nfl_features))
        finally:
            store.release.set()
        assert {f.kind for f in report.failures} == {"DataSourceUnavailable"}
        assert len(report.failures) == 3
        assert len(report.signals) == 4

    @pytest.mark.asyncio
    async def test_cancelled_scan_keeps_finished_units(self, seeded_store, nfl_features):
        store = BlockingStore(seeded_store, slow_game="nfl-2")
        engine = EdgeEngine(store, EngineConfig(fetch_timeout_seconds=30))
        outcome = BatchOutcome()
        task = asyncio.create_task(engine.scan(context(nfl_features), outcome=outcome))
        try:
            for _ in range(100):
                await asyncio.sleep(0.01)
                if len(outcome.results) == 4:
                    break
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            store.release.set()
        assert "lines:nfl-1:spread" in outcome.results
        assert sorted(outcome.cancelled) == [
            "lines:nfl-2:moneyline", "lines:nfl-2:spread", "lines:nfl-2:total",
        ]

    @pytest.mark.asyncio
    async def test_as_of_ignores_later_market(self, seeded_store, nfl_features, kickoff):
        early = ScanContext(games=context(nfl_features).games, as_of=kickoff - timedelta(hours=5))
        report = await EdgeEngine(seeded_store).scan(early)
        assert {s.cause.split(":")[0] for s in report.signals} == {"trend"}

    @pytest.mark.asyncio
    async def test_trend_stamped_with_as_of(self, seeded_store, nfl_features, kickoff):
        as_of = kickoff - timedelta(hours=5)
        report = await EdgeEngine(seeded_store).scan(ScanContext(games=context(nfl_features).games, as_of=as_of))
        assert [s.detected_at for s in report.signals] == [as_of]

    @pytest.mark.asyncio
    async def test_trend_stamped_with_scan_time(self, seeded_store, nfl_features, road_dog_rule):
        started = datetime.utcnow()
        report = await EdgeEngine(seeded_store).scan(context(nfl_features))
        trend = next(s for s in report.signals if s.cause.startswith("trend"))
        assert trend.detected_at >= started > road_dog_rule.last_updated


class TestExtraSources:
    """Test producers beyond the built-in ones."""

    def _news(self, game_id="nfl-1", confidence=0.97):
        return EdgeSignal(
            id=f"news:{game_id}:injury", type="news", game_id=game_id,
            description="QB ruled out", confidence=confidence, expected_value=4.0,
            detected_at=datetime(2025, 11, 2, 11, 0), cause="injury:qb",
        )

    @pytest.mark.asyncio
    async def test_static_source_merged_and_ranked(self, seeded_store, nfl_features):
        news = StaticSignalSource("news", [self._news(), self._news(game_id="other-game")])
        report = await EdgeEngine(seeded_store, extra_sources=[news]).scan(context(nfl_features))
        assert report.signals[0].type == EdgeType.NEWS
        assert all(s.game_id != "other-game" for s in report.signals)

    @pytest.mark.asyncio
    async def test_http_source(self, seeded_store, nfl_features):
        payload = [self._news().to_dict()]

        def handler(request):
            assert request.url.params.get_list("game_id") == ["nfl-1", "nfl-2"]
            return httpx.Response(200, json=payload)

        feed = HttpSignalSource("feed", "http://signals.test/edges", transport=httpx.MockTransport(handler))
        report = await EdgeEngine(seeded_store, extra_sources=[feed]).scan(context(nfl_features))
        assert any(s.type == EdgeType.NEWS for s in report.signals)

    @pytest.mark.asyncio
    async def test_http_source_down_is_unit_failure(self, seeded_store, nfl_features):
        def handler(request):
            return httpx.Response(503)

        feed = HttpSignalSource(
            "feed", "http://signals.test/edges", attempts=2, backoff=0.01,
            transport=httpx.MockTransport(handler),
        )
        report = await EdgeEngine(seeded_store, extra_sources=[feed]).scan(context(nfl_features))
        assert [f.key for f in report.failures] == ["feed:feed"]
        assert len(report.signals) == 4


class TestGradePicks:
    """Test concurrent grading."""

    @pytest.mark.asyncio
    async def test_grades_final_and_reports_pending(self, seeded_store):
        picks = seeded_store.fetch_pending_picks()
        report = await EdgeEngine(seeded_store).grade_picks(picks)
        assert report.outcomes["p-1"].result == GradeResult.LOSS
        assert report.pending == ["p-2"]
        assert report.failures == []
