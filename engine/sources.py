"""
SIGNAL SOURCES
==============
Pluggable producers for the edge feed. A source splits a scan into
independent WorkUnits; the engine runs every unit of every source
concurrently, then aggregates.

  LineMovementSource  one unit per (game, bet_type): RLM, steam, money split, arbitrage
  TrendSource         one unit per (game, sport): trend catalog from both teams' views
  StaticSignalSource  signals handed in by the caller (news desk, manual alerts)
  HttpSignalSource    signals published by an external producer over HTTP

Adding a producer means adding a class with `name` and `units()`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from analysis.line_movement import LineMovementDetector, detect_signals
from analysis.trend_matcher import match_both_sides
from config.engine_config import EngineConfig
from engine.errors import DataSourceUnavailable
from engine.fanout import WorkUnit, fetch_with_timeout
from engine.line_history import LineHistory
from engine.models import BetType, EdgeSignal, GameFeatures
from engine.store import HistoricalStore

logger = logging.getLogger(__name__)

ALL_BET_TYPES = (BetType.SPREAD, BetType.TOTAL, BetType.MONEYLINE)


@dataclass(frozen=True)
class GameContext:
    """One game to scan."""
    game_id: str
    sport: str
    bet_types: Tuple[BetType, ...] = ALL_BET_TYPES
    features: Optional[GameFeatures] = None

    def __post_init__(self):
        object.__setattr__(self, "bet_types", tuple(BetType(b) for b in self.bet_types))
        object.__setattr__(self, "sport", self.sport.upper())


@dataclass(frozen=True)
class ScanContext:
    """
    What to scan. `as_of` replays the market as it stood at that moment:
    later snapshots and splits are ignored.
    """
    games: Tuple[GameContext, ...]
    as_of: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "games", tuple(self.games))

    @property
    def game_ids(self) -> List[str]:
        return [game.game_id for game in self.games]


class SignalSource(Protocol):
    name: str

    def units(self, context: ScanContext) -> List[WorkUnit]:
        ...


class LineMovementSource:
    name = "lines"

    def __init__(self, store: HistoricalStore, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()
        self.detector = LineMovementDetector(self.config)

    def units(self, context: ScanContext) -> List[WorkUnit]:
        return [
            WorkUnit(f"{game.game_id}:{bet_type.value}", self._scanner(game.game_id, bet_type, context.as_of))
            for game in context.games
            for bet_type in game.bet_types
        ]

    def _scanner(self, game_id: str, bet_type: BetType, as_of: Optional[datetime]):
        async def run() -> List[EdgeSignal]:
            timeout = self.config.fetch_timeout_seconds
            lines = await fetch_with_timeout(self.store.fetch_lines, game_id, bet_type, timeout=timeout)
            splits = await fetch_with_timeout(self.store.fetch_splits, game_id, bet_type, timeout=timeout)
            if as_of is not None:
                lines = [s for s in lines if s.captured_at <= as_of]
                splits = [s for s in splits if s.observed_at <= as_of]

            signals = [d.to_edge_signal() for d in detect_signals(lines, splits, self.config)]
            if bet_type is BetType.MONEYLINE and lines:
                arb = self.detector.detect_arbitrage(LineHistory(lines))
                if arb is not None:
                    signals.append(arb.to_edge_signal())
            return signals
        return run


class TrendSource:
    """Trend catalog matches; every match in one scan is stamped with the scan time."""
    name = "trends"

    def __init__(self, store: HistoricalStore, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def units(self, context: ScanContext) -> List[WorkUnit]:
        scanned_at = context.as_of or datetime.utcnow()
        return [
            WorkUnit(f"{game.game_id}:{game.sport}", self._matcher(game.features, scanned_at))
            for game in context.games
            if game.features is not None
        ]

    def _matcher(self, features: GameFeatures, as_of: datetime):
        async def run() -> List[EdgeSignal]:
            catalog = await fetch_with_timeout(
                self.store.fetch_trend_catalog, features.sport, timeout=self.config.fetch_timeout_seconds,
            )
            result = match_both_sides(features, catalog, self.config, as_of)
            return result.to_edge_signals()
        return run


class StaticSignalSource:
    """Signals computed elsewhere and handed to the engine as-is."""

    def __init__(self, name: str, signals: Iterable[EdgeSignal]):
        self.name = name
        self.signals = list(signals)

    def units(self, context: ScanContext) -> List[WorkUnit]:
        wanted = set(context.game_ids)

        async def run() -> List[EdgeSignal]:
            return [s for s in self.signals if s.game_id in wanted]

        return [WorkUnit("all", run)]


class HttpSignalSource:
    """
    Reads EdgeSignal JSON published by an external producer.

    GET <url>?game_id=...&game_id=... must return a list of signal objects
    (see EdgeSignal.to_dict). Transport errors and 5xx responses are retried
    with exponential backoff; a producer that stays down becomes a unit
    failure.
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 10.0,
        attempts: int = 3,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.url = url
        self.timeout = timeout
        self.attempts = attempts
        self.backoff = backoff
        self.transport = transport

    def units(self, context: ScanContext) -> List[WorkUnit]:
        game_ids = context.game_ids

        async def run() -> List[EdgeSignal]:
            payload = await self._fetch(game_ids)
            wanted = set(game_ids)
            return [s for s in (EdgeSignal.from_dict(item) for item in payload) if s.game_id in wanted]

        return [WorkUnit("feed", run)]

    async def _fetch(self, game_ids: Sequence[str]) -> list:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.attempts),
                    wait=wait_exponential(multiplier=self.backoff, max=10),
                    retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.get(self.url, params={"game_id": list(game_ids)})
                        if response.status_code >= 500:
                            raise _ServerError(f"{self.url} returned {response.status_code}")
                        response.raise_for_status()
                        return response.json()
        except (httpx.HTTPError, _ServerError) as e:
            logger.warning("Signal feed %s unavailable: %s", self.name, e)
            raise DataSourceUnavailable(f"{self.name}: {e}") from e


class _ServerError(Exception):
    pass
