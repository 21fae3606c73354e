"""
EDGE ENGINE
===========
Orchestrates a scan: every source splits the work into units, the fan-out
runner executes all of them concurrently, and the aggregator ranks whatever
came back. A failing game or store call shrinks the feed and is reported in
`failures`; it never aborts the scan.

Usage:
    from engine.edge_engine import EdgeEngine
    engine = EdgeEngine(store)
    report = await engine.scan(ScanContext(games=[GameContext("g1", "NFL")]))
    report.signals, report.failures
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from config.engine_config import EngineConfig
from engine.aggregator import SignalFilter, aggregate
from engine.errors import IncompleteResult
from engine.fanout import BatchOutcome, UnitFailure, WorkUnit, fetch_with_timeout, run_units
from engine.grader import grade
from engine.models import EdgeSignal, GradeOutcome, Pick
from engine.sources import LineMovementSource, ScanContext, SignalSource, TrendSource
from engine.store import HistoricalStore

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    signals: List[EdgeSignal]
    failures: List[UnitFailure] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    units: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.failures or self.cancelled)

    def to_dict(self) -> Dict:
        return {
            "signals": [s.to_dict() for s in self.signals],
            "failures": [f.to_dict() for f in self.failures],
            "cancelled": list(self.cancelled),
            "units": self.units,
            "partial": self.partial,
        }


@dataclass
class GradeReport:
    outcomes: Dict[str, GradeOutcome] = field(default_factory=dict)
    pending: List[str] = field(default_factory=list)  # pick ids whose game is not final
    failures: List[UnitFailure] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes.values()],
            "pending": list(self.pending),
            "failures": [f.to_dict() for f in self.failures],
        }


class EdgeEngine:
    """Concurrent scan and grading over a historical store."""

    def __init__(
        self,
        store: HistoricalStore,
        config: Optional[EngineConfig] = None,
        extra_sources: Iterable[SignalSource] = (),
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.sources: List[SignalSource] = [
            LineMovementSource(store, self.config),
            TrendSource(store, self.config),
            *extra_sources,
        ]

    def _units(self, context: ScanContext) -> List[WorkUnit]:
        units = []
        for source in self.sources:
            for unit in source.units(context):
                units.append(WorkUnit(f"{source.name}:{unit.key}", unit.run))
        return units

    async def scan(
        self,
        context: ScanContext,
        filter: Optional[SignalFilter] = None,
        outcome: Optional[BatchOutcome] = None,
    ) -> ScanReport:
        """
        Run every source over the games in `context` and rank the result.

        Args:
            context: Games to scan (and optional as-of time)
            filter: Type / confidence / limit filter for the feed
            outcome: Collector for unit results; pass one in to keep the
                finished units if the scan gets cancelled

        Returns:
            ScanReport with ranked signals and any unit failures
        """
        units = self._units(context)
        outcome = outcome if outcome is not None else BatchOutcome()
        await run_units(units, outcome, self.config.max_concurrent_units)

        signals = aggregate(outcome.results.values(), filter, self.config)
        logger.info(
            "Scanned %d games in %d units: %d signals, %d failures",
            len(context.games), len(units), len(signals), len(outcome.failures),
        )
        return ScanReport(
            signals=signals,
            failures=list(outcome.failures),
            cancelled=list(outcome.cancelled),
            units=len(units),
        )

    def _grader(self, pick: Pick):
        async def run() -> Optional[GradeOutcome]:
            result = await fetch_with_timeout(
                self.store.fetch_result, pick.game_id, timeout=self.config.fetch_timeout_seconds,
            )
            if result is None:
                return None
            try:
                return grade(pick, result)
            except IncompleteResult:
                return None
        return run

    async def grade_picks(self, picks: Sequence[Pick], outcome: Optional[BatchOutcome] = None) -> GradeReport:
        """
        Grade picks concurrently, one unit per pick.

        Picks without a final result are returned in `pending`; store
        failures are returned in `failures`.
        """
        outcome = outcome if outcome is not None else BatchOutcome()
        await run_units([WorkUnit(p.id, self._grader(p)) for p in picks], outcome, self.config.max_concurrent_units)

        report = GradeReport(failures=list(outcome.failures))
        for pick in picks:
            if pick.id not in outcome.results:
                continue
            graded = outcome.results[pick.id]
            if graded is None:
                report.pending.append(pick.id)
            else:
                report.outcomes[pick.id] = graded
        return report
