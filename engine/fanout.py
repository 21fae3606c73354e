"""
FAN-OUT RUNNER
==============
Runs independent units of work (one game, one market, one pick) concurrently
and joins them at a single barrier.

  - a failing unit is recorded as a UnitFailure; its siblings keep running
  - each unit's value lands in the shared BatchOutcome the moment it finishes
  - cancelling the batch cancels the units still running, lists them in
    `outcome.cancelled` and re-raises; finished results stay in the outcome

Usage:
    outcome = BatchOutcome()
    await run_units([WorkUnit("g1:spread", scan_g1)], outcome, max_concurrency=8)
    outcome.results, outcome.failures
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from engine.errors import DataSourceUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class WorkUnit:
    key: str
    run: Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class UnitFailure:
    key: str
    kind: str  # exception class name
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "kind": self.kind, "message": self.message}


@dataclass
class BatchOutcome:
    results: Dict[str, Any] = field(default_factory=dict)
    failures: List[UnitFailure] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled


async def run_units(
    units: Sequence[WorkUnit],
    outcome: Optional[BatchOutcome] = None,
    max_concurrency: Optional[int] = None,
) -> BatchOutcome:
    """
    Run every unit concurrently and wait for all of them.

    Args:
        units: Work to run, keys must be unique
        outcome: Collector to fill (pass one in to keep partial results
            when the batch is cancelled)
        max_concurrency: Upper bound on units running at once (None = all)

    Returns:
        The filled BatchOutcome

    Raises:
        asyncio.CancelledError: the batch was cancelled; `outcome` still
            holds every unit that finished first
    """
    outcome = outcome if outcome is not None else BatchOutcome()
    keys = [unit.key for unit in units]
    if len(set(keys)) != len(keys):
        raise ValueError("Work unit keys must be unique")

    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
    finished = set()

    async def _run(unit: WorkUnit) -> None:
        try:
            if semaphore is not None:
                async with semaphore:
                    value = await unit.run()
            else:
                value = await unit.run()
        except Exception as e:
            logger.warning("Unit %s failed: %s: %s", unit.key, type(e).__name__, e)
            outcome.failures.append(UnitFailure(unit.key, type(e).__name__, str(e)))
        else:
            outcome.results[unit.key] = value
        finished.add(unit.key)

    try:
        await asyncio.gather(*(_run(unit) for unit in units), return_exceptions=True)
    except asyncio.CancelledError:
        outcome.cancelled.extend(key for key in keys if key not in finished)
        logger.info(
            "Batch cancelled: %d finished, %d cancelled",
            len(finished), len(outcome.cancelled),
        )
        raise

    logger.info(
        "Batch finished: %d units, %d failed",
        len(units), len(outcome.failures),
    )
    return outcome


async def fetch_with_timeout(func: Callable[..., T], *args: Any, timeout: float) -> T:
    """
    Run a blocking store call in a worker thread with a deadline.

    Raises:
        DataSourceUnavailable: the call timed out
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
    except asyncio.TimeoutError as e:
        name = getattr(func, "__name__", "fetch")
        raise DataSourceUnavailable(f"{name} timed out after {timeout}s") from e
