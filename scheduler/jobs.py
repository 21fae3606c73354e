"""
Background job scheduler

Periodically grades pending picks whose games have gone final
"""

import asyncio
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from typing import Any, Dict, Iterable, Optional

from config import get_settings, EngineConfig
from engine.edge_engine import EdgeEngine
from engine.errors import DataSourceUnavailable, PickAlreadyGraded
from engine.store import GradeSink


settings = get_settings()
scheduler = BackgroundScheduler()


def default_store_and_sink():
    """Database-backed store and sink"""
    from database.store import SqlGradeSink, SqlHistoricalStore
    return SqlHistoricalStore(), SqlGradeSink()


async def run_grading(
    store,
    sink: GradeSink,
    config: Optional[EngineConfig] = None,
    pick_ids: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """
    Grade pending picks and record every outcome through `sink`.

    Picks on games that are not final stay pending for the next run. A pick
    somebody else graded in the meantime is reported as skipped.

    Args:
        store: Historical store that also provides fetch_pending_picks()
        sink: Where outcomes are written
        config: Engine configuration
        pick_ids: Restrict the run to these picks

    Returns:
        Graded outcomes plus the ids left pending, skipped or failed
    """
    picks = await asyncio.to_thread(store.fetch_pending_picks)
    if pick_ids is not None:
        wanted = set(pick_ids)
        picks = [p for p in picks if p.id in wanted]

    summary: Dict[str, Any] = {"graded": [], "pending": [], "skipped": [], "failed": []}
    if not picks:
        logger.info("No pending picks to grade")
        return summary

    engine = EdgeEngine(store, config or EngineConfig.from_settings(settings))
    report = await engine.grade_picks(picks)
    summary["pending"] = list(report.pending)
    for failure in report.failures:
        logger.warning(f"Could not grade pick {failure.key}: {failure.message}")
        summary["failed"].append(failure.key)

    by_id = {pick.id: pick for pick in picks}
    for pick_id, outcome in report.outcomes.items():
        try:
            await asyncio.to_thread(sink.record, by_id[pick_id], outcome)
            summary["graded"].append(outcome.to_dict())
        except PickAlreadyGraded:
            logger.info(f"Pick {pick_id} was already graded, skipping")
            summary["skipped"].append(pick_id)
        except DataSourceUnavailable as e:
            logger.error(f"Failed to record grade for pick {pick_id}: {e}")
            summary["failed"].append(pick_id)

    logger.info(
        f"Grading run: {len(summary['graded'])} graded, {len(summary['pending'])} pending, "
        f"{len(summary['skipped'])} skipped, {len(summary['failed'])} failed"
    )
    return summary


def grade_pending_picks(store=None, sink: Optional[GradeSink] = None, config: Optional[EngineConfig] = None) -> Dict[str, Any]:
    """Scheduled entry point: one grading run on a fresh event loop"""
    if store is None or sink is None:
        default_store, default_sink = default_store_and_sink()
        store = store or default_store
        sink = sink or default_sink

    try:
        return asyncio.run(run_grading(store, sink, config))
    except DataSourceUnavailable as e:
        logger.error(f"Grading run aborted, could not load pending picks: {e}")
        return {"graded": [], "pending": [], "skipped": [], "failed": []}


def start_scheduler(store=None, sink: Optional[GradeSink] = None):
    """Start the background scheduler"""

    scheduler.add_job(
        grade_pending_picks,
        trigger=IntervalTrigger(minutes=settings.GRADING_INTERVAL_MINUTES),
        kwargs={"store": store, "sink": sink},
        id="grade_pending_picks",
        name="Grade Pending Picks",
        replace_existing=True
    )

    scheduler.start()
    logger.info("✓ Scheduler started")
    logger.info(f"Active jobs: {len(scheduler.get_jobs())}")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
    logger.info("Scheduler stopped")


if __name__ == "__main__":
    import time

    start_scheduler()

    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        stop_scheduler()
