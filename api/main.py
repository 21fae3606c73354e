"""
SHARPLINE - FastAPI Application

Request surface for the edge engine: scan games for ranked edge signals and
grade pending picks.
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from loguru import logger
import asyncio
import time
from collections import defaultdict

from analysis.confidence import ConfidenceScorer
from config import get_settings, get_season_bucket, EngineConfig
from engine.aggregator import SignalFilter
from engine.edge_engine import EdgeEngine
from engine.errors import DataSourceUnavailable
from engine.grader import summarize_record
from engine.models import BetType, GameFeatures
from engine.sources import GameContext, HttpSignalSource, ScanContext

# Initialize settings
settings = get_settings()

# ── API Key Auth ──────────────────────────────────────────────────────
API_KEY = settings.API_KEY  # Empty = open

# ── Rate Limiting ─────────────────────────────────────────────────────
RATE_LIMIT_WINDOW = 60   # seconds
RATE_LIMIT_MAX = settings.RATE_LIMIT_PER_MINUTE
_rate_store: dict = defaultdict(list)  # ip -> [timestamps]

scorer = ConfidenceScorer()

# Create FastAPI app
app = FastAPI(
    title="SHARPLINE API",
    description="Market-signal detection and pick grading",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-API-Key"],
)


# ── Dependencies ──────────────────────────────────────────────────────

def get_engine_config() -> EngineConfig:
    return EngineConfig.from_settings(settings)


def get_store():
    from database.store import SqlHistoricalStore
    return SqlHistoricalStore()


def get_sink():
    from database.store import SqlGradeSink
    return SqlGradeSink()


def get_extra_sources() -> List[HttpSignalSource]:
    """External feeds configured as "name=url" entries"""
    sources = []
    for entry in settings.EXTERNAL_SIGNAL_FEEDS:
        name, _, url = entry.partition("=")
        if not url:
            logger.warning(f"Ignoring malformed signal feed entry: {entry!r}")
            continue
        sources.append(HttpSignalSource(
            name.strip(), url.strip(),
            timeout=settings.FETCH_TIMEOUT_SECONDS,
            attempts=settings.EXTERNAL_FETCH_ATTEMPTS,
        ))
    return sources


# ── Request models ────────────────────────────────────────────────────

class GameRequest(BaseModel):
    game_id: str
    sport: str
    bet_types: Optional[List[BetType]] = None
    features: Optional[Dict[str, Any]] = None  # subject-team view, see GameFeatures
    game_time: Optional[datetime] = None  # fills features.season_bucket when absent


class ScanRequest(BaseModel):
    games: List[GameRequest] = Field(min_length=1)
    as_of: Optional[datetime] = None
    type: Optional[str] = None
    min_confidence: Optional[float] = Field(default=None, ge=0)
    high_confidence_only: bool = False
    limit: Optional[int] = Field(default=None, ge=0)


class GradeRequest(BaseModel):
    pick_ids: Optional[List[str]] = None  # None = every pending pick


# ── Security Middleware ───────────────────────────────────────────────

@app.middleware("http")
async def security_middleware(request: Request, call_next):
    """Rate limiting + API key enforcement on write endpoints."""
    client_ip = request.client.host if request.client else "unknown"

    # 1. Rate limiting
    now = time.time()
    _rate_store[client_ip] = [
        t for t in _rate_store[client_ip] if t > now - RATE_LIMIT_WINDOW
    ]
    if len(_rate_store[client_ip]) >= RATE_LIMIT_MAX:
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Try again later."},
        )
    _rate_store[client_ip].append(now)

    # 2. API key enforcement on mutation endpoints
    if request.method == "POST" and API_KEY:
        api_key = request.headers.get("X-API-Key", "")
        if api_key != API_KEY:
            return JSONResponse(
                status_code=403,
                content={"detail": "Invalid or missing API key."},
            )

    # 3. Security headers
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    logger.info("Starting SHARPLINE API...")

    from database import init_db
    try:
        init_db()
        logger.info("✓ Database initialized")
    except Exception as e:
        logger.error(f"✗ Database initialization failed: {e}")

    if settings.RUN_SCHEDULER:
        from scheduler.jobs import start_scheduler
        try:
            start_scheduler()
            logger.info(f"✓ Grading job scheduled every {settings.GRADING_INTERVAL_MINUTES}m")
        except Exception as e:
            logger.error(f"✗ Scheduler start failed: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    if settings.RUN_SCHEDULER:
        from scheduler.jobs import stop_scheduler
        stop_scheduler()
    logger.info("Shutting down SHARPLINE API...")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "SHARPLINE API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


def _game_context(game: GameRequest) -> GameContext:
    features = None
    if game.features is not None:
        values = {**game.features, "game_id": game.game_id, "sport": game.sport.upper()}
        if game.game_time and values.get("season_bucket") is None:
            values["season_bucket"] = get_season_bucket(game.sport, game.game_time.date())
        features = GameFeatures(**values)
    if game.bet_types:
        return GameContext(game.game_id, game.sport, tuple(game.bet_types), features)
    return GameContext(game.game_id, game.sport, features=features)


@app.post("/edges/scan")
async def scan_edges(
    body: ScanRequest,
    store=Depends(get_store),
    config: EngineConfig = Depends(get_engine_config),
    extra_sources: List[HttpSignalSource] = Depends(get_extra_sources),
):
    """
    Scan games for edge signals

    Confidence above 1 is read as a percentage. Units that failed (a game the
    store could not serve, a feed that was down) are listed in `failures`;
    the rest of the feed is still returned.
    """
    try:
        signal_filter = SignalFilter.from_request(
            type=body.type,
            min_confidence=body.min_confidence,
            high_confidence_only=body.high_confidence_only,
            limit=body.limit,
            default_limit=config.default_signal_limit,
        )
        context = ScanContext(games=[_game_context(g) for g in body.games], as_of=body.as_of)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    engine = EdgeEngine(store, config, extra_sources=extra_sources)
    report = await engine.scan(context, signal_filter)
    if report.failures:
        logger.warning(f"Scan returned partial results: {[f.key for f in report.failures]}")

    payload = report.to_dict()
    for signal in payload["signals"]:
        signal["tier"] = scorer.tier(signal["confidence"])
    payload["count"] = len(payload["signals"])
    return payload


@app.post("/picks/grade")
async def grade_picks(
    body: Optional[GradeRequest] = None,
    store=Depends(get_store),
    sink=Depends(get_sink),
    config: EngineConfig = Depends(get_engine_config),
):
    """Grade pending picks whose games are final and record the outcomes"""
    from scheduler.jobs import run_grading

    try:
        return await run_grading(store, sink, config, body.pick_ids if body else None)
    except DataSourceUnavailable as e:
        logger.error(f"Grading failed: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/picks/record")
async def get_record(store=Depends(get_store)):
    """Win/loss record, units and ROI over every graded pick"""
    try:
        graded = await asyncio.to_thread(store.fetch_graded_picks)
    except DataSourceUnavailable as e:
        logger.error(f"Error loading graded picks: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return summarize_record(graded).to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD,
    )
