"""
Backend API: fixtures, squads, selections, selection lock and leaderboards.

Read endpoints degrade to empty results with an ``error`` key when the
provider or store is unavailable; write endpoints fail loudly.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import Body, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Config
from database.supabase_client import SupabaseClient
from leaderboard.fetcher import FixtureStatFetcher
from leaderboard.job import LeaderboardJob
from leaderboard.models import WindowKind
from leaderboard.windows import current_window_key, rank_rows
from leaderboard.writer import LeaderboardWriteError
from selections.lock_gate import SelectionLockGate
from selections.submission import SelectionError, SelectionService
from sportmonks_api.client import SportMonksAPIError, SportMonksClient

logger = logging.getLogger(__name__)

app = FastAPI(title="Cricket Fantasy API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy init so we don't require Supabase or SportMonks in tests
_config: Optional[Config] = None
_db: Optional[SupabaseClient] = None
_fetcher: Optional[FixtureStatFetcher] = None
_lock_gate: Optional[SelectionLockGate] = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_db() -> SupabaseClient:
    global _db
    if _db is None:
        _db = SupabaseClient(get_config())
    return _db


def get_fetcher() -> FixtureStatFetcher:
    global _fetcher
    if _fetcher is None:
        config = get_config()
        _fetcher = FixtureStatFetcher(config, SportMonksClient(config), get_db())
    return _fetcher


def get_lock_gate() -> SelectionLockGate:
    global _lock_gate
    if _lock_gate is None:
        _lock_gate = SelectionLockGate(get_db(), get_config().lock_status_cache_ttl)
    return _lock_gate


def get_selection_service(
    db: SupabaseClient = Depends(get_db),
    lock_gate: SelectionLockGate = Depends(get_lock_gate),
    fetcher: FixtureStatFetcher = Depends(get_fetcher),
) -> SelectionService:
    return SelectionService(db, lock_gate, fetcher)


def get_job(
    config: Config = Depends(get_config),
    db: SupabaseClient = Depends(get_db),
    fetcher: FixtureStatFetcher = Depends(get_fetcher),
) -> LeaderboardJob:
    return LeaderboardJob(config, fetcher, db)


@app.exception_handler(SelectionError)
async def selection_error_handler(request, exc: SelectionError):
    return JSONResponse(status_code=400, content={"message": exc.message})


# Fixtures and squads

@app.get("/api/v1/fixtures")
async def get_fixtures(fetcher: FixtureStatFetcher = Depends(get_fetcher)):
    """Fixtures from yesterday through the day after tomorrow (cached)."""
    try:
        fixtures = await fetcher.get_fixtures()
    except Exception as e:
        logger.error("Fixtures read failed", extra={"error": str(e)})
        return {"fixtures": [], "error": "Failed to fetch fixtures"}
    return {"fixtures": fixtures}


@app.post("/api/v1/fixtures/refresh")
async def refresh_fixtures(fetcher: FixtureStatFetcher = Depends(get_fetcher)):
    try:
        fixtures = await fetcher.refresh_fixtures()
    except SportMonksAPIError as e:
        raise HTTPException(status_code=502, detail=f"Failed to refresh fixtures: {e}")
    return {"refreshed": True, "fixtures_count": len(fixtures)}


@app.get("/api/v1/squad")
async def get_squad(
    team_id: int = Query(..., description="SportMonks team id"),
    season_id: int = Query(..., description="SportMonks season id"),
    fetcher: FixtureStatFetcher = Depends(get_fetcher),
):
    try:
        squad = await fetcher.get_squad(team_id, season_id)
    except Exception as e:
        logger.error("Squad read failed", extra={"team_id": team_id, "season_id": season_id, "error": str(e)})
        return {"squad": None, "error": "Failed to fetch squad"}
    return {"squad": squad}


@app.post("/api/v1/squads/refresh")
async def refresh_squads(fetcher: FixtureStatFetcher = Depends(get_fetcher)):
    return {"refreshed": await fetcher.refresh_squads()}


# Leaderboards

@app.post("/api/v1/leaderboard/run")
async def run_leaderboard(
    debug: bool = Query(True, description="Include per-player breakdown"),
    job: LeaderboardJob = Depends(get_job),
):
    """Run the aggregation now and return what it processed."""
    try:
        summary = await job.run()
    except LeaderboardWriteError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return summary.to_dict(include_debug=debug)


@app.get("/api/v1/leaderboard")
def get_leaderboard(
    window: str = Query("league", description="league | weekly | daily"),
    key: Optional[str] = Query(None, description="Week start or day (YYYY-MM-DD); defaults to current"),
    db: SupabaseClient = Depends(get_db),
):
    """Stored rows for one window, ranked by score at read time."""
    try:
        kind = WindowKind(window)
    except ValueError:
        return {"rows": [], "error": "Invalid window"}
    window_key = key or current_window_key(kind)
    try:
        rows = db.get_leaderboard(
            kind.table,
            kind.score_column,
            key_column=kind.key_column,
            key=window_key if kind.key_column else None,
        )
    except Exception as e:
        logger.error("Leaderboard read failed", extra={"window": window, "error": str(e)})
        return {"window": kind.value, "key": window_key, "rows": [], "error": "Failed to load leaderboard"}
    return {"window": kind.value, "key": window_key, "rows": rank_rows(rows, kind.score_column)}


# Selection lock

@app.get("/api/v1/selection-lock-status")
def selection_lock_status(lock_gate: SelectionLockGate = Depends(get_lock_gate)):
    return {"overrideEnabled": lock_gate.is_override_enabled(fresh=False)}


@app.post("/api/v1/selections/lock")
def lock_selections(lock_gate: SelectionLockGate = Depends(get_lock_gate)):
    try:
        override = lock_gate.force_lock()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "Selections locked.", "overrideEnabled": override.enabled}


@app.post("/api/v1/selections/unlock")
def unlock_selections(lock_gate: SelectionLockGate = Depends(get_lock_gate)):
    try:
        override = lock_gate.force_unlock()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "Selections unlocked.", "overrideEnabled": override.enabled}


# Selections

@app.post("/api/v1/selections")
async def submit_selection(
    payload: Dict[str, Any] = Body(...),
    service: SelectionService = Depends(get_selection_service),
):
    """Store a selection; 400 with a message when it is rejected."""
    return {"data": await service.submit(payload)}


@app.get("/api/v1/selections")
def get_selection(
    user_id: str = Query(...),
    fixture_id: int = Query(...),
    service: SelectionService = Depends(get_selection_service),
):
    try:
        selection = service.get_selection(user_id, fixture_id)
    except Exception as e:
        logger.error("Selection read failed", extra={"user_id": user_id, "fixture_id": fixture_id, "error": str(e)})
        return {"selection": None, "error": "Failed to load selection"}
    return {"selection": selection}


@app.get("/health")
def health():
    return {"status": "ok"}
