"""
HTTP surface for the engine.

Read routes degrade to cached data with ``quotaExceeded: true`` while the
quota breaker is open. Admin routes require ``Authorization: Bearer
<ADMIN_SECRET>``.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from chessclub.config import Config
from chessclub.data_models.games import GameFilter, GameType, parse_optional_date
from chessclub.utils.exceptions import ClubError, QuotaExceededError
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)


def get_engine(request: Request):
    return request.app.state.engine


def require_admin(authorization: Optional[str] = Header(None)):
    secret = Config.ADMIN_SECRET
    if not secret:
        raise HTTPException(status_code=403, detail="Admin access is not configured")
    if authorization != f"Bearer {secret}":
        raise HTTPException(status_code=403, detail="Admin access required")
    return "admin"


def _guarded(read, **extra) -> Dict[str, Any]:
    payload = {'data': read.data, 'fromCache': read.from_cache, 'quotaExceeded': read.quota_exceeded}
    payload.update(extra)
    return payload


router = APIRouter()


@router.get("/standings")
async def get_standings(
    date: Optional[str] = None,
    type: Optional[str] = Query("ladder"),
    engine=Depends(get_engine),
):
    day = parse_optional_date(date, 'date')
    read = await engine.ladder.ladder_for_date(day, GameType.parse_optional(type))
    return {**read.data, 'fromCache': read.from_cache, 'quotaExceeded': read.quota_exceeded}


@router.get("/rankings")
async def get_rankings(engine=Depends(get_engine)):
    read = await engine.ladder.rankings()
    return _guarded(read)


@router.get("/games")
async def list_games(
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    gameType: Optional[str] = None,
    isVerified: Optional[bool] = None,
    playerId: Optional[str] = None,
    engine=Depends(get_engine),
):
    game_filter = GameFilter(
        date_from=parse_optional_date(dateFrom, 'dateFrom'),
        date_to=parse_optional_date(dateTo, 'dateTo'),
        game_type=GameType.parse_optional(gameType),
        is_verified=isVerified,
        player_id=playerId or None,
    )
    read = await engine.games.list_games(game_filter)
    return _guarded(read)


@router.post("/games", status_code=201)
async def record_game(payload: Dict[str, Any] = Body(...), engine=Depends(get_engine)):
    record = await engine.games.record_game(payload)
    return record.to_payload()


@router.post("/recalc-ratings")
async def recalc_ratings(admin=Depends(require_admin), engine=Depends(get_engine)):
    report = await engine.recalc_ratings(admin_id=admin)
    return report.to_payload()


@router.post("/cache/invalidate")
async def invalidate_cache(
    payload: Dict[str, Any] = Body(...),
    admin=Depends(require_admin),
    engine=Depends(get_engine),
):
    keys = await engine.invalidate_cache(tag=payload.get('tag'), key=payload.get('key'))
    return {'revalidated': keys}


@router.post("/cache/warm")
async def warm_cache(admin=Depends(require_admin), engine=Depends(get_engine)):
    report = await engine.warm_cache()
    return report.to_payload()


@router.get("/quota-status")
async def quota_status(engine=Depends(get_engine)):
    return engine.quota_status()


@router.post("/quota-status")
async def reset_quota(
    payload: Dict[str, Any] = Body(...),
    admin=Depends(require_admin),
    engine=Depends(get_engine),
):
    if payload.get('action') != 'reset':
        raise HTTPException(status_code=400, detail="Invalid action. Use action=reset")
    return await engine.reset_quota(admin_id=admin)


@router.get("/merge-candidates")
async def merge_candidates(admin=Depends(require_admin), engine=Depends(get_engine)):
    candidates = await engine.consistency.list_merge_candidates()
    return {'players': [c.to_payload() for c in candidates]}


@router.get("/merge-preview")
async def merge_preview(
    sourceId: str,
    targetId: str,
    admin=Depends(require_admin),
    engine=Depends(get_engine),
):
    preview = await engine.consistency.merge_preview(sourceId, targetId)
    return preview.to_payload()


@router.post("/merge")
async def merge_players(
    payload: Dict[str, Any] = Body(...),
    admin=Depends(require_admin),
    engine=Depends(get_engine),
):
    report = await engine.consistency.merge_players(
        payload.get('sourceId'), payload.get('targetId'), admin_id=admin
    )
    return report.to_payload()


@router.get("/reconcile-preview")
async def reconcile_preview(admin=Depends(require_admin), engine=Depends(get_engine)):
    preview = await engine.consistency.preview_reconciliation()
    return preview.to_payload()


@router.post("/reconcile")
async def reconcile(
    payload: Dict[str, Any] = Body(...),
    admin=Depends(require_admin),
    engine=Depends(get_engine),
):
    game_ids: Optional[List[str]] = payload.get('gameIds') or None
    report = await engine.consistency.apply_reconciliation(
        payload.get('planId'), game_ids=game_ids, admin_id=admin
    )
    return report.to_payload()


async def club_error_handler(request: Request, exc: ClubError):
    if isinstance(exc, QuotaExceededError):
        logger.warning(f"{request.url.path}: {exc}")
    elif exc.status_code >= 500:
        logger.error(f"{request.url.path}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={'error': str(exc), 'message': exc.user_message},
    )


def create_app(engine=None) -> FastAPI:
    """
    Build the FastAPI app.

    With no engine one is created from Config on startup and closed on shutdown.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.engine is None
        if owned:
            from chessclub.engine import ClubEngine
            app.state.engine = await ClubEngine.create()
        yield
        if owned:
            await app.state.engine.close()

    app = FastAPI(title="Chess Club Engine", lifespan=lifespan)
    app.state.engine = engine
    app.add_exception_handler(ClubError, club_error_handler)
    app.include_router(router)
    return app
