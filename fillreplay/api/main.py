import logging
from functools import lru_cache
from typing import Dict, List, Optional
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# --- Imports ---
from fillreplay.config import DataSourceKind, Settings, load_settings
from fillreplay.core.interfaces.datasource import DataSourceError, IDataSource
from fillreplay.core.interfaces.registry import IUserRegistry
from fillreplay.core.entities.trade import Trade
from fillreplay.core.entities.position import PositionState
from fillreplay.core.entities.pnl import PnlMetrics
from fillreplay.core.entities.ledger import DepositsAggregateResponse
from fillreplay.core.entities.leaderboard import LeaderboardEntry, LeaderboardMetric
from fillreplay.core.services import (
    LeaderboardService,
    LedgerService,
    PnlService,
    PositionService,
    SyncService,
    TradeService,
)
from fillreplay.infrastructure.gateways.hl_public_api import HLPublicGateway
from fillreplay.infrastructure.gateways.local_mock import LocalMockDataSource
from fillreplay.infrastructure.persistence.postgres_repo import PostgresRepo
from fillreplay.infrastructure.registry.redis_registry import InMemoryUserRegistry, RedisUserRegistry


@lru_cache
def get_settings() -> Settings:
    return load_settings()


# Setup Logging
logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger("fillreplay")

app = FastAPI(
    title="fillreplay API",
    version="1.0.0",
    description="Position reconstruction, PnL and builder-only leaderboards from Hyperliquid fills"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DataSourceError)
async def datasource_error_handler(request: Request, exc: DataSourceError):
    logger.error(f"[API Error] {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Upstream data source unavailable"})


# --- Dependency Injection ---

@lru_cache
def _hl_gateway(use_testnet: bool) -> HLPublicGateway:
    return HLPublicGateway(use_testnet=use_testnet)


@lru_cache
def _postgres_repo(dsn: str) -> PostgresRepo:
    return PostgresRepo(dsn)


def get_datasource(settings: Settings = Depends(get_settings)) -> IDataSource:
    if settings.data_source == DataSourceKind.MOCK:
        return LocalMockDataSource.demo()
    if settings.data_source == DataSourceKind.POSTGRES:
        if not settings.database_url:
            raise HTTPException(status_code=503, detail="DATABASE_URL not configured")
        return _postgres_repo(settings.database_url)
    return _hl_gateway(settings.hl_testnet)


def get_repo(settings: Settings = Depends(get_settings)) -> Optional[PostgresRepo]:
    if not settings.database_url:
        return None
    try:
        return _postgres_repo(settings.database_url)
    except DataSourceError as e:
        logger.error(f"Failed to connect to DB: {e}")
        return None


@lru_cache
def _registry() -> IUserRegistry:
    settings = get_settings()
    if settings.redis_url:
        return RedisUserRegistry(settings.redis_url, seed_users=settings.leaderboard_users)
    return InMemoryUserRegistry(settings.leaderboard_users)


def get_registry() -> IUserRegistry:
    return _registry()


def get_trade_service(
    gateway: IDataSource = Depends(get_datasource),
    settings: Settings = Depends(get_settings)
) -> TradeService:
    return TradeService(gateway, settings)


def get_position_service(
    gateway: IDataSource = Depends(get_datasource),
    settings: Settings = Depends(get_settings)
) -> PositionService:
    return PositionService(gateway, settings)


def get_pnl_service(
    gateway: IDataSource = Depends(get_datasource),
    settings: Settings = Depends(get_settings)
) -> PnlService:
    return PnlService(gateway, settings)


def get_leaderboard_service(
    pnl_service: PnlService = Depends(get_pnl_service),
    registry: IUserRegistry = Depends(get_registry)
) -> LeaderboardService:
    return LeaderboardService(pnl_service, registry)


def get_ledger_service(gateway: IDataSource = Depends(get_datasource)) -> LedgerService:
    return LedgerService(gateway)


# --- Endpoints ---

@app.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "healthy",
        "dataSource": settings.data_source.value,
        "builderFilter": settings.builder_filter_enabled
    }


@app.get("/v1/trades", response_model=List[Trade])
async def get_trades(
    user: str = Query(..., description="User Address"),
    coin: Optional[str] = Query(None, description="Token Symbol"),
    fromMs: Optional[int] = Query(None),
    toMs: Optional[int] = Query(None),
    builderOnly: bool = Query(False),
    service: TradeService = Depends(get_trade_service)
):
    return await service.get_trades(user, coin, fromMs, toMs, builderOnly)


@app.get("/v1/positions/history", response_model=List[PositionState])
async def get_positions_history(
    user: str = Query(...),
    coin: Optional[str] = Query(None),
    fromMs: Optional[int] = Query(None),
    toMs: Optional[int] = Query(None),
    builderOnly: bool = Query(False, description="Flag snapshots touched by non-builder trades"),
    service: PositionService = Depends(get_position_service)
):
    """
    Replays the full fill history and returns one snapshot per trade in [fromMs, toMs].
    """
    return await service.get_position_history(user, coin, fromMs, toMs, builderOnly)


@app.get("/v1/pnl", response_model=PnlMetrics)
async def get_pnl(
    user: str = Query(..., description="User wallet address"),
    coin: Optional[str] = Query(None),
    fromMs: Optional[int] = Query(None),
    toMs: Optional[int] = Query(None),
    builderOnly: bool = Query(False),
    maxStartCapital: Optional[float] = Query(None, description="Cap on starting capital for return % (fair competition mode)"),
    service: PnlService = Depends(get_pnl_service)
):
    return await service.get_pnl(user, coin, fromMs, toMs, builderOnly, maxStartCapital)


@app.get("/v1/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    metric: LeaderboardMetric = Query(..., description="'volume', 'pnl' or 'returnPct'"),
    coin: Optional[str] = Query(None),
    fromMs: Optional[int] = Query(None),
    toMs: Optional[int] = Query(None),
    builderOnly: bool = Query(False, description="Rank on builder-attributed lifecycles only; tainted users are flagged"),
    maxStartCapital: Optional[float] = Query(None),
    service: LeaderboardService = Depends(get_leaderboard_service)
):
    """
    Ranks tracked users by the chosen metric.
    """
    return await service.get_leaderboard(metric, coin, fromMs, toMs, builderOnly, maxStartCapital)


@app.post("/v1/leaderboard/users")
async def add_leaderboard_user(
    user: str = Body(..., embed=True, min_length=1),
    service: LeaderboardService = Depends(get_leaderboard_service)
):
    added = await service.add_user(user)
    return {"success": True, "added": added}


@app.get("/v1/deposits", response_model=DepositsAggregateResponse)
async def get_deposits(
    user: str = Query(..., description="User wallet address"),
    fromMs: Optional[int] = Query(None, description="Start timestamp (ms)"),
    toMs: Optional[int] = Query(None, description="End timestamp (ms)"),
    service: LedgerService = Depends(get_ledger_service)
):
    """
    Deposit/withdrawal history, used to spot capital reloads during a competition.
    """
    return await service.get_deposits(user, fromMs, toMs)


# --- Persistence Endpoint ---

@app.post("/v1/sync")
async def sync_data(
    user: Optional[str] = Query(None, description="Sync a single user; defaults to all tracked users"),
    settings: Settings = Depends(get_settings),
    registry: IUserRegistry = Depends(get_registry),
    repo: Optional[PostgresRepo] = Depends(get_repo)
):
    """
    Pulls raw fills, funding and ledger updates from Hyperliquid into Postgres.
    """
    if not repo:
        raise HTTPException(status_code=503, detail="Database not configured or unavailable")

    sync = SyncService(_hl_gateway(settings.hl_testnet), repo)
    users = [user] if user else await registry.list_users()
    stats: Dict[str, Dict[str, int]] = {}

    for u in users:
        try:
            stats[u] = await sync.sync_user(u)
        except DataSourceError as e:
            logger.error(f"Failed to sync {u}: {e}")

    return {"status": "success", "users_processed": len(stats), "stats": stats}
