import asyncio
from typing import Dict, List, Optional
import logging

from fillreplay.config import Settings
from fillreplay.core.interfaces.datasource import DataSourceError, IDataSource, IRawStore
from fillreplay.core.interfaces.registry import IUserRegistry, normalize_address
from fillreplay.core.entities.trade import Trade
from fillreplay.core.entities.position import PositionState
from fillreplay.core.entities.pnl import PnlMetrics
from fillreplay.core.entities.ledger import DepositsAggregateResponse
from fillreplay.core.entities.leaderboard import LeaderboardEntry, LeaderboardMetric
from fillreplay.core.use_cases.position_reconstructor import PositionReconstructor
from fillreplay.core.use_cases.taint_detector import RetroactiveTaintPolicy, TaintPolicy, filter_builder_trades
from fillreplay.core.use_cases import pnl_calculator
from fillreplay.core.utils.timerange import Clock, current_time_ms, normalize_time_range

logger = logging.getLogger(__name__)


def _filter_coin(trades: List[Trade], coin: Optional[str]) -> List[Trade]:
    if not coin:
        return trades
    return [t for t in trades if t.coin == coin]


def _builder_only_active(settings: Settings, builder_only: bool) -> bool:
    if builder_only and not settings.builder_filter_enabled:
        logger.warning("builderOnly requested but TARGET_BUILDER is not configured; filtering disabled.")
        return False
    return builder_only


async def _gather_or_cancel(*aws):
    """
    Like asyncio.gather, but if any awaitable fails the others are cancelled
    and awaited before the error propagates.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        # Retrieve sibling outcomes so none are left unobserved
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


# --- Business Logic Services ---

class TradeService:
    def __init__(self, datasource: IDataSource, settings: Settings, clock: Clock = current_time_ms):
        self.db = datasource
        self.settings = settings
        self.clock = clock

    async def get_trades(
        self,
        user: str,
        coin: Optional[str] = None,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        builder_only: bool = False
    ) -> List[Trade]:
        start_time, end_time = normalize_time_range(from_ms, to_ms, self.clock)
        trades = _filter_coin(await self.db.get_user_fills(user, start_time, end_time), coin)

        if _builder_only_active(self.settings, builder_only):
            trades, _ = filter_builder_trades(trades, self.settings.target_builder, RetroactiveTaintPolicy())

        # Newest first
        return sorted(trades, key=lambda t: t.time_ms, reverse=True)


class PositionService:
    def __init__(
        self,
        datasource: IDataSource,
        settings: Settings,
        clock: Clock = current_time_ms,
        taint_policy: Optional[TaintPolicy] = None
    ):
        self.db = datasource
        self.settings = settings
        self.clock = clock
        # None -> reconstructor default (forward-only)
        self.taint_policy = taint_policy

    async def get_position_history(
        self,
        user: str,
        coin: Optional[str] = None,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        builder_only: bool = False
    ) -> List[PositionState]:
        # Position state is path-dependent: always replay from the first fill,
        # only the output is bounded by from_ms.
        _, end_time = normalize_time_range(None, to_ms, self.clock)
        trades = _filter_coin(await self.db.get_user_fills(user, None, end_time), coin)

        builder_only = _builder_only_active(self.settings, builder_only)
        return PositionReconstructor.reconstruct(
            trades,
            builder_only=builder_only,
            target_builder=self.settings.target_builder,
            from_ms=from_ms,
            to_ms=to_ms,
            taint_policy=self.taint_policy
        )


class PnlService:
    """
    Realized PnL and return metrics for a user over a time window.

    Return % is normalized by an approximation of the account's equity at the
    start of the window, replayed from public history (transfers, realized PnL,
    fees, funding). There are no margin snapshots to read it from, so the
    replay is O(history) per request.
    """

    def __init__(self, datasource: IDataSource, settings: Settings, clock: Clock = current_time_ms):
        self.db = datasource
        self.settings = settings
        self.clock = clock

    async def get_pnl(
        self,
        user: str,
        coin: Optional[str] = None,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        builder_only: bool = False,
        max_start_capital: Optional[float] = None
    ) -> PnlMetrics:
        start_time, end_time = normalize_time_range(from_ms, to_ms, self.clock)

        # Primary fetch: failures propagate to the caller
        trades = _filter_coin(await self.db.get_user_fills(user, start_time, end_time), coin)

        tainted = False
        if _builder_only_active(self.settings, builder_only):
            trades, tainted = filter_builder_trades(trades, self.settings.target_builder, RetroactiveTaintPolicy())

        totals = pnl_calculator.aggregate_trades(trades)

        if start_time > 0:
            effective_capital = await self._historical_capital(user, start_time, max_start_capital)
        elif max_start_capital is not None:
            effective_capital = max_start_capital
        else:
            effective_capital = pnl_calculator.DEFAULT_CAPITAL

        effective_capital = pnl_calculator.clamp_capital(effective_capital)

        return PnlMetrics(
            realizedPnl=totals.realized_pnl,
            returnPct=pnl_calculator.return_pct(totals.realized_pnl, effective_capital),
            feesPaid=totals.fees_paid,
            tradeCount=totals.trade_count,
            volume=totals.volume,
            tainted=tainted,
            effectiveCapital=effective_capital
        )

    async def _historical_capital(self, user: str, start_time: int, max_start_capital: Optional[float]) -> float:
        try:
            # All three must resolve before anything is summed
            past_trades, past_funding, past_ledger = await _gather_or_cancel(
                self.db.get_user_fills(user, 0, start_time),
                self.db.get_user_funding(user, 0, start_time),
                self.db.get_user_ledger_updates(user, 0, start_time),
            )
        except DataSourceError as e:
            logger.warning(f"Historical equity unavailable for {user}, defaulting capital to 1: {e}")
            return pnl_calculator.DEFAULT_CAPITAL

        equity = pnl_calculator.reconstruct_equity(past_trades, past_funding, past_ledger)
        return pnl_calculator.cap_capital(equity, max_start_capital)


class LedgerService:
    def __init__(self, datasource: IDataSource, clock: Clock = current_time_ms):
        self.db = datasource
        self.clock = clock

    async def get_deposits(
        self,
        user: str,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None
    ) -> DepositsAggregateResponse:
        start_time, end_time = normalize_time_range(from_ms, to_ms, self.clock)
        updates = await self.db.get_user_ledger_updates(user, start_time, end_time)

        deposits = sorted((u for u in updates if u.amount > 0), key=lambda u: u.time_ms)
        withdrawals = [u for u in updates if u.amount < 0]

        total_deposits = sum(d.amount for d in deposits)
        total_withdrawals = abs(sum(w.amount for w in withdrawals))

        return DepositsAggregateResponse(
            total_deposits=total_deposits,
            total_withdrawals=total_withdrawals,
            net_transfers=total_deposits - total_withdrawals,
            deposit_count=len(deposits),
            withdrawal_count=len(withdrawals),
            deposits=deposits
        )


class LeaderboardService:
    def __init__(self, pnl_service: PnlService, registry: IUserRegistry):
        self.pnl_service = pnl_service
        self.registry = registry

    async def add_user(self, user: str) -> bool:
        return await self.registry.add_user(normalize_address(user))

    async def _entry_for(
        self,
        user: str,
        metric: LeaderboardMetric,
        coin: Optional[str],
        from_ms: Optional[int],
        to_ms: Optional[int],
        builder_only: bool,
        max_start_capital: Optional[float]
    ) -> Optional[LeaderboardEntry]:
        try:
            pnl = await self.pnl_service.get_pnl(
                user, coin, from_ms, to_ms, builder_only, max_start_capital
            )
        except Exception as e:
            logger.warning(f"Failed to compute PnL for {user}, skipping: {e}")
            return None

        if metric == LeaderboardMetric.RETURN_PCT:
            value = pnl.returnPct
        elif metric == LeaderboardMetric.VOLUME:
            value = pnl.volume
        else:
            value = pnl.realizedPnl

        return LeaderboardEntry(
            rank=0,  # Placeholder
            user=user,
            metricValue=value,
            tradeCount=pnl.tradeCount,
            tainted=pnl.tainted
        )

    async def get_leaderboard(
        self,
        metric: LeaderboardMetric = LeaderboardMetric.PNL,
        coin: Optional[str] = None,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        builder_only: bool = False,
        max_start_capital: Optional[float] = None
    ) -> List[LeaderboardEntry]:
        users = await self.registry.list_users()

        # Each user's PnL is independent; compute them concurrently
        tasks = [
            self._entry_for(user, metric, coin, from_ms, to_ms, builder_only, max_start_capital)
            for user in users
        ]
        results = await asyncio.gather(*tasks)

        # Tainted users stay listed: their violated lifecycles were already
        # filtered out of the PnL, and the entry carries the flag
        leaderboard = [entry for entry in results if entry is not None]

        leaderboard.sort(key=lambda x: x.metricValue, reverse=True)

        for i, entry in enumerate(leaderboard):
            entry.rank = i + 1

        return leaderboard


class SyncService:
    """
    Mirrors a user's raw fills, funding and ledger updates from the live
    source into a local store. Only raw exchange records are written.
    """

    def __init__(self, source: IDataSource, store: IRawStore):
        self.source = source
        self.store = store

    async def sync_user(self, user: str) -> Dict[str, int]:
        trades, funding, ledger = await _gather_or_cancel(
            self.source.get_user_fills(user),
            self.source.get_user_funding(user, 0),
            self.source.get_user_ledger_updates(user, 0),
        )
        stats = {
            "fills": await self.store.store_fills(user, trades),
            "funding": await self.store.store_funding(user, funding),
            "ledger": await self.store.store_ledger_updates(user, ledger),
        }
        logger.info(f"Synced {user}: {stats}")
        return stats
