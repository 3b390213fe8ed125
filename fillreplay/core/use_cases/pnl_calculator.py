from typing import List, NamedTuple, Optional
from fillreplay.core.entities.trade import Trade
from fillreplay.core.entities.ledger import FundingEntry, LedgerEntry
from fillreplay.core.utils.math import safe_div

DEFAULT_CAPITAL = 1.0


class TradeTotals(NamedTuple):
    realized_pnl: float
    fees_paid: float
    volume: float
    trade_count: int


def aggregate_trades(trades: List[Trade]) -> TradeTotals:
    return TradeTotals(
        realized_pnl=sum(t.closed_pnl for t in trades),
        fees_paid=sum(t.fee for t in trades),
        volume=sum(t.px * t.sz for t in trades),
        trade_count=len(trades),
    )


def reconstruct_equity(
    past_trades: List[Trade],
    past_funding: List[FundingEntry],
    past_ledger: List[LedgerEntry]
) -> float:
    """
    Approximates account equity from public history:
    net transfers + realized PnL - fees + funding.
    """
    past_pnl = sum(t.closed_pnl for t in past_trades)
    past_fees = sum(t.fee for t in past_trades)
    past_funding_pnl = sum(f.amount for f in past_funding)
    past_deposits = sum(entry.amount for entry in past_ledger)
    return past_deposits + past_pnl - past_fees + past_funding_pnl


def cap_capital(equity: float, max_start_capital: Optional[float]) -> float:
    if max_start_capital is not None:
        return min(equity, max_start_capital)
    return equity


def clamp_capital(capital: float) -> float:
    # Negative or zero equity would flip or blow up the ratio
    if capital <= 0:
        return DEFAULT_CAPITAL
    return capital


def return_pct(realized_pnl: float, effective_capital: float) -> float:
    return safe_div(realized_pnl, effective_capital) * 100
