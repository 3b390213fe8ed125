"""
Ledger & Funding Entities

Non-trade cash flows replayed when approximating historical equity.
Amounts are parsed from the exchange's string encoding exactly once, here.
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional


class LedgerEntry(BaseModel):
    """
    A single deposit/withdrawal/transfer event.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "time_ms": 1705000000000,
                "amount": 10000.0,
                "kind": "deposit",
                "hash": "0xabc123..."
            }
        }
    )

    time_ms: int
    amount: float  # Positive = inflow, Negative = outflow
    kind: str = "deposit"
    hash: Optional[str] = None


class FundingEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    time_ms: int
    amount: float
    coin: Optional[str] = None


class DepositsAggregateResponse(BaseModel):
    """
    Aggregated deposit data for a user.
    """
    total_deposits: float
    total_withdrawals: float
    net_transfers: float
    deposit_count: int
    withdrawal_count: int
    deposits: list[LedgerEntry]
