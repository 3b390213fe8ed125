from pydantic import BaseModel


class PnlMetrics(BaseModel):
    realizedPnl: float
    returnPct: float
    feesPaid: float
    tradeCount: int
    volume: float
    tainted: bool = False
    effectiveCapital: float = 1.0
