from enum import Enum
from pydantic import BaseModel


class LeaderboardMetric(str, Enum):
    PNL = "pnl"
    RETURN_PCT = "returnPct"
    VOLUME = "volume"


class LeaderboardEntry(BaseModel):
    rank: int
    user: str
    metricValue: float
    tradeCount: int
    tainted: bool
