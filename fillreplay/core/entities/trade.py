from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Optional


class Side(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class Trade(BaseModel):
    """
    Standardised fill used throughout the core logic.
    Compatible with FastAPI serialisation.
    """
    model_config = ConfigDict(frozen=True)

    time_ms: int
    coin: str
    side: Side
    px: float
    sz: float
    fee: float = 0.0
    closed_pnl: float = 0.0
    builder_id: Optional[str] = None
    hash: str = ""
    oid: Optional[int] = None
    tid: Optional[int] = None
