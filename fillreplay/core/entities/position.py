from pydantic import BaseModel
from typing import Optional


class PositionState(BaseModel):
    """
    Position snapshot emitted after applying one trade.
    `tainted` is only populated when builder-only mode was requested.
    """
    timeMs: int
    coin: str
    netSize: float
    avgEntryPx: float
    tainted: Optional[bool] = None
