from typing import Dict, List, Optional, Sequence

from fillreplay.core.interfaces.datasource import IDataSource
from fillreplay.core.entities.trade import Side, Trade
from fillreplay.core.entities.ledger import FundingEntry, LedgerEntry


def _in_window(time_ms: int, start_time: Optional[int], end_time: Optional[int]) -> bool:
    return (start_time is None or time_ms >= start_time) and (end_time is None or time_ms <= end_time)


class LocalMockDataSource(IDataSource):
    """
    In-memory data source. Windows are inclusive on both ends.

    `errors` maps a method name ("get_user_fills", "get_user_funding",
    "get_user_ledger_updates") to an exception raised on every call.
    """

    def __init__(
        self,
        trades: Sequence[Trade] = (),
        funding: Sequence[FundingEntry] = (),
        ledger: Sequence[LedgerEntry] = (),
        errors: Optional[Dict[str, Exception]] = None
    ):
        self.trades = list(trades)
        self.funding = list(funding)
        self.ledger = list(ledger)
        self.errors = errors or {}
        self.calls: List[tuple] = []

    @classmethod
    def demo(cls) -> "LocalMockDataSource":
        return cls(trades=[
            Trade(time_ms=1000, coin="BTC", side=Side.BUY, px=50000, sz=1, fee=5,
                  closed_pnl=0, builder_id="0xMockBuilder", hash="0x1", oid=1, tid=1),
            Trade(time_ms=2000, coin="BTC", side=Side.SELL, px=51000, sz=1, fee=5,
                  closed_pnl=1000, builder_id="0xOtherBuilder", hash="0x2", oid=2, tid=2),
        ])

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self.errors:
            raise self.errors[method]

    async def get_user_fills(self, user: str, start_time: Optional[int] = None, end_time: Optional[int] = None) -> List[Trade]:
        self._record("get_user_fills", user, start_time, end_time)
        return [t for t in self.trades if _in_window(t.time_ms, start_time, end_time)]

    async def get_user_funding(self, user: str, start_time: int, end_time: Optional[int] = None) -> List[FundingEntry]:
        self._record("get_user_funding", user, start_time, end_time)
        return [f for f in self.funding if _in_window(f.time_ms, start_time, end_time)]

    async def get_user_ledger_updates(self, user: str, start_time: int, end_time: Optional[int] = None) -> List[LedgerEntry]:
        self._record("get_user_ledger_updates", user, start_time, end_time)
        return [entry for entry in self.ledger if _in_window(entry.time_ms, start_time, end_time)]
