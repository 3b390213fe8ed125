from abc import ABC, abstractmethod
from typing import List, Optional
from fillreplay.core.entities.trade import Trade
from fillreplay.core.entities.ledger import FundingEntry, LedgerEntry


class DataSourceError(Exception):
    """Raised by a data source when the underlying transport fails."""


class IDataSource(ABC):
    @abstractmethod
    async def get_user_fills(
        self,
        user: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Trade]:
        """
        Fills in [start_time, end_time]. start_time=None means earliest known.
        Ordering is not guaranteed; callers sort before replaying.
        """
        pass

    @abstractmethod
    async def get_user_funding(
        self,
        user: str,
        start_time: int,
        end_time: Optional[int] = None
    ) -> List[FundingEntry]:
        pass

    @abstractmethod
    async def get_user_ledger_updates(
        self,
        user: str,
        start_time: int,
        end_time: Optional[int] = None
    ) -> List[LedgerEntry]:
        pass


class IRawStore(ABC):
    """Sink for raw exchange records mirrored into local storage."""

    @abstractmethod
    async def store_fills(self, user: str, trades: List[Trade]) -> int:
        pass

    @abstractmethod
    async def store_funding(self, user: str, entries: List[FundingEntry]) -> int:
        pass

    @abstractmethod
    async def store_ledger_updates(self, user: str, entries: List[LedgerEntry]) -> int:
        pass
