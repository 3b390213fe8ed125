import asyncio
import logging
from typing import Any, List, Optional

from hyperliquid.info import Info
from hyperliquid.utils import constants

from fillreplay.core.interfaces.datasource import DataSourceError, IDataSource
from fillreplay.core.entities.trade import Side, Trade
from fillreplay.core.entities.ledger import FundingEntry, LedgerEntry
from fillreplay.core.utils.timerange import current_time_ms

logger = logging.getLogger(__name__)

# userFillsByTime returns at most this many fills per request
FILLS_PAGE_LIMIT = 2000

_INFLOW_KINDS = {"deposit"}
_OUTFLOW_KINDS = {"withdraw"}
_TRANSFER_KINDS = {"internalTransfer", "subAccountTransfer"}


class HLPublicGateway(IDataSource):
    """
    Implementation of IDataSource for the Hyperliquid Public Info API.
    Uses the official Python SDK wrapped in asyncio threads for non-blocking execution.
    """

    def __init__(self, use_testnet: bool = False, info: Optional[Any] = None):
        """
        Initialize the Hyperliquid Info client.

        :param use_testnet: Boolean to toggle between Mainnet and Testnet.
        :param info: Pre-built client exposing ``post(path, payload)``.
        """
        if info is None:
            api_url = constants.TESTNET_API_URL if use_testnet else constants.MAINNET_API_URL
            # 'skip_ws=True': only REST endpoints are needed for history
            info = Info(base_url=api_url, skip_ws=True)
            logger.info(f"HLPublicGateway initialized. URL: {api_url}")
        self.info = info

    async def _post(self, payload: dict) -> Any:
        try:
            # The SDK is synchronous, so we run it in a separate thread to stay async
            return await asyncio.to_thread(self.info.post, "/info", payload)
        except Exception as e:
            logger.error(f"Hyperliquid request {payload.get('type')} failed for {payload.get('user')}: {e}")
            raise DataSourceError(f"{payload.get('type')} request failed: {e}") from e

    async def get_user_fills(
        self,
        user: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None
    ) -> List[Trade]:
        """
        Pages forward through 'userFillsByTime'. No start time means the
        earliest known fill, so the walk starts at 0. 'userFills' only returns
        the most recent fills and would silently truncate history.
        """
        safe_end_time = end_time if end_time is not None else current_time_ms()
        raw_fills: List[dict] = []
        cursor = start_time if start_time is not None else 0

        while True:
            page = await self._post({
                "type": "userFillsByTime",
                "user": user,
                "startTime": cursor,
                "endTime": safe_end_time
            })
            raw_fills.extend(page)

            if len(page) < FILLS_PAGE_LIMIT:
                break
            last_time = max(fill.get("time", 0) for fill in page)
            if last_time >= safe_end_time:
                break
            # Fills sharing the boundary millisecond may repeat; de-duplicated below by tid
            cursor = last_time if last_time > cursor else cursor + 1

        return self._map_fills_to_trades(self._dedupe_fills(raw_fills))

    @staticmethod
    def _dedupe_fills(fills: List[dict]) -> List[dict]:
        seen = set()
        unique = []
        for fill in fills:
            key = fill.get("tid") or (fill.get("hash"), fill.get("time"), fill.get("oid"))
            if key in seen:
                continue
            seen.add(key)
            unique.append(fill)
        return unique

    def _map_fills_to_trades(self, fills: List[dict]) -> List[Trade]:
        """
        Maps raw Hyperliquid JSON fills to the internal Trade entity.
        """
        trades = []
        for fill in fills:
            try:
                # 'B' (Bid) buys, 'A' (Ask) sells
                side = Side.BUY if fill.get("side") == "B" else Side.SELL

                # Builder attribution: {"b": address} or a bare address on older payloads
                builder_info = fill.get("builder", None)
                builder_address = None

                if isinstance(builder_info, dict):
                    builder_address = builder_info.get("b")
                elif isinstance(builder_info, str):
                    builder_address = builder_info

                trade = Trade(
                    time_ms=fill["time"],
                    coin=fill["coin"],
                    side=side,
                    sz=fill.get("sz", 0),
                    px=fill.get("px", 0),
                    fee=fill.get("fee", 0),
                    closed_pnl=fill.get("closedPnl", 0),
                    builder_id=builder_address,
                    hash=fill.get("hash") or "",
                    oid=fill.get("oid"),
                    tid=fill.get("tid")
                )
                trades.append(trade)
            except Exception as map_err:
                logger.warning(f"Skipping malformed fill: {map_err}")
                continue

        # API returns most recent first; sort by time ASC for replay
        trades.sort(key=lambda x: x.time_ms)
        return trades

    async def get_user_funding(
        self,
        user: str,
        start_time: int,
        end_time: Optional[int] = None
    ) -> List[FundingEntry]:
        payload = {"type": "userFunding", "user": user, "startTime": start_time}
        if end_time is not None:
            payload["endTime"] = end_time

        raw_updates = await self._post(payload)

        entries = []
        for update in raw_updates:
            try:
                delta = update.get("delta", {})
                entries.append(FundingEntry(
                    time_ms=update["time"],
                    amount=delta.get("usdc", 0),
                    coin=delta.get("coin")
                ))
            except Exception as e:
                logger.warning(f"Skipping malformed funding update: {e}")
                continue

        entries.sort(key=lambda x: x.time_ms)
        return entries

    async def get_user_ledger_updates(
        self,
        user: str,
        start_time: int,
        end_time: Optional[int] = None
    ) -> List[LedgerEntry]:
        """
        Fetches deposit/withdrawal/transfer history using userNonFundingLedgerUpdates.
        Amounts are signed from the user's point of view.
        """
        payload = {"type": "userNonFundingLedgerUpdates", "user": user, "startTime": start_time}
        if end_time is not None:
            payload["endTime"] = end_time

        raw_updates = await self._post(payload)

        entries = []
        for update in raw_updates:
            try:
                delta = update.get("delta", {})
                kind = delta.get("type", "")
                amount = self._signed_ledger_amount(user, kind, delta)
                if amount is None:
                    continue

                entries.append(LedgerEntry(
                    time_ms=update["time"],
                    amount=amount,
                    kind=kind,
                    hash=update.get("hash")
                ))
            except Exception as e:
                logger.warning(f"Skipping malformed ledger update: {e}")
                continue

        entries.sort(key=lambda x: x.time_ms)
        return entries

    @staticmethod
    def _signed_ledger_amount(user: str, kind: str, delta: dict) -> Optional[float]:
        if kind in _INFLOW_KINDS:
            return abs(float(delta.get("usdc", 0)))
        if kind in _OUTFLOW_KINDS:
            return -abs(float(delta.get("usdc", 0)))
        if kind in _TRANSFER_KINDS:
            amount = abs(float(delta.get("usdc", 0)))
            destination = (delta.get("destination") or "").lower()
            return amount if destination == user.lower() else -amount
        # Spot/vault/class transfers don't move perp account equity here
        return None
