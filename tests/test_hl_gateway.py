"""
Tests for Hyperliquid payload mapping, using a stubbed Info client.
"""
import pytest

from fillreplay.config import Settings
from fillreplay.core.entities.trade import Side
from fillreplay.core.interfaces.datasource import DataSourceError
from fillreplay.core.services import PnlService
from fillreplay.infrastructure.gateways.hl_public_api import FILLS_PAGE_LIMIT, HLPublicGateway

USER = "0xuser"


class StubInfo:
    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.payloads = []

    def post(self, path, payload):
        self.payloads.append(payload)
        if self.error:
            raise self.error
        response = self.responses[payload["type"]]
        if callable(response):
            return response(payload)
        return response


def _fill(time_ms, side="B", builder=None, tid=None, **overrides):
    fill = {
        "coin": "BTC",
        "px": "50000.0",
        "sz": "0.5",
        "side": side,
        "time": time_ms,
        "closedPnl": "12.5",
        "fee": "1.25",
        "hash": f"0x{time_ms}",
        "oid": 7,
        "tid": tid if tid is not None else time_ms,
    }
    if builder is not None:
        fill["builder"] = builder
    fill.update(overrides)
    return fill


@pytest.mark.anyio
async def test_fills_are_parsed_and_sorted():
    info = StubInfo({"userFillsByTime": [
        _fill(2000, side="A", builder={"b": "0xBuilder"}),
        _fill(1000, side="B", builder="0xLegacy"),
        {"coin": "BTC", "side": "B"},  # malformed, no time
    ]})
    gateway = HLPublicGateway(info=info)

    trades = await gateway.get_user_fills(USER, 0, 10_000)

    assert [t.time_ms for t in trades] == [1000, 2000]
    assert trades[0].side == Side.BUY
    assert trades[1].side == Side.SELL
    assert trades[0].builder_id == "0xLegacy"
    assert trades[1].builder_id == "0xBuilder"
    assert trades[0].px == 50000.0
    assert trades[0].sz == 0.5
    assert trades[0].closed_pnl == 12.5
    assert trades[0].fee == 1.25


@pytest.mark.anyio
async def test_fills_by_time_paginates():
    first_page = [_fill(1000 + i) for i in range(FILLS_PAGE_LIMIT)]
    last_time = first_page[-1]["time"]
    second_page = [_fill(last_time), _fill(last_time + 5)]

    def respond(payload):
        return first_page if payload["startTime"] == 1000 else second_page

    info = StubInfo({"userFillsByTime": respond})
    gateway = HLPublicGateway(info=info)

    trades = await gateway.get_user_fills(USER, 1000, 10_000)

    assert len(trades) == FILLS_PAGE_LIMIT + 1
    assert [p["startTime"] for p in info.payloads] == [1000, last_time]
    assert info.payloads[0]["endTime"] == 10_000


@pytest.mark.anyio
async def test_history_from_epoch_uses_fills_by_time():
    recent = [_fill(100 + i) for i in range(FILLS_PAGE_LIMIT)]

    def respond(payload):
        # Only the time-ranged endpoint still holds the early fill
        return [_fill(50, closedPnl="100")] if payload["startTime"] == 0 else recent

    info = StubInfo({"userFills": recent, "userFillsByTime": respond})
    gateway = HLPublicGateway(info=info)

    trades = await gateway.get_user_fills(USER, 0, 100)

    assert [p["type"] for p in info.payloads] == ["userFillsByTime"]
    assert info.payloads[0]["startTime"] == 0
    assert [(t.time_ms, t.closed_pnl) for t in trades] == [(50, 100)]


@pytest.mark.anyio
async def test_full_history_pages_from_zero():
    info = StubInfo({"userFillsByTime": [_fill(10), _fill(20)]})
    gateway = HLPublicGateway(info=info)

    trades = await gateway.get_user_fills(USER, None, 30)

    assert info.payloads == [{"type": "userFillsByTime", "user": USER, "startTime": 0, "endTime": 30}]
    assert [t.time_ms for t in trades] == [10, 20]


@pytest.mark.anyio
async def test_transport_error_raises_datasource_error():
    gateway = HLPublicGateway(info=StubInfo(error=ConnectionError("reset")))

    with pytest.raises(DataSourceError):
        await gateway.get_user_funding(USER, 0)


@pytest.mark.anyio
async def test_funding_amounts_parsed_once():
    info = StubInfo({"userFunding": [
        {"time": 20, "hash": "0x0", "delta": {"type": "funding", "coin": "ETH", "usdc": "-3.5"}},
        {"time": 10, "hash": "0x0", "delta": {"type": "funding", "coin": "BTC", "usdc": "1.25"}},
    ]})
    gateway = HLPublicGateway(info=info)

    entries = await gateway.get_user_funding(USER, 0, 100)

    assert [(e.time_ms, e.coin, e.amount) for e in entries] == [(10, "BTC", 1.25), (20, "ETH", -3.5)]
    assert info.payloads[0] == {"type": "userFunding", "user": USER, "startTime": 0, "endTime": 100}


@pytest.mark.anyio
async def test_ledger_updates_are_signed():
    info = StubInfo({"userNonFundingLedgerUpdates": [
        {"time": 1, "hash": "0x1", "delta": {"type": "deposit", "usdc": "1000"}},
        {"time": 2, "hash": "0x2", "delta": {"type": "withdraw", "usdc": "200", "fee": "1"}},
        {"time": 3, "hash": "0x3", "delta": {"type": "internalTransfer", "usdc": "50", "user": "0xfriend", "destination": USER}},
        {"time": 4, "hash": "0x4", "delta": {"type": "internalTransfer", "usdc": "30", "user": USER, "destination": "0xfriend"}},
        {"time": 5, "hash": "0x5", "delta": {"type": "spotTransfer", "token": "PURR", "amount": "3"}},
    ]})
    gateway = HLPublicGateway(info=info)

    entries = await gateway.get_user_ledger_updates(USER, 0)

    assert [(e.kind, e.amount) for e in entries] == [
        ("deposit", 1000),
        ("withdraw", -200),
        ("internalTransfer", 50),
        ("internalTransfer", -30),
    ]


@pytest.mark.anyio
async def test_pnl_equity_counts_fills_before_window():
    fills = [
        _fill(50, side="A", closedPnl="100", fee="0"),
        _fill(150, side="A", closedPnl="50", fee="0"),
    ]

    def fills_by_time(payload):
        return [f for f in fills if payload["startTime"] <= f["time"] <= payload["endTime"]]

    info = StubInfo({
        "userFills": fills[1:],
        "userFillsByTime": fills_by_time,
        "userFunding": [],
        "userNonFundingLedgerUpdates": [
            {"time": 10, "hash": "0x10", "delta": {"type": "deposit", "usdc": "1000"}},
        ],
    })
    service = PnlService(HLPublicGateway(info=info), Settings(), clock=lambda: 1000)

    metrics = await service.get_pnl(USER, from_ms=100)

    assert metrics.realizedPnl == 50
    assert metrics.effectiveCapital == 1100
