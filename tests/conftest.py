"""
Pytest configuration and shared fixtures.
"""
import pytest
from httpx import AsyncClient, ASGITransport

from fillreplay.api.main import app, get_datasource, get_registry, get_settings
from fillreplay.config import Settings
from fillreplay.core.entities.trade import Side, Trade
from fillreplay.infrastructure.gateways.local_mock import LocalMockDataSource
from fillreplay.infrastructure.registry.redis_registry import InMemoryUserRegistry

TARGET_BUILDER = "0xBuilder"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_trade():
    """Factory for Trade fixtures with sensible defaults."""
    def _make(time_ms, side, sz, px=100.0, coin="BTC", fee=0.0, closed_pnl=0.0, builder_id=TARGET_BUILDER):
        return Trade(
            time_ms=time_ms,
            coin=coin,
            side=Side.BUY if side in ("B", "Buy", Side.BUY) else Side.SELL,
            sz=sz,
            px=px,
            fee=fee,
            closed_pnl=closed_pnl,
            builder_id=builder_id,
            hash=f"0x{time_ms:x}",
        )
    return _make


@pytest.fixture
def settings():
    return Settings(target_builder=TARGET_BUILDER)


@pytest.fixture
def api_source():
    return LocalMockDataSource()


@pytest.fixture
def api_registry():
    return InMemoryUserRegistry()


@pytest.fixture
async def client(settings, api_source, api_registry):
    """Async HTTP client for testing FastAPI endpoints against an in-memory source."""
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_datasource] = lambda: api_source
    app.dependency_overrides[get_registry] = lambda: api_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
