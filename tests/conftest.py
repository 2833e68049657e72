"""Pytest fixtures and utilities for the TradeDesk test suite."""
import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from tradedesk.core.config import CopyTradingConfig, RealtimeConfig, TradingConfig
from tradedesk.core.models import Agent, CopyTradingSetting, Order, OrderSide, OrderType
from tradedesk.services.copy_trading import CopyTradingEngine
from tradedesk.services.order_processor import OrderProcessor
from tradedesk.services.order_service import OrderService
from tradedesk.services.portfolio import PortfolioService
from tradedesk.storage.database import Database


TX_HASH = "0x9f2c4a1be07d3c5e8a6b1f0d2e4c6a8b0d2f4e6a8c0b2d4f6e8a0c2b4d6f8e0a"


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def test_trading_config():
    """Trading configuration with on-chain verification enforced."""
    return TradingConfig(
        fee_rate=Decimal("0.001"),
        default_time_in_force="GTC",
        require_onchain_verification=True,
        settlement_chain="base",
        stale_order_minutes=60,
    )


@pytest.fixture
def test_copy_trading_config():
    """Copy-trading configuration."""
    return CopyTradingConfig(enabled=True, max_copy_percentage=100.0)


@pytest.fixture
def test_realtime_config():
    """Realtime configuration whose poll loop never fires during a test."""
    return RealtimeConfig(
        portfolio_refresh_seconds=3600,
        price_exchange="binance",
        quote_currency="USDT",
        price_timeout=5,
        price_retry_attempts=1,
    )


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def test_database():
    """Create an in-memory test database."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.changes.drain()
    await db.close()


@pytest.fixture
def sample_agent():
    """A tradeable agent quoted at 2.00."""
    return Agent(
        id="agent-alpha",
        name="Alpha Agent",
        symbol="ALPHA",
        price=Decimal("2.00"),
    )


@pytest.fixture
def second_agent():
    """A second agent, used for include/exclude filters."""
    return Agent(
        id="agent-beta",
        name="Beta Agent",
        symbol="BETA",
        price=Decimal("10.00"),
    )


@pytest_asyncio.fixture
async def seeded_database(test_database, sample_agent, second_agent):
    """In-memory database with two agents."""
    await test_database.save_agent(sample_agent)
    await test_database.save_agent(second_agent)
    return test_database


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def portfolio_service(seeded_database):
    return PortfolioService(seeded_database)


@pytest.fixture
def order_processor(seeded_database, portfolio_service, test_trading_config):
    return OrderProcessor(seeded_database, portfolio_service, config=test_trading_config)


@pytest.fixture
def order_service(seeded_database, order_processor, test_trading_config):
    return OrderService(seeded_database, order_processor, config=test_trading_config)


@pytest.fixture
def copy_engine(seeded_database, test_copy_trading_config, test_trading_config):
    return CopyTradingEngine(
        seeded_database, config=test_copy_trading_config, trading=test_trading_config
    )


# =============================================================================
# Model Fixtures
# =============================================================================

@pytest.fixture
def sample_order():
    """A pending market buy."""
    return Order(
        user_id="alice",
        agent_id="agent-alpha",
        order_type=OrderType.MARKET,
        side=OrderSide.BUY,
        amount=Decimal("100"),
        fees=Decimal("0.2"),
    )


@pytest.fixture
def sample_copy_setting():
    """Bob copies 10% of Alice's trades, at most 5 units per trade."""
    return CopyTradingSetting(
        trader_id="alice",
        follower_id="bob",
        copy_percentage=Decimal("10"),
        max_amount_per_trade=Decimal("5"),
    )


# =============================================================================
# Mock Exchange Fixture
# =============================================================================

@pytest.fixture
def mock_exchange():
    """ccxt exchange stand-in quoting BTC and ETH."""
    exchange = MagicMock()
    exchange.fetch_tickers = AsyncMock(return_value={
        "BTC/USDT": {"symbol": "BTC/USDT", "last": 65000.5},
        "ETH/USDT": {"symbol": "ETH/USDT", "last": 3200.25},
    })
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def tx_hash():
    """Signed settlement transaction hash."""
    return TX_HASH
