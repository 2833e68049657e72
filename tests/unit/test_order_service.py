"""Unit tests for order placement, execution and cancellation."""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import OperationalError

from tradedesk.core.config import TradingConfig
from tradedesk.core.errors import ErrorCode
from tradedesk.core.models import Order, OrderSide, OrderStatus, OrderType
from tradedesk.services.order_service import OrderService


# =============================================================================
# Order Creation Tests
# =============================================================================

class TestCreateOrder:
    """Test OrderService.create_order."""

    @pytest.mark.asyncio
    async def test_market_buy_executes_immediately(self, order_service, seeded_database, tx_hash):
        result = await order_service.create_order(
            user_id="alice",
            agent_id="agent-alpha",
            order_type=OrderType.MARKET,
            side=OrderSide.BUY,
            amount=Decimal("100"),
            tx_hash=tx_hash,
        )

        assert result.success is True
        assert result.order.status == OrderStatus.FILLED
        assert result.order.fees == Decimal("0.2")
        assert result.order.average_fill_price == Decimal("2")
        assert result.trade.price == Decimal("2")
        assert result.trade.quantity == Decimal("100")

        stored = await seeded_database.get_order(result.order.id)
        assert stored.status == OrderStatus.FILLED

    @pytest.mark.asyncio
    async def test_market_buy_side_effects(self, order_service, seeded_database, tx_hash):
        result = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("100"), tx_hash=tx_hash
        )

        holding = await seeded_database.get_holding("alice", "agent-alpha")
        assert holding.quantity == Decimal("100")
        assert holding.total_invested == Decimal("200.2")
        assert holding.asset_symbol == "ALPHA"

        settlements = await seeded_database.get_blockchain_transactions("alice")
        assert settlements[0].tx_hash == tx_hash
        assert settlements[0].metadata["order_id"] == result.order.id

        notifications = await seeded_database.get_notifications("alice")
        assert notifications[0].type == "order_filled"

    @pytest.mark.asyncio
    async def test_market_order_without_tx_hash_stays_pending(self, order_service, seeded_database):
        result = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("10")
        )

        assert result.success is False
        assert result.error == "Blockchain verification required"
        assert result.error_code == ErrorCode.TRADING_ERROR
        assert result.order.status == OrderStatus.PENDING

        stored = await seeded_database.get_order(result.order.id)
        assert stored.status == OrderStatus.PENDING
        assert await seeded_database.get_trades("alice") == []

    @pytest.mark.asyncio
    async def test_limit_order_rests_open(self, order_service, seeded_database):
        result = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )

        assert result.success is True
        assert result.order.status == OrderStatus.OPEN
        assert result.order.price == Decimal("1.5")
        # Fee uses the limit price, not the agent price
        assert result.order.fees == Decimal("0.015")
        assert result.trade is None
        assert await seeded_database.get_holding("alice", "agent-alpha") is None

    @pytest.mark.asyncio
    async def test_stop_order_keeps_trigger(self, order_service):
        result = await order_service.create_order(
            "alice", "agent-alpha", "stop_limit", "sell", Decimal("5"),
            price=Decimal("1.8"), stop_price=Decimal("1.9"),
        )

        assert result.success is True
        assert result.order.status == OrderStatus.OPEN
        assert result.order.trigger_price == Decimal("1.9")

    @pytest.mark.asyncio
    async def test_default_time_in_force(self, order_service):
        result = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("1"), price=Decimal("1")
        )

        assert result.order.time_in_force.value == "GTC"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_type,kwargs", [
        ("limit", {}),
        ("limit", {"price": Decimal("0")}),
        ("stop_market", {}),
        ("stop_limit", {"price": Decimal("1")}),
    ])
    async def test_missing_prices_rejected(self, order_service, order_type, kwargs):
        result = await order_service.create_order(
            "alice", "agent-alpha", order_type, "buy", Decimal("1"), **kwargs
        )

        assert result.success is False
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.order is None

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, order_service):
        result = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("0")
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Amount must be greater than 0"

    @pytest.mark.asyncio
    async def test_unknown_order_type_rejected(self, order_service):
        result = await order_service.create_order(
            "alice", "agent-alpha", "iceberg", "buy", Decimal("1")
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_non_numeric_amount_rejected(self, order_service, seeded_database):
        result = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", "ten"
        )

        assert result.success is False
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Amount must be a number"
        assert await seeded_database.get_orders(user_id="alice") == []

    @pytest.mark.asyncio
    async def test_requires_user(self, order_service):
        result = await order_service.create_order(
            "", "agent-alpha", "market", "buy", Decimal("1")
        )

        assert result.error == "User not authenticated"
        assert result.error_code == ErrorCode.AUTH_ERROR

    @pytest.mark.asyncio
    async def test_unknown_agent(self, order_service, seeded_database):
        result = await order_service.create_order(
            "alice", "agent-missing", "market", "buy", Decimal("1")
        )

        assert result.error == "Agent not found"
        assert await seeded_database.get_orders(user_id="alice") == []


# =============================================================================
# Execution Tests
# =============================================================================

class TestExecuteOrder:
    """Test executing resting and pending orders."""

    @pytest.mark.asyncio
    async def test_execute_limit_order_at_limit_price(self, order_service, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )

        result = await order_service.execute_order(created.order.id, "alice", tx_hash=tx_hash)

        assert result.success is True
        assert result.order.status == OrderStatus.FILLED
        assert result.trade.price == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_execute_stop_market_at_agent_price(self, order_service, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "stop_market", "buy", Decimal("10"),
            stop_price=Decimal("2.1"),
        )

        result = await order_service.execute_order(created.order.id, "alice", tx_hash=tx_hash)

        assert result.trade.price == Decimal("2")

    @pytest.mark.asyncio
    async def test_retry_pending_market_order(self, order_service, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("10")
        )

        result = await order_service.execute_order(created.order.id, "alice", tx_hash=tx_hash)

        assert result.success is True
        assert result.order.id == created.order.id

    @pytest.mark.asyncio
    async def test_filled_order_cannot_execute_again(self, order_service, seeded_database, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("10"), tx_hash=tx_hash
        )

        result = await order_service.execute_order(created.order.id, "alice", tx_hash=tx_hash)

        assert result.success is False
        assert result.error_code == ErrorCode.TRADING_ERROR
        holding = await seeded_database.get_holding("alice", "agent-alpha")
        assert holding.quantity == Decimal("10")

    @pytest.mark.asyncio
    async def test_sell_realizes_pnl(self, order_service, seeded_database, tx_hash):
        await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("100"), tx_hash=tx_hash
        )
        await seeded_database.update_agent_price("agent-alpha", Decimal("3"))

        result = await order_service.create_order(
            "alice", "agent-alpha", "market", "sell", Decimal("40"), tx_hash=tx_hash
        )

        assert result.success is True
        # 40 * 3 - 0.12 fees - 200.2 * 0.4 cost basis
        assert result.trade.pnl == Decimal("39.80")
        holding = await seeded_database.get_holding("alice", "agent-alpha")
        assert holding.quantity == Decimal("60")

    @pytest.mark.asyncio
    async def test_sell_without_holding_is_rejected(self, order_service, seeded_database, tx_hash):
        result = await order_service.create_order(
            "alice", "agent-alpha", "market", "sell", Decimal("5"), tx_hash=tx_hash
        )

        assert result.success is False
        assert result.error == "Insufficient quantity"
        assert result.order.status == OrderStatus.REJECTED
        stored = await seeded_database.get_order(result.order.id)
        assert stored.status == OrderStatus.REJECTED
        assert await seeded_database.get_trades("alice") == []

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_execution(self, order_service, seeded_database,
                                                     tx_hash, monkeypatch):
        created = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )

        async def failing_save_trade(trade):
            raise OperationalError("INSERT INTO trades", {}, Exception("disk I/O error"))

        monkeypatch.setattr(seeded_database, "save_trade", failing_save_trade)

        result = await order_service.execute_order(created.order.id, "alice", tx_hash=tx_hash)

        assert result.success is False
        assert result.error_code == ErrorCode.DATABASE_ERROR
        stored = await seeded_database.get_order(created.order.id)
        assert stored.status == OrderStatus.OPEN
        assert await seeded_database.get_holding("alice", "agent-alpha") is None
        assert await seeded_database.get_trades("alice") == []
        assert await seeded_database.get_transactions("alice") == []
        assert await seeded_database.get_blockchain_transactions("alice") == []

    @pytest.mark.asyncio
    async def test_execute_other_users_order(self, order_service, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )

        result = await order_service.execute_order(created.order.id, "mallory", tx_hash=tx_hash)

        assert result.success is False
        assert result.error == "Order not found"

    @pytest.mark.asyncio
    async def test_execution_without_verification_requirement(self, seeded_database):
        service = OrderService(
            seeded_database, config=TradingConfig(require_onchain_verification=False)
        )

        result = await service.create_order("alice", "agent-alpha", "market", "buy", Decimal("10"))

        assert result.success is True
        assert result.order.status == OrderStatus.FILLED
        assert await seeded_database.get_blockchain_transactions("alice") == []

    @pytest.mark.asyncio
    async def test_invalid_action(self, order_processor):
        result = await order_processor.process("any", "alice", "teleport")

        # Unknown order is reported before the action is inspected
        assert result.success is False
        assert result.error == "Order not found"

    @pytest.mark.asyncio
    async def test_invalid_action_on_existing_order(self, order_service, order_processor):
        created = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )

        result = await order_processor.process(created.order.id, "alice", "teleport")

        assert result.error == "Invalid action"
        assert result.error_code == ErrorCode.VALIDATION_ERROR


# =============================================================================
# Cancellation Tests
# =============================================================================

class TestCancelOrder:
    """Test OrderService.cancel_order."""

    @pytest.mark.asyncio
    async def test_cancel_open_order(self, order_service, seeded_database):
        created = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )

        result = await order_service.cancel_order(created.order.id, "alice")

        assert result.success is True
        assert result.order.status == OrderStatus.CANCELLED
        stored = await seeded_database.get_order(created.order.id)
        assert stored.status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_filled_order_fails(self, order_service, seeded_database, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("10"), tx_hash=tx_hash
        )

        result = await order_service.cancel_order(created.order.id, "alice")

        assert result.success is False
        assert result.error_code == ErrorCode.TRADING_ERROR
        assert result.error == "Order cannot be cancelled in status filled"
        stored = await seeded_database.get_order(created.order.id)
        assert stored.status == OrderStatus.FILLED

    @pytest.mark.asyncio
    async def test_cancelled_order_cannot_execute(self, order_service, tx_hash):
        created = await order_service.create_order(
            "alice", "agent-alpha", "limit", "buy", Decimal("10"), price=Decimal("1.5")
        )
        await order_service.cancel_order(created.order.id, "alice")

        result = await order_service.execute_order(created.order.id, "alice", tx_hash=tx_hash)

        assert result.success is False
        assert result.error == "Order cannot be executed in status cancelled"


# =============================================================================
# Query Tests
# =============================================================================

class TestOrderQueries:

    @pytest.mark.asyncio
    async def test_get_orders_and_trades(self, order_service, tx_hash):
        await order_service.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("10"), tx_hash=tx_hash
        )
        await order_service.create_order(
            "alice", "agent-beta", "limit", "buy", Decimal("1"), price=Decimal("9")
        )

        assert len(await order_service.get_orders("alice")) == 2
        assert len(await order_service.get_trades("alice")) == 1

    @pytest.mark.asyncio
    async def test_find_stale_pending_orders(self, order_service, seeded_database):
        stale = Order(
            user_id="alice",
            agent_id="agent-alpha",
            order_type=OrderType.MARKET,
            side=OrderSide.BUY,
            amount=Decimal("1"),
            created_at=datetime.utcnow() - timedelta(hours=2),
        )
        await seeded_database.save_order(stale)
        await order_service.create_order("alice", "agent-alpha", "market", "buy", Decimal("1"))

        found = await order_service.find_stale_pending_orders()

        assert [o.id for o in found] == [stale.id]
