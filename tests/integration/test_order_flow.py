"""Integration tests for the order, portfolio and copy-trading flow."""
import pytest
from decimal import Decimal

from tradedesk.core.models import OrderSource, OrderStatus
from tradedesk.services.order_service import OrderService
from tradedesk.services.portfolio import PortfolioService
from tradedesk.services.portfolio_tracker import PortfolioTracker
from tradedesk.storage.database import Database


@pytest.mark.asyncio
async def test_leader_trade_copied_and_signed_by_follower(
    order_service, copy_engine, portfolio_service, seeded_database, tx_hash
):
    """Leader buys, followers get staged orders, one follower signs."""
    await copy_engine.start_copy_trading(
        "bob", "alice", Decimal("10"), max_amount_per_trade=Decimal("5")
    )
    await copy_engine.start_copy_trading(
        "carol", "alice", Decimal("50"), agents_to_exclude=["agent-alpha"]
    )

    # Leader market buy
    leader = await order_service.create_order(
        "alice", "agent-alpha", "market", "buy", Decimal("100"), tx_hash=tx_hash
    )
    assert leader.success
    assert leader.order.status == OrderStatus.FILLED

    # Fan-out
    report = await copy_engine.process_order(leader.order.id, "alice")
    assert report.executed_count == 1
    assert report.skipped == [("carol", "agent in exclude list")]

    staged = (await seeded_database.get_orders(user_id="bob"))[0]
    assert staged.status == OrderStatus.PENDING
    assert staged.order_source == OrderSource.COPY_TRADE
    assert staged.parent_order_id == leader.order.id
    assert staged.amount == Decimal("5")
    assert await seeded_database.get_orders(user_id="carol") == []

    # Follower signs the staged order
    executed = await order_service.execute_order(staged.id, "bob", tx_hash="0xb0b")
    assert executed.success
    bob_holding = await portfolio_service.get_holding("bob", "agent-alpha")
    assert bob_holding.quantity == Decimal("5")
    assert bob_holding.total_invested == Decimal("10.01")

    # Re-running the fan-out only stages another order, never executes it
    await copy_engine.process_order(leader.order.id, "alice")
    assert len(await seeded_database.get_orders(user_id="bob", status=OrderStatus.PENDING)) == 1


@pytest.mark.asyncio
async def test_round_trip_portfolio_accounting(order_service, portfolio_service,
                                               seeded_database, tx_hash):
    """Buy twice, sell everything and check the books."""
    await order_service.create_order(
        "alice", "agent-alpha", "market", "buy", Decimal("10"), tx_hash=tx_hash
    )
    await seeded_database.update_agent_price("agent-alpha", Decimal("4"))
    await order_service.create_order(
        "alice", "agent-alpha", "market", "buy", Decimal("10"), tx_hash=tx_hash
    )

    holding = await portfolio_service.get_holding("alice", "agent-alpha")
    # (10 * 2 + 0.02) + (10 * 4 + 0.04)
    assert holding.total_invested == Decimal("60.06")
    assert holding.average_buy_price == Decimal("3.003")

    summary = await portfolio_service.get_portfolio_summary(
        "alice", prices={"agent-alpha": Decimal("5")}
    )
    assert summary.total_value == Decimal("100")
    assert summary.total_pnl == Decimal("39.94")

    await seeded_database.update_agent_price("agent-alpha", Decimal("5"))
    sell = await order_service.create_order(
        "alice", "agent-alpha", "market", "sell", Decimal("20"), tx_hash=tx_hash
    )

    assert sell.success
    # 100 proceeds - 0.1 fees - 60.06 cost
    assert sell.trade.pnl == Decimal("39.84")
    assert await portfolio_service.get_holding("alice", "agent-alpha") is None

    transactions = await portfolio_service.get_transactions("alice")
    assert len(transactions) == 3
    assert len(await order_service.get_trades("alice")) == 3


@pytest.mark.asyncio
async def test_tracker_follows_order_execution(tmp_path, test_trading_config,
                                               test_realtime_config, sample_agent, tx_hash):
    """A running tracker picks up holdings created by an order fill."""
    db = Database(f"sqlite:///{tmp_path}/flow.db")
    await db.initialize()
    await db.save_agent(sample_agent)
    portfolio = PortfolioService(db)
    orders = OrderService(db, config=test_trading_config)
    tracker = PortfolioTracker("alice", portfolio, config=test_realtime_config)

    try:
        await tracker.start()
        await orders.create_order(
            "alice", "agent-alpha", "market", "buy", Decimal("10"), tx_hash=tx_hash
        )
        await tracker.wait_for_refresh()

        assert tracker.summary.holdings_count == 1
        assert tracker.summary.total_invested == Decimal("20.02")
    finally:
        await tracker.stop()
        await db.close()
