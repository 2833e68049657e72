"""
TradeDesk - Main Entry Point

Order lifecycle, portfolio accounting and copy-trading from the command line.

Usage:
    # Check configuration
    python main.py --check

    # Initialize database
    python main.py --init-db

    # Add or reprice an agent
    python main.py agent add --id agent-1 --name "Alpha Agent" --symbol ALPHA --price 1.25

    # Place a market order (executed immediately with the signed tx hash)
    python main.py order create --user alice --agent agent-1 --side buy --amount 10 --tx-hash 0xabc

    # Cancel an open order
    python main.py order cancel --user alice --order <order-id>

    # Show portfolio summary
    python main.py portfolio --user alice

    # Fan a filled order out to followers
    python main.py copy-trade --trader alice --order <order-id>
"""

import argparse
import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import structlog

from tradedesk.core.config import app_config
from tradedesk.core.errors import AppError
from tradedesk.core.models import Agent, OrderResult
from tradedesk.services.copy_trading import CopyTradingEngine
from tradedesk.services.order_service import OrderService
from tradedesk.services.portfolio import PortfolioService
from tradedesk.storage.database import Database
from tradedesk.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def print_order_result(result: OrderResult):
    if result.success:
        order = result.order
        print(f"✓ Order {order.id}")
        print(f"   {order.side.value.upper()} {order.amount} {order.agent_id} "
              f"[{order.order_type.value}] status={order.status.value} fees={order.fees}")
        if result.trade:
            print(f"   Filled at {result.trade.price} (trade {result.trade.id})")
    else:
        print(f"✗ {result.error} ({result.error_code.value if result.error_code else 'UNKNOWN'})")
        if result.order:
            print(f"   Order {result.order.id} left in status {result.order.status.value}")


def check_configuration() -> dict:
    result = app_config.validate_config()
    print("\n" + "=" * 60)
    print("           CONFIGURATION CHECK")
    print("=" * 60)
    if result["valid"]:
        print("\n✓ Configuration is valid")
    else:
        print("\n✗ Configuration errors:")
        for issue in result["issues"]:
            print(f"   - {issue}")
    print(f"\nEnvironment: {app_config.system.environment}")
    print(f"Database: {app_config.database.database_url}")
    print(f"Fee rate: {app_config.trading.fee_rate}")
    print(f"On-chain verification: {app_config.trading.require_onchain_verification}")
    print("\n" + "=" * 60)
    return result


async def run_command(args, db: Database):
    orders = OrderService(db)
    portfolio = PortfolioService(db)
    copy_trading = CopyTradingEngine(db)

    if args.command == "agent":
        agent = Agent(
            id=args.id, name=args.name, symbol=args.symbol, price=Decimal(args.price)
        )
        await db.save_agent(agent)
        print(f"✓ Agent {agent.id} ({agent.symbol}) @ {agent.price}")

    elif args.command == "order":
        if args.action == "create":
            result = await orders.create_order(
                user_id=args.user,
                agent_id=args.agent,
                order_type=args.type,
                side=args.side,
                amount=Decimal(args.amount),
                price=Decimal(args.price) if args.price else None,
                stop_price=Decimal(args.stop_price) if args.stop_price else None,
                tx_hash=args.tx_hash,
            )
        elif args.action == "execute":
            result = await orders.execute_order(args.order, args.user, tx_hash=args.tx_hash)
        else:
            result = await orders.cancel_order(args.order, args.user)
        print_order_result(result)

    elif args.command == "portfolio":
        summary = await portfolio.get_portfolio_summary(args.user)
        print(f"\nPortfolio of {args.user}")
        for holding in await portfolio.get_holdings(args.user):
            print(f"   {holding.asset_symbol or holding.asset_id:<10} "
                  f"qty={holding.quantity} avg={holding.average_buy_price:.4f} "
                  f"invested={holding.total_invested:.2f}")
        print(f"   Total value:    {summary.total_value:.2f}")
        print(f"   Total invested: {summary.total_invested:.2f}")
        print(f"   P&L:            {summary.total_pnl:.2f} ({summary.total_pnl_percent:.2f}%)")
        print(f"   Realized P&L:   {summary.realized_pnl:.2f}")

    elif args.command == "copy-trade":
        report = await copy_trading.process_order(args.order, args.trader)
        print(f"✓ {report.message}: {report.executed_count} staged, "
              f"{len(report.skipped)} skipped, {len(report.failed)} failed")
        for execution in report.executed:
            print(f"   {execution.follower_id}: order {execution.order_id} amount={execution.amount}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TradeDesk - orders, portfolio and copy-trading",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--check", action="store_true", help="Check configuration and exit")
    parser.add_argument("--init-db", action="store_true", help="Initialize database and exit")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    sub = parser.add_subparsers(dest="command")

    agent = sub.add_parser("agent", help="Manage tradeable agents")
    agent.add_argument("action", choices=["add"])
    agent.add_argument("--id", required=True)
    agent.add_argument("--name", required=True)
    agent.add_argument("--symbol", required=True)
    agent.add_argument("--price", required=True)

    order = sub.add_parser("order", help="Create, execute or cancel orders")
    order.add_argument("action", choices=["create", "execute", "cancel"])
    order.add_argument("--user", required=True)
    order.add_argument("--order", help="Order ID (execute / cancel)")
    order.add_argument("--agent", help="Agent ID (create)")
    order.add_argument("--type", default="market",
                       choices=["market", "limit", "stop_market", "stop_limit"])
    order.add_argument("--side", choices=["buy", "sell"], default="buy")
    order.add_argument("--amount", default="0")
    order.add_argument("--price")
    order.add_argument("--stop-price")
    order.add_argument("--tx-hash")

    portfolio = sub.add_parser("portfolio", help="Show portfolio summary")
    portfolio.add_argument("--user", required=True)

    copy_trade = sub.add_parser("copy-trade", help="Fan a filled order out to followers")
    copy_trade.add_argument("--trader", required=True)
    copy_trade.add_argument("--order", required=True)

    return parser


async def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(log_level=args.log_level)

    if args.check:
        check_configuration()
        return

    db = Database()
    try:
        await db.initialize()
        if args.init_db:
            print("✓ Database initialized successfully")
            return
        if not args.command:
            parser.print_help()
            return
        await run_command(args, db)
    except AppError as e:
        print(f"\n✗ {e.title}: {e.message}")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\n✗ Fatal error: {e}")
        raise
    finally:
        await db.changes.drain()
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
