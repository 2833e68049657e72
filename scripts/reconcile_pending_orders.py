#!/usr/bin/env python3
"""
Report (and optionally reject) orders stuck in pending.

A market order stays pending when its immediate execution fails, for
example because no signed transaction hash was supplied. Nothing else ever
picks these orders up again.

This script:
1. Lists pending orders older than STALE_ORDER_MINUTES (or --minutes)
2. With --reject, moves them to rejected through the order state machine
"""
import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tradedesk.core.config import trading_config
from tradedesk.core.errors import AppError
from tradedesk.core.models import OrderStatus
from tradedesk.services.order_service import OrderService
from tradedesk.storage.database import Database
from tradedesk.utils.logging_config import setup_logging


async def reconcile(minutes: int, reject: bool) -> int:
    """List stale pending orders and optionally reject them.

    Returns:
        Number of stale orders found
    """
    db = Database()
    await db.initialize()
    service = OrderService(db)

    print("=" * 60)
    print("Stale Pending Order Report")
    print("=" * 60)
    print(f"Threshold: older than {minutes} minutes")
    print()

    stale = await service.find_stale_pending_orders(timedelta(minutes=minutes))

    for order in stale:
        print(f"  {order.id}  user={order.user_id}  {order.side.value} "
              f"{order.amount} {order.agent_id}  created={order.created_at:%Y-%m-%d %H:%M}")
        if reject:
            try:
                order.transition_to(OrderStatus.REJECTED)
                await db.save_order(order)
                print("    -> rejected")
            except AppError as e:
                print(f"    -> skipped: {e.message}")

    print()
    print(f"Found {len(stale)} stale pending order(s)")
    print("=" * 60)

    await db.close()
    return len(stale)


def main():
    parser = argparse.ArgumentParser(description="Report stale pending orders")
    parser.add_argument("--minutes", type=int, default=trading_config.stale_order_minutes)
    parser.add_argument("--reject", action="store_true", help="Reject stale orders")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(reconcile(args.minutes, args.reject))


if __name__ == "__main__":
    main()
