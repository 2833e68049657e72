"""Copy-trading: follower settings and order fan-out.

Fan-out is non-custodial. It only stages pending orders in each follower's
queue; the follower's own wallet signs and executes them later.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog

from tradedesk.core.config import (
    CopyTradingConfig, TradingConfig, copy_trading_config, trading_config
)
from tradedesk.core.errors import trading_error, validation_error
from tradedesk.core.models import (
    CopyTradeExecution, CopyTradeReport, CopyTradingSetting, Notification,
    Order, OrderSide, OrderSource, OrderStatus, Trade
)
from tradedesk.storage.database import Database

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = (
    "copy_percentage", "max_amount_per_trade", "copy_types", "agents_to_copy",
    "agents_to_exclude", "stop_loss_percentage", "take_profit_percentage",
    "is_active",
)


class CopyTradingEngine:
    """Mirrors a lead trader's fills into followers' pending orders."""

    def __init__(
        self,
        database: Database,
        config: Optional[CopyTradingConfig] = None,
        trading: Optional[TradingConfig] = None,
    ):
        self.database = database
        self.config = config or copy_trading_config
        self.trading = trading or trading_config

    # Settings management
    async def start_copy_trading(
        self,
        follower_id: str,
        trader_id: str,
        copy_percentage: Decimal,
        **options: Any,
    ) -> CopyTradingSetting:
        """Start copying a trader.

        Raises:
            AppError: VALIDATION_ERROR for invalid settings
        """
        copy_percentage = Decimal(str(copy_percentage))
        if copy_percentage > Decimal(str(self.config.max_copy_percentage)):
            raise validation_error(
                "Copy percentage exceeds the allowed maximum",
                copy_percentage=str(copy_percentage),
            )
        try:
            setting = CopyTradingSetting(
                trader_id=trader_id,
                follower_id=follower_id,
                copy_percentage=copy_percentage,
                **options,
            )
        except ValueError as e:
            raise validation_error(str(e), follower_id=follower_id, trader_id=trader_id)

        await self.database.save_copy_setting(setting)
        logger.info(
            "copy_trade.started",
            follower_id=follower_id,
            trader_id=trader_id,
            copy_percentage=str(copy_percentage),
        )
        return setting

    async def stop_copy_trading(self, setting_id: str) -> CopyTradingSetting:
        return await self.update_copy_settings(setting_id, {"is_active": False})

    async def update_copy_settings(self, setting_id: str, updates: Dict[str, Any]) -> CopyTradingSetting:
        """Apply partial updates to a setting.

        Raises:
            AppError: TRADING_ERROR if the setting does not exist,
                VALIDATION_ERROR for unknown fields or invalid values
        """
        setting = await self.database.get_copy_setting(setting_id)
        if setting is None:
            raise trading_error("Copy trading setting not found", setting_id=setting_id)

        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise validation_error(f"Cannot update fields: {', '.join(sorted(unknown))}")

        data = setting.model_dump()
        data.update(updates)
        data["updated_at"] = datetime.utcnow()
        try:
            updated = CopyTradingSetting(**data)
        except ValueError as e:
            raise validation_error(str(e), setting_id=setting_id)

        await self.database.save_copy_setting(updated)
        logger.info("copy_trade.settings_updated", setting_id=setting_id, fields=sorted(updates))
        return updated

    async def get_copy_settings(self, follower_id: str) -> List[CopyTradingSetting]:
        return await self.database.get_copy_settings(follower_id)

    async def get_followers(self, trader_id: str) -> List[CopyTradingSetting]:
        return await self.database.get_active_copy_settings(trader_id)

    # Fan-out
    async def process_order(self, original_order_id: str, trader_id: str) -> CopyTradeReport:
        """Fan out a leader's order once it is filled.

        Raises:
            AppError: TRADING_ERROR if the order does not belong to the trader
        """
        logger.info("copy_trade.processing", order_id=original_order_id, trader_id=trader_id)

        order = await self.database.get_order(original_order_id, user_id=trader_id)
        if order is None:
            raise trading_error("Original order not found", order_id=original_order_id)

        if order.status != OrderStatus.FILLED:
            logger.info("copy_trade.order_not_filled", order_id=order.id, status=order.status.value)
            return CopyTradeReport(
                original_order_id=order.id,
                trader_id=trader_id,
                message="Order not filled, no copy trades executed",
            )

        trade = await self.database.get_trade_for_order(order.id)
        if trade is None:
            trade = Trade(
                user_id=order.user_id,
                order_id=order.id,
                agent_id=order.agent_id,
                side=order.side,
                quantity=order.filled_amount,
                price=order.average_fill_price or order.price or Decimal("0"),
                fees=order.fees,
            )
        return await self.fan_out(trade, trader_id, leader_order=order)

    async def fan_out(self, trade: Trade, trader_id: str,
                      leader_order: Optional[Order] = None) -> CopyTradeReport:
        """Stage one pending order per eligible follower.

        A failure for one follower is recorded in the report and the loop
        moves on to the next follower.
        """
        report = CopyTradeReport(original_order_id=trade.order_id, trader_id=trader_id)

        if not self.config.enabled:
            report.message = "Copy trading disabled"
            return report

        if leader_order is None:
            leader_order = await self.database.get_order(trade.order_id)

        settings = await self.database.get_active_copy_settings(trader_id)
        if not settings:
            logger.info("copy_trade.no_followers", trader_id=trader_id)
            report.message = "No active copy trading settings found"
            return report

        for setting in settings:
            follower_id = setting.follower_id
            try:
                reason = setting.skip_reason(trade.agent_id, trade.side)
                if reason is None and setting.copy_amount(trade.quantity) <= 0:
                    reason = "copy amount is zero"
                if reason is not None:
                    logger.info("copy_trade.skipped", follower_id=follower_id, reason=reason)
                    report.skipped.append((follower_id, reason))
                    continue

                # Order and notification are written together or not at all
                async with self.database.unit_of_work():
                    order = await self._stage_order(setting, trade, leader_order)
                    await self._notify(setting, trade, order, trader_id)

                report.executed.append(CopyTradeExecution(
                    follower_id=follower_id,
                    order_id=order.id,
                    amount=order.amount,
                    price=order.price,
                ))

                logger.info(
                    "copy_trade.staged",
                    follower_id=follower_id,
                    order_id=order.id,
                    amount=str(order.amount),
                )
            except Exception as e:
                logger.error("copy_trade.follower_failed", follower_id=follower_id, error=str(e))
                report.failed.append((follower_id, str(e)))

        logger.info(
            "copy_trade.completed",
            trader_id=trader_id,
            order_id=trade.order_id,
            executed=report.executed_count,
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    async def _stage_order(self, setting: CopyTradingSetting, trade: Trade,
                           leader_order: Optional[Order]) -> Order:
        amount = setting.copy_amount(trade.quantity)
        price = trade.price

        order = Order(
            user_id=setting.follower_id,
            agent_id=trade.agent_id,
            order_type=leader_order.order_type if leader_order else "market",
            side=trade.side,
            amount=amount,
            price=leader_order.price if leader_order else None,
            trigger_price=leader_order.trigger_price if leader_order else None,
            stop_loss_price=setting.stop_loss_for(price, trade.side),
            take_profit_price=setting.take_profit_for(price, trade.side),
            status=OrderStatus.PENDING,
            fees=amount * price * self.trading.fee_rate,
            time_in_force=leader_order.time_in_force if leader_order else "GTC",
            order_source=OrderSource.COPY_TRADE,
            parent_order_id=trade.order_id,
        )
        return await self.database.save_order(order)

    async def _notify(self, setting: CopyTradingSetting, trade: Trade,
                      order: Order, trader_id: str) -> None:
        side = trade.side.value if isinstance(trade.side, OrderSide) else trade.side
        await self.database.save_notification(Notification(
            user_id=setting.follower_id,
            type="copy_trade_executed",
            priority="high",
            title="Copy Trade Staged",
            message=(
                f"Copy trade ready to sign: {side} {order.amount} "
                f"of {trade.agent_id} at ${trade.price}"
            ),
            action_url="/social-trading",
            data={
                "original_order_id": trade.order_id,
                "copy_order_id": order.id,
                "trader_id": trader_id,
                "amount": str(order.amount),
                "price": str(trade.price),
            },
        ))
