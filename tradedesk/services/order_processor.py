"""Order execution and cancellation.

This is the only component allowed to change an order's status after it is
created. ``OrderService`` calls it for both execute and cancel.
"""
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from tradedesk.core.config import TradingConfig, trading_config
from tradedesk.core.errors import (
    AppError, ErrorCode, database_error, handle_error, trading_error, validation_error
)
from tradedesk.core.models import (
    Agent, BlockchainTransaction, Notification, Order, OrderResult, OrderSide,
    OrderStatus, OrderType, Trade
)
from tradedesk.services.portfolio import PortfolioService
from tradedesk.storage.database import Database

logger = structlog.get_logger(__name__)

ACTION_EXECUTE = "execute"
ACTION_CANCEL = "cancel"


class OrderProcessor:
    """Executes and cancels orders.

    Execution marks the order filled at the current price, writes the trade,
    updates the holding through PortfolioService, records the on-chain
    transaction and notifies the user.
    """

    def __init__(
        self,
        database: Database,
        portfolio: Optional[PortfolioService] = None,
        config: Optional[TradingConfig] = None,
    ):
        self.database = database
        self.portfolio = portfolio or PortfolioService(database)
        self.config = config or trading_config

    async def process(
        self,
        order_id: str,
        user_id: str,
        action: str,
        tx_hash: Optional[str] = None,
        blockchain_verified: bool = False,
    ) -> OrderResult:
        """Dispatch an execute or cancel request."""
        logger.info("process_order.request", user_id=user_id, action=action, order_id=order_id)

        try:
            order = await self.database.get_order(order_id, user_id=user_id)
            if order is None:
                raise trading_error("Order not found", order_id=order_id)

            if action == ACTION_EXECUTE:
                return await self._execute(order, tx_hash, blockchain_verified)
            if action == ACTION_CANCEL:
                return await self._cancel(order)

            raise validation_error("Invalid action", action=action)
        except AppError as e:
            handle_error(e, component="order_processor", action=action, order_id=order_id)
            return OrderResult.from_error(e)

    async def execute(self, order_id: str, user_id: str, tx_hash: Optional[str] = None,
                      blockchain_verified: Optional[bool] = None) -> OrderResult:
        if blockchain_verified is None:
            blockchain_verified = bool(tx_hash)
        return await self.process(order_id, user_id, ACTION_EXECUTE, tx_hash, blockchain_verified)

    async def cancel(self, order_id: str, user_id: str) -> OrderResult:
        return await self.process(order_id, user_id, ACTION_CANCEL)

    async def _execute(self, order: Order, tx_hash: Optional[str],
                       blockchain_verified: bool) -> OrderResult:
        if self.config.require_onchain_verification and (not tx_hash or not blockchain_verified):
            raise trading_error(
                "Blockchain verification required",
                detail="All trades must be executed on-chain with verified transaction hash",
            )

        if not order.is_active:
            raise trading_error(
                f"Order cannot be executed in status {order.status.value}",
                order_id=order.id,
            )

        agent = await self.database.get_agent(order.agent_id)
        if agent is None:
            raise trading_error("Agent not found", agent_id=order.agent_id)

        execution_price = self._execution_price(order, agent.price)

        if order.side == OrderSide.SELL:
            holding = await self.portfolio.get_holding(order.user_id, order.agent_id)
            held = holding.quantity if holding else Decimal("0")
            if held < order.amount:
                order.transition_to(OrderStatus.REJECTED)
                await self.database.save_order(order)
                logger.warning(
                    "process_order.rejected",
                    order_id=order.id,
                    reason="insufficient_quantity",
                    held=str(held),
                    requested=str(order.amount),
                )
                return OrderResult.fail(
                    "Insufficient quantity", ErrorCode.TRADING_ERROR, order=order
                )

        try:
            async with self.database.unit_of_work():
                trade = await self._fill(order, agent, execution_price, tx_hash)
        except SQLAlchemyError as e:
            raise database_error(
                "Failed to record order execution", order_id=order.id, detail=str(e)
            ) from e

        logger.info(
            "process_order.executed",
            order_id=order.id,
            side=order.side.value,
            amount=str(order.amount),
            price=str(execution_price),
            tx_hash=tx_hash,
        )
        return OrderResult.ok(order=order, trade=trade)

    async def _fill(self, order: Order, agent: Agent, execution_price: Decimal,
                    tx_hash: Optional[str]) -> Trade:
        """Order, holding, trade, settlement and notification writes of one fill."""
        order.mark_as_filled(execution_price)
        await self.database.save_order(order)

        pnl = None
        if order.side == OrderSide.BUY:
            await self.portfolio.add_holding(
                user_id=order.user_id,
                asset_id=order.agent_id,
                quantity=order.amount,
                price=execution_price,
                asset_name=agent.name,
                asset_symbol=agent.symbol,
                fees=order.fees,
            )
        else:
            pnl = await self.portfolio.reduce_holding(
                user_id=order.user_id,
                asset_id=order.agent_id,
                quantity=order.amount,
                price=execution_price,
                fees=order.fees,
            )

        trade = await self.database.save_trade(Trade(
            user_id=order.user_id,
            order_id=order.id,
            agent_id=order.agent_id,
            side=order.side,
            quantity=order.amount,
            price=execution_price,
            fees=order.fees,
            pnl=pnl,
        ))

        if tx_hash:
            await self.database.save_blockchain_transaction(BlockchainTransaction(
                user_id=order.user_id,
                tx_hash=tx_hash,
                chain=self.config.settlement_chain,
                metadata={
                    "order_id": order.id,
                    "trade_id": trade.id,
                    "agent_id": order.agent_id,
                    "side": order.side.value,
                    "amount": str(order.amount),
                    "price": str(execution_price),
                },
            ))

        await self.database.save_notification(Notification(
            user_id=order.user_id,
            type="order_filled",
            title="Order Filled",
            message=(
                f"Your {order.side.value} order for {order.amount} units "
                f"has been filled at ${execution_price:.4f}"
            ),
            data={"order_id": order.id, "trade_id": trade.id, "tx_hash": tx_hash},
        ))
        return trade

    async def _cancel(self, order: Order) -> OrderResult:
        if not order.can_transition_to(OrderStatus.CANCELLED):
            raise trading_error(
                f"Order cannot be cancelled in status {order.status.value}",
                order_id=order.id,
            )

        order.transition_to(OrderStatus.CANCELLED)
        await self.database.save_order(order)

        logger.info("process_order.cancelled", order_id=order.id)
        return OrderResult.ok(order=order)

    @staticmethod
    def _execution_price(order: Order, agent_price: Decimal) -> Decimal:
        """Market-style orders fill at the agent price, limit-style at their own."""
        if order.order_type in (OrderType.MARKET, OrderType.STOP_MARKET):
            return agent_price
        return order.price if order.price is not None else agent_price
