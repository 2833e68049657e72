"""Order placement service."""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Union

import structlog

from tradedesk.core.config import TradingConfig, trading_config
from tradedesk.core.errors import (
    AppError, auth_error, handle_error, trading_error, validation_error
)
from tradedesk.core.models import (
    LIMIT_PRICED_TYPES, STOP_TYPES, Order, OrderResult, OrderSide,
    OrderStatus, OrderType, TimeInForce, Trade
)
from tradedesk.services.order_processor import OrderProcessor
from tradedesk.storage.database import Database

logger = structlog.get_logger(__name__)


class OrderService:
    """
    Creates, executes and cancels orders.

    Status changes after creation always go through the OrderProcessor;
    this service never flips an order's status itself.
    """

    def __init__(
        self,
        database: Database,
        processor: Optional[OrderProcessor] = None,
        config: Optional[TradingConfig] = None,
    ):
        self.database = database
        self.config = config or trading_config
        self.processor = processor or OrderProcessor(database, config=self.config)

    async def create_order(
        self,
        user_id: str,
        agent_id: str,
        order_type: Union[OrderType, str],
        side: Union[OrderSide, str],
        amount: Decimal,
        price: Optional[Decimal] = None,
        stop_price: Optional[Decimal] = None,
        stop_loss_price: Optional[Decimal] = None,
        take_profit_price: Optional[Decimal] = None,
        time_in_force: Optional[Union[TimeInForce, str]] = None,
        notes: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> OrderResult:
        """Create an order and, for market orders, execute it right away.

        Args:
            user_id: Authenticated user placing the order
            agent_id: Asset to trade
            order_type: market, limit, stop_market or stop_limit
            side: buy or sell
            amount: Quantity, must be positive
            price: Limit price (limit / stop_limit)
            stop_price: Trigger price (stop_market / stop_limit)
            stop_loss_price: Attached stop loss
            take_profit_price: Attached take profit
            time_in_force: GTC, IOC or FOK
            notes: Free text
            tx_hash: Signed transaction hash for immediate execution

        Returns:
            OrderResult with the stored order; on execution failure the
            result is unsuccessful and carries the order as stored
        """
        try:
            if not user_id:
                raise auth_error("User not authenticated")

            order_type = OrderType(order_type)
            side = OrderSide(side)
            try:
                amount = Decimal(str(amount))
            except ArithmeticError:
                raise validation_error("Amount must be a number", amount=str(amount))
            self._validate(order_type, amount, price, stop_price)

            agent = await self.database.get_agent(agent_id)
            if agent is None:
                raise trading_error("Agent not found", agent_id=agent_id)

            if order_type in LIMIT_PRICED_TYPES:
                execution_price = Decimal(str(price))
            else:
                execution_price = agent.price
            fees = amount * execution_price * self.config.fee_rate

            order = Order(
                user_id=user_id,
                agent_id=agent_id,
                order_type=order_type,
                side=side,
                amount=amount,
                price=price,
                trigger_price=stop_price,
                status=OrderStatus.PENDING if order_type == OrderType.MARKET else OrderStatus.OPEN,
                fees=fees,
                stop_loss_price=stop_loss_price,
                take_profit_price=take_profit_price,
                time_in_force=TimeInForce(time_in_force or self.config.default_time_in_force),
                notes=notes,
            )
            await self.database.save_order(order)
        except AppError as e:
            handle_error(e, component="order_service", action="create_order", user_id=user_id)
            return OrderResult.from_error(e)
        except (ValueError, ArithmeticError) as e:
            error = handle_error(
                validation_error(str(e)), component="order_service", action="create_order"
            )
            return OrderResult.from_error(error)

        logger.info(
            "order.created",
            order_id=order.id,
            user_id=user_id,
            agent_id=agent_id,
            type=order.order_type.value,
            side=order.side.value,
            amount=str(order.amount),
            fees=str(order.fees),
        )

        if order.order_type == OrderType.MARKET:
            result = await self.execute_order(order.id, user_id, tx_hash=tx_hash)
            if not result.success:
                return OrderResult.fail(
                    result.error, result.error_code, order=result.order or order
                )
            return result

        return OrderResult.ok(order=order)

    async def execute_order(self, order_id: str, user_id: str,
                            tx_hash: Optional[str] = None) -> OrderResult:
        """Execute an order through the processor."""
        result = await self.processor.execute(order_id, user_id, tx_hash=tx_hash)
        if not result.success:
            logger.warning("order.execute_failed", order_id=order_id, error=result.error)
        return result

    async def cancel_order(self, order_id: str, user_id: str) -> OrderResult:
        """Cancel an order through the processor."""
        result = await self.processor.cancel(order_id, user_id)
        if not result.success:
            logger.warning("order.cancel_failed", order_id=order_id, error=result.error)
        return result

    async def get_orders(self, user_id: str, limit: int = 50) -> List[Order]:
        return await self.database.get_orders(user_id=user_id, limit=limit)

    async def get_trades(self, user_id: str, limit: int = 50) -> List[Trade]:
        return await self.database.get_trades(user_id, limit)

    async def find_stale_pending_orders(self, older_than: Optional[timedelta] = None) -> List[Order]:
        """Pending orders whose execution never completed."""
        older_than = older_than or timedelta(minutes=self.config.stale_order_minutes)
        return await self.database.get_pending_orders_before(datetime.utcnow() - older_than)

    @staticmethod
    def _validate(order_type: OrderType, amount: Decimal,
                  price: Optional[Decimal], stop_price: Optional[Decimal]) -> None:
        if amount <= 0:
            raise validation_error("Amount must be greater than 0", amount=str(amount))
        if order_type in LIMIT_PRICED_TYPES and (price is None or price <= 0):
            raise validation_error(f"Price required for {order_type.value} orders")
        if order_type in STOP_TYPES and (stop_price is None or stop_price <= 0):
            raise validation_error(f"Stop price required for {order_type.value} orders")
