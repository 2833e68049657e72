"""Data models for TradeDesk.

This module defines the data structures shared by the order lifecycle,
portfolio accounting and copy-trading services:
- Orders and the trades they produce
- Holdings and the transaction ledger behind them
- Copy-trading relations between a trader and a follower

All monetary values use Decimal for precision.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tradedesk.core.errors import ErrorCode, trading_error


# =============================================================================
# Enums
# =============================================================================

class OrderSide(str, Enum):
    """Order side - buy or sell."""
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type enumeration."""
    MARKET = "market"
    LIMIT = "limit"
    STOP_MARKET = "stop_market"
    STOP_LIMIT = "stop_limit"


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    PENDING = "pending"           # Created, awaiting execution
    OPEN = "open"                 # Resting (limit / stop)
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class OrderSource(str, Enum):
    """Where an order came from."""
    MANUAL = "manual"
    COPY_TRADE = "copy_trade"


class AssetType(str, Enum):
    AGENT = "agent"
    CRYPTO = "crypto"


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    TRANSFER = "transfer"


class ChangeEventType(str, Enum):
    """Row change kinds published by the database."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


LIMIT_PRICED_TYPES = (OrderType.LIMIT, OrderType.STOP_LIMIT)
STOP_TYPES = (OrderType.STOP_MARKET, OrderType.STOP_LIMIT)

# Monotonic status transitions; terminal states have no successors
ALLOWED_TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (
        OrderStatus.OPEN, OrderStatus.FILLED,
        OrderStatus.CANCELLED, OrderStatus.REJECTED,
    ),
    OrderStatus.OPEN: (
        OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED,
    ),
    OrderStatus.FILLED: (),
    OrderStatus.CANCELLED: (),
    OrderStatus.REJECTED: (),
}


# =============================================================================
# Asset Models
# =============================================================================

class Agent(BaseModel):
    """Tradeable agent token with its platform-quoted price."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    id: str = Field(default_factory=lambda: str(uuid4()), description="Agent ID")
    name: str = Field(..., description="Display name")
    symbol: str = Field(..., description="Ticker symbol")
    price: Decimal = Field(..., ge=0, description="Current price")
    exchange_symbol: Optional[str] = Field(
        default=None, description="Symbol on an external exchange, if listed"
    )


# =============================================================================
# Order Models
# =============================================================================

class Order(BaseModel):
    """Order placed by a user or staged by copy-trading.

    Attributes:
        user_id: Owner of the order
        agent_id: Asset being traded
        order_type: Market, limit, stop-market or stop-limit
        side: Buy or sell
        amount: Order quantity
        price: Limit price (None for market orders)
        trigger_price: Stop trigger price
        status: Current order status
        filled_amount: Amount already filled
        average_fill_price: Price the order filled at
        fees: Fee charged at creation
        order_source: Manual or copy-trade
        parent_order_id: Leader order for copy-trade orders
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    # Required fields
    user_id: str = Field(..., description="Owner user ID")
    agent_id: str = Field(..., description="Traded asset ID")
    order_type: OrderType = Field(..., description="Order type")
    side: OrderSide = Field(..., description="Order side")
    amount: Decimal = Field(..., gt=0, description="Order quantity")

    # Prices
    price: Optional[Decimal] = Field(default=None, description="Limit price")
    trigger_price: Optional[Decimal] = Field(default=None, description="Stop trigger")

    # Identification
    id: str = Field(default_factory=lambda: str(uuid4()), description="Order ID")

    # Status
    status: OrderStatus = Field(default=OrderStatus.PENDING, description="Order status")
    filled_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Filled quantity")
    average_fill_price: Optional[Decimal] = Field(default=None, description="Fill price")
    fees: Decimal = Field(default=Decimal("0"), ge=0, description="Fees")

    # Risk management
    stop_loss_price: Optional[Decimal] = Field(default=None, description="Stop loss price")
    take_profit_price: Optional[Decimal] = Field(default=None, description="Take profit price")

    time_in_force: TimeInForce = Field(default=TimeInForce.GTC)
    order_source: OrderSource = Field(default=OrderSource.MANUAL)
    parent_order_id: Optional[str] = Field(default=None, description="Leader order ID")
    notes: Optional[str] = Field(default=None)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation time")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last update time")

    @field_validator("filled_amount")
    @classmethod
    def filled_not_above_amount(cls, v: Decimal, info) -> Decimal:
        """Validate filled amount never exceeds order amount."""
        amount = info.data.get("amount")
        if amount is not None and v > amount:
            raise ValueError("Filled amount cannot exceed order amount")
        return v

    @property
    def remaining_amount(self) -> Decimal:
        """Amount yet to be filled."""
        return self.amount - self.filled_amount

    @property
    def is_active(self) -> bool:
        """True if order can still be executed or cancelled."""
        return self.status in (OrderStatus.PENDING, OrderStatus.OPEN)

    @property
    def is_copy_trade(self) -> bool:
        return self.order_source == OrderSource.COPY_TRADE

    def can_transition_to(self, status: OrderStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, status: OrderStatus) -> None:
        """Move the order to a new status.

        Raises:
            AppError: TRADING_ERROR if the transition is not allowed
        """
        if not self.can_transition_to(status):
            raise trading_error(
                f"Order cannot move from {self.status.value} to {status.value}",
                order_id=self.id,
            )
        self.status = status
        self.updated_at = datetime.utcnow()

    def mark_as_filled(self, fill_price: Decimal) -> None:
        """Mark order as fully filled at the given price."""
        self.transition_to(OrderStatus.FILLED)
        self.filled_amount = self.amount
        self.average_fill_price = fill_price


class Trade(BaseModel):
    """Immutable execution record of an order."""
    model_config = ConfigDict(json_encoders={Decimal: str}, frozen=True)

    user_id: str = Field(..., description="Owner user ID")
    order_id: str = Field(..., description="Executed order ID")
    agent_id: str = Field(..., description="Traded asset ID")
    side: OrderSide = Field(..., description="Trade side")
    quantity: Decimal = Field(..., gt=0, description="Executed quantity")
    price: Decimal = Field(..., ge=0, description="Execution price")

    id: str = Field(default_factory=lambda: str(uuid4()), description="Trade ID")
    fees: Decimal = Field(default=Decimal("0"), ge=0, description="Fees")
    pnl: Optional[Decimal] = Field(default=None, description="Realized PnL (sells)")
    exchange: Optional[str] = Field(default=None)
    executed_at: datetime = Field(default_factory=datetime.utcnow, description="Execution time")

    @property
    def total_amount(self) -> Decimal:
        """Notional value of the trade."""
        return self.quantity * self.price


# =============================================================================
# Portfolio Models
# =============================================================================

class Holding(BaseModel):
    """Aggregated position of one user in one asset.

    ``average_buy_price`` is a weighted mean including fees. It is recomputed
    on every buy and left untouched on sells.
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    user_id: str = Field(..., description="Owner user ID")
    asset_id: str = Field(..., description="Asset ID")
    asset_type: AssetType = Field(default=AssetType.AGENT)
    asset_name: str = Field(default="")
    asset_symbol: str = Field(default="")

    id: str = Field(default_factory=lambda: str(uuid4()), description="Holding ID")
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    average_buy_price: Decimal = Field(default=Decimal("0"), ge=0)
    total_invested: Decimal = Field(default=Decimal("0"), ge=0)
    current_value: Decimal = Field(default=Decimal("0"))
    realized_pnl: Decimal = Field(default=Decimal("0"))
    unrealized_pnl: Decimal = Field(default=Decimal("0"))
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_empty(self) -> bool:
        return self.quantity == 0

    def apply_buy(self, quantity: Decimal, price: Decimal, fees: Decimal = Decimal("0")) -> None:
        """Add to the holding and recompute the weighted average cost."""
        if quantity <= 0:
            raise ValueError("Buy quantity must be positive")
        self.quantity += quantity
        self.total_invested += quantity * price + fees
        self.average_buy_price = self.total_invested / self.quantity
        self.current_value = self.quantity * price
        self.last_updated = datetime.utcnow()

    def apply_sell(self, quantity: Decimal, price: Decimal, fees: Decimal = Decimal("0")) -> Decimal:
        """Reduce the holding and book realized PnL.

        Args:
            quantity: Amount sold
            price: Sale price
            fees: Sale commission

        Returns:
            Realized PnL of this sale

        Raises:
            AppError: TRADING_ERROR when selling more than is held
        """
        if quantity <= 0:
            raise ValueError("Sell quantity must be positive")
        if quantity > self.quantity:
            raise trading_error(
                "Insufficient quantity",
                asset_id=self.asset_id,
                held=str(self.quantity),
                requested=str(quantity),
            )

        cost_basis = self.total_invested * (quantity / self.quantity)
        realized = (quantity * price - fees) - cost_basis

        self.quantity -= quantity
        if self.quantity == 0:
            self.total_invested = Decimal("0")
        else:
            self.total_invested = max(self.total_invested - cost_basis, Decimal("0"))
        self.realized_pnl += realized
        self.current_value = self.quantity * price
        self.last_updated = datetime.utcnow()
        return realized

    def mark_to_market(self, current_price: Decimal) -> None:
        """Revalue the holding at the current price."""
        self.current_value = self.quantity * current_price
        self.unrealized_pnl = self.current_value - self.total_invested
        self.last_updated = datetime.utcnow()


class PortfolioTransaction(BaseModel):
    """Ledger entry for a single buy, sell or transfer."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    user_id: str
    asset_id: str
    transaction_type: TransactionType
    quantity: Decimal = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)

    id: str = Field(default_factory=lambda: str(uuid4()))
    holding_id: Optional[str] = None
    asset_name: str = ""
    asset_symbol: str = ""
    fees: Decimal = Field(default=Decimal("0"), ge=0)
    exchange: Optional[str] = None
    notes: Optional[str] = None
    transaction_date: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total_amount(self) -> Decimal:
        return self.quantity * self.price


class PortfolioSummary(BaseModel):
    """Aggregate portfolio metrics for one user."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    total_value: Decimal = Decimal("0")
    total_invested: Decimal = Decimal("0")
    total_pnl: Decimal = Decimal("0")
    total_pnl_percent: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    holdings_count: int = 0


# =============================================================================
# Copy Trading Models
# =============================================================================

class CopyTradingSetting(BaseModel):
    """Relation between a lead trader and a follower.

    Attributes:
        trader_id: User being copied
        follower_id: User copying
        copy_percentage: Share of the leader's quantity to copy (0-100]
        max_amount_per_trade: Cap on the derived order amount
        copy_types: Sides that are copied
        agents_to_copy: Explicit include list (empty means all)
        agents_to_exclude: Agents never copied
        stop_loss_percentage: Derived stop loss distance in %
        take_profit_percentage: Derived take profit distance in %
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    trader_id: str
    follower_id: str
    copy_percentage: Decimal = Field(..., gt=0, le=100)

    id: str = Field(default_factory=lambda: str(uuid4()))
    max_amount_per_trade: Optional[Decimal] = Field(default=None, gt=0)
    copy_types: List[OrderSide] = Field(
        default_factory=lambda: [OrderSide.BUY, OrderSide.SELL]
    )
    agents_to_copy: List[str] = Field(default_factory=list)
    agents_to_exclude: List[str] = Field(default_factory=list)
    stop_loss_percentage: Optional[Decimal] = Field(default=None, gt=0, lt=100)
    take_profit_percentage: Optional[Decimal] = Field(default=None, gt=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("follower_id")
    @classmethod
    def follower_is_not_trader(cls, v: str, info) -> str:
        if v == info.data.get("trader_id"):
            raise ValueError("A user cannot copy their own trades")
        return v

    def skip_reason(self, agent_id: str, side: OrderSide) -> Optional[str]:
        """Why a trade on this agent/side would not be copied, or None."""
        if side not in self.copy_types:
            return f"{side.value} not in copy types"
        if self.agents_to_copy and agent_id not in self.agents_to_copy:
            return "agent not in copy list"
        if agent_id in self.agents_to_exclude:
            return "agent in exclude list"
        return None

    def copy_amount(self, quantity: Decimal) -> Decimal:
        """Follower quantity for a leader quantity, capped when a cap is set."""
        amount = quantity * self.copy_percentage / Decimal("100")
        if self.max_amount_per_trade is not None:
            amount = min(amount, self.max_amount_per_trade)
        return amount

    def stop_loss_for(self, price: Decimal, side: OrderSide) -> Optional[Decimal]:
        if not self.stop_loss_percentage:
            return None
        pct = self.stop_loss_percentage / Decimal("100")
        return price * (1 - pct) if side == OrderSide.BUY else price * (1 + pct)

    def take_profit_for(self, price: Decimal, side: OrderSide) -> Optional[Decimal]:
        if not self.take_profit_percentage:
            return None
        pct = self.take_profit_percentage / Decimal("100")
        return price * (1 + pct) if side == OrderSide.BUY else price * (1 - pct)


class CopyTradeExecution(BaseModel):
    """One derived order staged for a follower."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    follower_id: str
    order_id: str
    amount: Decimal
    price: Optional[Decimal] = None


class CopyTradeReport(BaseModel):
    """Outcome of fanning one leader trade out to followers."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    original_order_id: str
    trader_id: str
    message: str = "Copy trading processing completed"
    executed: List[CopyTradeExecution] = Field(default_factory=list)
    skipped: List[Tuple[str, str]] = Field(default_factory=list)
    failed: List[Tuple[str, str]] = Field(default_factory=list)

    @property
    def executed_count(self) -> int:
        return len(self.executed)


# =============================================================================
# Notifications & Settlement
# =============================================================================

class Notification(BaseModel):
    """User-facing notification row."""

    user_id: str
    type: str
    title: str
    message: str

    id: str = Field(default_factory=lambda: str(uuid4()))
    category: str = "trading"
    priority: str = "medium"
    action_url: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BlockchainTransaction(BaseModel):
    """Signed on-chain transaction backing an execution."""

    user_id: str
    tx_hash: str

    id: str = Field(default_factory=lambda: str(uuid4()))
    chain: str = "base"
    status: str = "confirmed"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Results
# =============================================================================

class OrderResult(BaseModel):
    """Result of an order operation.

    Business failures are returned here instead of raised.
    """

    success: bool
    order: Optional[Order] = None
    trade: Optional[Trade] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls, **kwargs) -> "OrderResult":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
             **kwargs) -> "OrderResult":
        return cls(success=False, error=error, error_code=error_code, **kwargs)

    @classmethod
    def from_error(cls, error, **kwargs) -> "OrderResult":
        """Build a failed result from an AppError."""
        return cls(success=False, error=error.message, error_code=error.code, **kwargs)
